"""Search module: query language, indexing and the search service."""

from .errors import (
    SearchError,
    QueryParseError,
    VersionNotFoundError,
    IndexingError,
    SearchTimeoutError
)
from .models import (
    ENTITY_TYPES,
    SearchEntity,
    EntitySearchResult,
    SearchRequest,
    SearchResponse,
    IndexDiagnostic,
    IndexResult,
    ReindexSummary
)
from .query_parser import QueryParser, ParsedQuery
from .query_compiler import (
    QueryCompiler,
    CompiledQuery,
    FilterPredicate,
    sanitize_term,
    to_search_expression
)
from .indexer import Indexer, IndexerConfig, extract_entities
from .search_service import SearchService, SearchConfig

__all__ = [
    # Errors
    'SearchError',
    'QueryParseError',
    'VersionNotFoundError',
    'IndexingError',
    'SearchTimeoutError',

    # Models
    'ENTITY_TYPES',
    'SearchEntity',
    'EntitySearchResult',
    'SearchRequest',
    'SearchResponse',
    'IndexDiagnostic',
    'IndexResult',
    'ReindexSummary',

    # Query language
    'QueryParser',
    'ParsedQuery',
    'QueryCompiler',
    'CompiledQuery',
    'FilterPredicate',
    'sanitize_term',
    'to_search_expression',

    # Indexing
    'Indexer',
    'IndexerConfig',
    'extract_entities',

    # Search Service
    'SearchService',
    'SearchConfig'
]
