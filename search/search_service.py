"""Search service: parse, compile, execute, paginate and rank schema searches."""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .models import SearchRequest, SearchResponse
from .query_compiler import QueryCompiler
from .query_parser import QueryParser

logger = logging.getLogger(__name__)


@dataclass
class SearchConfig:
    """Configuration for search behaviour."""
    default_limit: int = 50
    max_limit: int = 1000
    query_timeout_ms: int = 5000
    suggestion_default_limit: int = 5
    suggestion_max_limit: int = 20
    # Only history entries this recent feed suggestions
    suggestion_window_days: int = 30


class SearchService:
    """Runs search requests against an index store.

    The store is anything implementing ``storage.backend.IndexStore``.
    """

    def __init__(self, store, parser: Optional[QueryParser] = None,
                 compiler: Optional[QueryCompiler] = None,
                 config: Optional[SearchConfig] = None):
        """
        Initialize search service.

        Args:
            store: Index store executing compiled queries
            parser: Optional query parser instance
            compiler: Optional query compiler instance
            config: Optional search configuration
        """
        self.store = store
        self.parser = parser or QueryParser()
        self.compiler = compiler or QueryCompiler()
        self.config = config or SearchConfig()

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if not limit or limit <= 0:
            return self.config.default_limit
        return min(limit, self.config.max_limit)

    def search(self, request: SearchRequest) -> SearchResponse:
        """
        Execute a search request.

        Args:
            request: Query text with limit and offset

        Returns:
            One page of ranked results with the total match count

        Raises:
            QueryParseError: If the query has an invalid filter
            SearchTimeoutError: If the store exceeds the query timeout
        """
        limit = self._clamp_limit(request.limit)
        offset = max(request.offset or 0, 0)

        parsed = self.parser.parse(request.query)
        compiled = self.compiler.compile(parsed)
        for warning in compiled.warnings:
            logger.info(f"Query {request.query!r}: {warning}")

        results = self.store.search_entities(
            compiled, limit, offset, timeout_ms=self.config.query_timeout_ms
        )

        try:
            total_count = self.store.count_entities(compiled, timeout_ms=self.config.query_timeout_ms)
        except Exception as e:
            logger.warning(f"Count query failed for {request.query!r}, using page size: {e}")
            total_count = len(results)

        return SearchResponse(
            results=results,
            total_count=total_count,
            query=request.query,
            parsed_query=parsed,
            warnings=list(compiled.warnings)
        )

    def search_and_record(self, request: SearchRequest) -> SearchResponse:
        """Search, then append the query to the search history.

        A history failure is logged; the completed response is still returned.
        """
        started = time.monotonic()
        response = self.search(request)
        duration_ms = int((time.monotonic() - started) * 1000)

        try:
            self.record_search(request.query, response.total_count, duration_ms)
        except Exception as e:
            logger.error(f"Failed to record search history for {request.query!r}: {e}")

        return response

    def get_suggestions(self, prefix: str, limit: Optional[int] = None) -> List[str]:
        """
        Suggest previously issued queries starting with ``prefix``.

        Most frequent first, then most recent. Store errors propagate.
        """
        if not limit or limit <= 0:
            limit = self.config.suggestion_default_limit
        limit = min(limit, self.config.suggestion_max_limit)

        return self.store.get_suggestions(prefix, limit, window_days=self.config.suggestion_window_days)

    def record_search(self, query: str, result_count: int, duration_ms: int,
                      searched_at: Optional[datetime] = None):
        """Append one search to the history. Store errors propagate."""
        self.store.record_search(query, result_count, duration_ms, searched_at=searched_at)
