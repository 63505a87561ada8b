"""Models for the search service."""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Tuple

# Closed vocabulary of indexed entity kinds
ENTITY_TYPES = ('message', 'field', 'enum', 'enum_value', 'service', 'method')


@dataclass
class SearchEntity:
    """One indexed schema element."""
    version_id: int
    entity_type: str
    entity_name: str
    full_path: str
    parent_path: str = ''
    proto_file_path: str = ''
    line_number: int = 0
    description: str = ''
    comments: str = ''
    field_type: str = ''
    field_number: int = 0
    is_repeated: bool = False
    is_optional: bool = False
    method_input_type: str = ''
    method_output_type: str = ''
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, str]:
        """Identity of the entity within its version."""
        return (self.full_path, self.entity_type)


@dataclass
class EntitySearchResult:
    """A search hit joined with its module and version."""
    id: int
    entity_type: str
    entity_name: str
    full_path: str
    module_name: str
    version: str
    parent_path: str = ''
    proto_file_path: str = ''
    line_number: int = 0
    description: str = ''
    comments: str = ''
    field_type: str = ''
    field_number: int = 0
    is_repeated: bool = False
    is_optional: bool = False
    method_input_type: str = ''
    method_output_type: str = ''
    rank: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization, omitting empty optionals."""
        result = {
            'id': self.id,
            'entity_type': self.entity_type,
            'entity_name': self.entity_name,
            'full_path': self.full_path,
            'module_name': self.module_name,
            'version': self.version,
            'rank': self.rank
        }
        optional = {
            'parent_path': self.parent_path,
            'proto_file_path': self.proto_file_path,
            'line_number': self.line_number,
            'description': self.description,
            'comments': self.comments,
            'field_type': self.field_type,
            'field_number': self.field_number,
            'is_repeated': self.is_repeated,
            'is_optional': self.is_optional,
            'method_input_type': self.method_input_type,
            'method_output_type': self.method_output_type,
            'metadata': self.metadata
        }
        result.update({k: v for k, v in optional.items() if v})
        return result


@dataclass
class SearchRequest:
    query: str = ''
    limit: int = 0
    offset: int = 0


@dataclass
class SearchResponse:
    """Ranked, paginated search results."""
    results: List[EntitySearchResult]
    total_count: int
    query: str
    parsed_query: Optional[Any] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self, include_parsed: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            'results': [r.to_dict() for r in self.results],
            'total_count': self.total_count,
            'query': self.query
        }
        if include_parsed and self.parsed_query is not None:
            result['parsed_query'] = self.parsed_query.to_dict()
        if self.warnings:
            result['warnings'] = list(self.warnings)
        return result


@dataclass
class IndexDiagnostic:
    """A file that was skipped while indexing a version."""
    file_path: str
    stage: str  # 'read', 'parse' or 'duplicate'
    message: str


@dataclass
class IndexResult:
    """Outcome of indexing one version."""
    module_name: str
    version: str
    version_id: int
    entity_count: int = 0
    file_count: int = 0
    diagnostics: List[IndexDiagnostic] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'module_name': self.module_name,
            'version': self.version,
            'version_id': self.version_id,
            'entity_count': self.entity_count,
            'file_count': self.file_count,
            'diagnostics': [
                {'file_path': d.file_path, 'stage': d.stage, 'message': d.message}
                for d in self.diagnostics
            ]
        }


@dataclass
class ReindexSummary:
    """Outcome of a full reindex pass."""
    indexed: List[IndexResult] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)
    cancelled: bool = False

    def add_failure(self, module_name: str, version: str, error: str):
        """Record a version that could not be indexed."""
        self.failed.append({
            'module_name': module_name,
            'version': version,
            'error': error
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            'indexed_versions': len(self.indexed),
            'indexed_entities': sum(r.entity_count for r in self.indexed),
            'failed': list(self.failed),
            'cancelled': self.cancelled
        }
