"""Abstract storage interfaces for the schema search subsystem."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Iterable

from search.models import SearchEntity, EntitySearchResult
from search.query_compiler import CompiledQuery
from .models import Module, Version, ProtoFile


class IndexStore(ABC):
    """Storage contract for the entity index and search history.

    Implementations own the full-text engine. Callers hand over compiled
    queries and entity batches; no query language leaks through this
    interface.
    """

    # Version resolution
    @abstractmethod
    def resolve_version_id(self, module_name: str, version: str) -> Optional[int]:
        """Resolve a (module, version) pair to its identifier.

        Returns:
            The version identifier, or None if the version is not registered
        """
        pass

    # Entity writes
    @abstractmethod
    def delete_entities(self, version_id: int) -> int:
        """Delete every entity of a version.

        Returns:
            Number of entities deleted
        """
        pass

    @abstractmethod
    def insert_entities(self, entities: List[SearchEntity]) -> int:
        """Insert one batch of entities.

        Returns:
            Number of entities inserted
        """
        pass

    @abstractmethod
    def replace_entities(self, version_id: int, entities: List[SearchEntity],
                         imports: Optional[Iterable[str]] = None,
                         batch_size: int = 100, atomic: bool = True) -> int:
        """Replace all entities of a version.

        Deletes the version's entities, then inserts the new ones in batches
        of ``batch_size``. With ``atomic`` the delete and every batch share
        one transaction; otherwise each step commits on its own.

        Args:
            version_id: Version whose entities are replaced
            entities: The complete new entity set
            imports: Import paths declared by the version's files
            batch_size: Entities per insert batch
            atomic: Run the whole replacement in one transaction

        Returns:
            Number of entities inserted

        Raises:
            IndexingError: With stage ``clear`` or ``insert``
        """
        pass

    # Search
    @abstractmethod
    def search_entities(self, query: CompiledQuery, limit: int, offset: int = 0,
                        timeout_ms: Optional[int] = None) -> List[EntitySearchResult]:
        """Execute a compiled query and return one page of results.

        Results are ordered by relevance when the query has a full-text
        expression, otherwise by entity name then module name.

        Raises:
            SearchTimeoutError: If the query exceeds ``timeout_ms``
        """
        pass

    @abstractmethod
    def count_entities(self, query: CompiledQuery, timeout_ms: Optional[int] = None) -> int:
        """Count all entities matching a compiled query."""
        pass

    # History
    @abstractmethod
    def record_search(self, query: str, result_count: int, duration_ms: int,
                      searched_at: Optional[datetime] = None) -> None:
        """Append one entry to the search history."""
        pass

    @abstractmethod
    def get_suggestions(self, prefix: str, limit: int, window_days: int = 30) -> List[str]:
        """Return prior successful queries starting with ``prefix``.

        Ordered by frequency, then by most recent use.
        """
        pass


class RegistryReader(ABC):
    """Read access to registered modules, versions and schema files."""

    @abstractmethod
    def list_modules(self) -> List[Module]:
        pass

    @abstractmethod
    def list_versions(self, module_name: str) -> List[Version]:
        pass

    @abstractmethod
    def get_version(self, module_name: str, version: str) -> Optional[Version]:
        """Get a version with its declared files and dependencies."""
        pass

    @abstractmethod
    def get_file(self, version_id: int, path: str) -> Optional[ProtoFile]:
        """Get a schema file's content.

        Returns:
            The file, or None if it is not declared or has no content
        """
        pass
