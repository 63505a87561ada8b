"""Exceptions raised by the search subsystem."""

from typing import Optional


class SearchError(Exception):
    """Base class for search and indexing errors."""


class QueryParseError(SearchError, ValueError):
    """A query string contains an invalid filter clause."""


class VersionNotFoundError(SearchError, LookupError):
    """No registered version matches the requested module and version."""

    def __init__(self, module_name: str, version: str):
        self.module_name = module_name
        self.version = version
        super().__init__(f"Version not found: {module_name}@{version}")


class IndexingError(SearchError):
    """Writing a version's entities to the index store failed.

    ``stage`` names the step that failed: ``lock``, ``clear`` or ``insert``.
    """

    def __init__(self, stage: str, message: str, cause: Optional[Exception] = None):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} failed: {message}")


class SearchTimeoutError(SearchError, TimeoutError):
    """A backing store call exceeded its timeout."""
