"""Wires configuration, storage and services together for the outer surfaces."""

import logging
from typing import Any, Dict, Iterable, Optional

from config.config_manager import (
    ConfigManager,
    DEFAULT_CONFIG_PATH,
    indexer_config_from,
    load_config_with_env_override,
    search_config_from
)
from search.indexer import Indexer
from search.search_service import SearchService
from storage.models import Version
from storage.sqlite_backend import SqliteBackend
from .discovery import ProtoFileDiscovery

logger = logging.getLogger(__name__)


class ProtoSearchApp:
    """One backend shared by the search service and the indexer."""

    def __init__(self, config: Dict[str, Any], backend: Optional[SqliteBackend] = None):
        self.config = config
        self.backend = backend or SqliteBackend(
            config['database_path'],
            busy_timeout_ms=max(config['search']['query_timeout_ms'], 1000)
        )
        self.search_service = SearchService(self.backend, config=search_config_from(config))
        self.indexer = Indexer(self.backend, self.backend, config=indexer_config_from(config))

    @classmethod
    def from_config_file(cls, config_path: str = DEFAULT_CONFIG_PATH) -> 'ProtoSearchApp':
        """Build the application from a config file plus environment overrides."""
        config = load_config_with_env_override(ConfigManager(config_path))
        return cls(config)

    def register_directory(self, module_name: str, version: str, directory: str,
                           dependencies: Optional[Iterable[str]] = None,
                           description: str = '',
                           exclude_patterns: Optional[Iterable[str]] = None) -> Version:
        """
        Register every schema file below ``directory`` as one version.

        Raises:
            ValueError: If the directory holds no schema files
        """
        discovery = ProtoFileDiscovery(directory)
        paths = discovery.discover_files(list(exclude_patterns or []))
        if not paths:
            raise ValueError(f"No .proto files found under {directory}")

        self.backend.create_module(module_name, description)
        return self.backend.create_version(
            module_name, version, discovery.load_files(paths), dependencies
        )

    def close(self):
        self.backend.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
