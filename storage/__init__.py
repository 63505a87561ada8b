"""Storage layer for the schema registry and its search index."""

from .backend import IndexStore, RegistryReader
from .models import Module, Version, FileInfo, ProtoFile
from .sqlite_backend import SqliteBackend
from .connection_pool import ConnectionPool
from .locks import VersionLockManager
from .transaction import TransactionManager, BatchTransaction

__all__ = [
    # Interfaces
    'IndexStore',
    'RegistryReader',

    # Registry records
    'Module',
    'Version',
    'FileInfo',
    'ProtoFile',

    # Implementations
    'SqliteBackend',

    # Utilities
    'ConnectionPool',
    'VersionLockManager',
    'TransactionManager',
    'BatchTransaction'
]
