"""Application layer shared by the CLI, the MCP server and the task worker."""

from .discovery import ProtoFileDiscovery
from .context import ProtoSearchApp

__all__ = [
    'ProtoFileDiscovery',
    'ProtoSearchApp'
]
