"""Registry records for the storage layer."""

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any


@dataclass
class Module:
    """A named schema module."""
    name: str
    description: str = ''
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description
        }


@dataclass
class FileInfo:
    """A schema file declared by a version."""
    path: str


@dataclass
class ProtoFile:
    """A schema file with its content."""
    path: str
    content: str


@dataclass
class Version:
    """A published version of a module."""
    module_name: str
    version: str
    id: Optional[int] = None
    files: List[FileInfo] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'module_name': self.module_name,
            'version': self.version,
            'files': [f.path for f in self.files],
            'dependencies': list(self.dependencies)
        }
