"""Discovery of .proto schema files on disk for version registration."""

import fnmatch
import logging
import os
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class ProtoFileDiscovery:
    """Finds schema files below a directory."""

    DEFAULT_EXCLUDES = [
        '.git/*', 'node_modules/*', 'vendor/*', 'build/*', 'dist/*', '.protosearch/*'
    ]

    PROTO_EXTENSIONS = ('.proto',)

    def __init__(self, root: str):
        """
        Args:
            root: Directory the discovered paths are relative to
        """
        self.root = os.path.abspath(root)

    def discover_files(self, exclude_patterns: Optional[List[str]] = None) -> List[str]:
        """
        Walk the root and return schema file paths relative to it.

        Args:
            exclude_patterns: fnmatch patterns added to the defaults

        Returns:
            Sorted relative paths using '/' separators
        """
        excludes = self.DEFAULT_EXCLUDES + list(exclude_patterns or [])
        discovered = []

        for current, dirs, filenames in os.walk(self.root):
            rel_dir = os.path.relpath(current, self.root)
            dirs[:] = [
                d for d in dirs
                if not self._should_exclude_dir(self._relative(rel_dir, d), excludes)
            ]

            for filename in filenames:
                if not filename.lower().endswith(self.PROTO_EXTENSIONS):
                    continue
                rel_path = self._relative(rel_dir, filename)
                if any(fnmatch.fnmatch(rel_path, pattern) for pattern in excludes):
                    continue
                discovered.append(rel_path)

        logger.info(f"Discovered {len(discovered)} schema file(s) under {self.root}")
        return sorted(discovered)

    def load_files(self, paths: List[str]) -> Dict[str, Optional[str]]:
        """Read discovered files; unreadable ones map to None."""
        contents: Dict[str, Optional[str]] = {}
        for path in paths:
            full_path = os.path.join(self.root, *path.split('/'))
            try:
                with open(full_path, 'r', encoding='utf-8') as f:
                    contents[path] = f.read()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Could not read {full_path}: {e}")
                contents[path] = None
        return contents

    @staticmethod
    def _relative(rel_dir: str, name: str) -> str:
        return name if rel_dir == '.' else f"{rel_dir.replace(os.sep, '/')}/{name}"

    @staticmethod
    def _should_exclude_dir(dir_path: str, exclude_patterns: List[str]) -> bool:
        for pattern in exclude_patterns:
            if pattern.endswith('/*') and fnmatch.fnmatch(dir_path, pattern[:-2]):
                return True
            if fnmatch.fnmatch(dir_path, pattern):
                return True
        return False
