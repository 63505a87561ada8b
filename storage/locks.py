"""Per-version index locks.

Reindexing one version from two callers at once interleaves deletes and
inserts. ``VersionLockManager`` serializes it: a ``threading.Lock`` per
version inside the process, and a ``filelock`` lock file per version across
processes when a lock directory is configured.
"""

import os
import threading
import logging
from contextlib import contextmanager
from typing import Dict, Optional, Generator

from filelock import FileLock, Timeout

from search.errors import IndexingError

logger = logging.getLogger(__name__)


class VersionLockManager:
    """Hands out exclusive locks keyed by version id."""

    def __init__(self, lock_dir: Optional[str] = None, timeout: float = 60.0):
        """
        Args:
            lock_dir: Directory for cross-process lock files; None keeps
                locking in-process only
            timeout: Seconds to wait for a lock; negative waits forever
        """
        self.lock_dir = lock_dir
        self.timeout = timeout
        self._locks: Dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

        if lock_dir:
            os.makedirs(lock_dir, exist_ok=True)

    def _thread_lock(self, version_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(version_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[version_id] = lock
            return lock

    def lock_path(self, version_id: int) -> Optional[str]:
        if not self.lock_dir:
            return None
        return os.path.join(self.lock_dir, f"version-{version_id}.lock")

    @contextmanager
    def lock(self, version_id: int) -> Generator[None, None, None]:
        """
        Hold the version's lock for the duration of the block.

        Raises:
            IndexingError: With stage ``lock`` if the lock is not acquired in time
        """
        thread_lock = self._thread_lock(version_id)
        if not thread_lock.acquire(timeout=self.timeout):
            raise IndexingError('lock', f"version {version_id} is already being indexed")

        try:
            path = self.lock_path(version_id)
            if path is None:
                yield
                return

            try:
                file_lock = FileLock(path, timeout=self.timeout)
                file_lock.acquire()
            except Timeout as e:
                raise IndexingError(
                    'lock', f"version {version_id} is locked by another process ({path})", e
                )

            try:
                logger.debug(f"Acquired index lock {path}")
                yield
            finally:
                file_lock.release()
        finally:
            thread_lock.release()
