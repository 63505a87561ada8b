"""Thread-safe SQLite connection pool for the schema registry database."""

import sqlite3
import threading
import logging
from queue import Queue, Empty
from contextlib import contextmanager
from typing import Generator, Dict, Any

from .transaction import TransactionManager

logger = logging.getLogger(__name__)


class ConnectionPool:
    """Hands out SQLite connections shared across threads.

    Connections are created lazily up to ``max_connections`` and returned to
    the pool after use. A connection whose block raised is closed rather
    than reused, since it may hold an open transaction or an interrupt.
    """

    def __init__(self, db_path: str, max_connections: int = 5, timeout: int = 10,
                 busy_timeout_ms: int = 5000):
        """
        Args:
            db_path: Path to the SQLite database file
            max_connections: Upper bound on open connections
            timeout: Seconds to wait for a free connection
            busy_timeout_ms: SQLite busy timeout for locked databases
        """
        self.db_path = db_path
        self.max_connections = max_connections
        self.timeout = timeout
        self.busy_timeout_ms = busy_timeout_ms
        self._pool: Queue = Queue(maxsize=max_connections)
        self._lock = threading.Lock()
        self._created = 0
        self._closed = False

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        # WAL lets searches read while a version is being reindexed
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        return conn

    def _acquire(self) -> sqlite3.Connection:
        try:
            return self._pool.get_nowait()
        except Empty:
            pass

        with self._lock:
            if self._created < self.max_connections:
                conn = self._create_connection()
                self._created += 1
                logger.debug(f"Opened connection {self._created}/{self.max_connections} to {self.db_path}")
                return conn

        logger.debug(f"Connection pool exhausted, waiting up to {self.timeout}s")
        try:
            return self._pool.get(timeout=self.timeout)
        except Empty:
            raise TimeoutError(
                f"No connection available after {self.timeout}s "
                f"(max_connections={self.max_connections})"
            )

    def _discard(self, conn: sqlite3.Connection):
        try:
            conn.close()
        except sqlite3.Error as e:
            logger.warning(f"Error closing discarded connection: {e}")
        with self._lock:
            self._created -= 1

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection for the duration of the block.

        Raises:
            RuntimeError: If the pool is closed
            TimeoutError: If no connection frees up in time
        """
        if self._closed:
            raise RuntimeError("Connection pool is closed")

        conn = self._acquire()
        try:
            yield conn
        except Exception:
            self._discard(conn)
            raise

        if self._closed:
            conn.close()
        else:
            self._pool.put(conn)

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection and run the block in one transaction."""
        with self.get_connection() as conn:
            with TransactionManager(conn).transaction() as tx_conn:
                yield tx_conn

    def close(self):
        """Close every pooled connection."""
        self._closed = True

        while True:
            try:
                conn = self._pool.get_nowait()
            except Empty:
                break
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.error(f"Error closing connection: {e}")

        logger.info(f"Connection pool for {self.db_path} closed ({self._created} connections opened)")

    def get_pool_stats(self) -> Dict[str, Any]:
        return {
            'max_connections': self.max_connections,
            'created_connections': self._created,
            'available_connections': self._pool.qsize(),
            'in_use_connections': self._created - self._pool.qsize(),
            'is_closed': self._closed
        }

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
