"""Transaction helpers for the SQLite index store."""

import sqlite3
import logging
from contextlib import contextmanager
from typing import Optional, Generator, Callable, Sequence, Iterator

logger = logging.getLogger(__name__)


class TransactionManager:
    """Runs a block in a transaction, or in a savepoint when one is open.

    SQLite has no nested transactions; savepoints give the inner block its
    own rollback scope while the outer transaction decides the commit.
    """

    def __init__(self, connection: sqlite3.Connection):
        self.connection = connection
        self._savepoint_counter = 0

    @contextmanager
    def transaction(self, name: Optional[str] = None) -> Generator[sqlite3.Connection, None, None]:
        """Open a transaction or savepoint around the block.

        Args:
            name: Optional label used in the savepoint name and log messages

        Yields:
            The managed connection
        """
        label = f" ({name})" if name else ''

        if not self.connection.in_transaction:
            self.connection.execute("BEGIN")
            try:
                yield self.connection
                self.connection.commit()
                logger.debug(f"Committed transaction{label}")
            except Exception as e:
                logger.error(f"Rolling back transaction{label}: {e}")
                self.connection.rollback()
                raise
            return

        self._savepoint_counter += 1
        savepoint = f"sp_{name or 'nested'}_{self._savepoint_counter}"
        self.connection.execute(f"SAVEPOINT {savepoint}")
        try:
            yield self.connection
            self.connection.execute(f"RELEASE SAVEPOINT {savepoint}")
        except Exception as e:
            logger.error(f"Rolling back to savepoint {savepoint}: {e}")
            self.connection.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
            self.connection.execute(f"RELEASE SAVEPOINT {savepoint}")
            raise


def chunked(rows: Sequence, size: int) -> Iterator[Sequence]:
    """Split rows into consecutive chunks of at most ``size`` items."""
    if size <= 0:
        raise ValueError(f"batch size must be positive, got {size}")
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


class BatchTransaction:
    """Executes a parameterized statement over rows in fixed-size batches.

    All batches run inside one transaction (a savepoint if the connection is
    already in one), so a failing batch leaves no partial writes behind.
    """

    def __init__(self, connection: sqlite3.Connection, batch_size: int = 100):
        self.connection = connection
        self.batch_size = batch_size
        self.total_processed = 0

    def execute_batch(self, query: str, rows: Sequence,
                      progress_callback: Optional[Callable[[int, int], None]] = None) -> int:
        """
        Execute ``query`` once per row, ``batch_size`` rows at a time.

        Args:
            query: SQL statement with placeholders
            rows: Parameter tuples or dicts
            progress_callback: Optional callback(processed, total)

        Returns:
            Number of rows processed
        """
        total = len(rows)

        with TransactionManager(self.connection).transaction("batch"):
            for chunk in chunked(rows, self.batch_size):
                self.connection.executemany(query, chunk)
                self.total_processed += len(chunk)

                if progress_callback:
                    progress_callback(self.total_processed, total)

        return self.total_processed
