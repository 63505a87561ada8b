"""Tests for connection pool and transaction helpers."""

import unittest
import tempfile
import shutil
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor

from storage.connection_pool import ConnectionPool
from storage.transaction import TransactionManager, BatchTransaction, chunked


class TestConnectionPool(unittest.TestCase):
    """Test ConnectionPool functionality."""

    def setUp(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = f"{self.temp_dir}/test.db"

    def tearDown(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_connection_pool_creation(self):
        """Test creating a connection pool."""
        pool = ConnectionPool(self.db_path, max_connections=3)

        self.assertEqual(pool.db_path, self.db_path)
        self.assertEqual(pool.max_connections, 3)
        self.assertFalse(pool._closed)

        pool.close()

    def test_connection_settings(self):
        """Connections use WAL, foreign keys and the configured busy timeout."""
        pool = ConnectionPool(self.db_path, busy_timeout_ms=1234)

        with pool.get_connection() as conn:
            self.assertIsInstance(conn, sqlite3.Connection)
            self.assertEqual(conn.execute("PRAGMA journal_mode").fetchone()[0], 'wal')
            self.assertEqual(conn.execute("PRAGMA foreign_keys").fetchone()[0], 1)
            self.assertEqual(conn.execute("PRAGMA busy_timeout").fetchone()[0], 1234)
            self.assertEqual(conn.execute("SELECT 1 AS one").fetchone()['one'], 1)

        pool.close()

    def test_connection_reuse(self):
        """Test that connections are reused."""
        pool = ConnectionPool(self.db_path, max_connections=1)

        with pool.get_connection() as conn1:
            conn1_id = id(conn1)

        with pool.get_connection() as conn2:
            conn2_id = id(conn2)

        # Should be the same connection object
        self.assertEqual(conn1_id, conn2_id)

        pool.close()

    def test_failed_block_discards_connection(self):
        """A connection whose block raised is not handed out again."""
        pool = ConnectionPool(self.db_path, max_connections=1)

        with self.assertRaises(RuntimeError):
            with pool.get_connection() as conn:
                failed_id = id(conn)
                raise RuntimeError("boom")

        self.assertEqual(pool.get_pool_stats()['created_connections'], 0)

        with pool.get_connection() as conn:
            self.assertNotEqual(id(conn), failed_id)
            self.assertEqual(conn.execute("SELECT 1").fetchone()[0], 1)

        pool.close()

    def test_max_connections_limit(self):
        """Test that pool respects max connections limit."""
        pool = ConnectionPool(self.db_path, max_connections=2, timeout=1)

        ctx1 = pool.get_connection()
        ctx1.__enter__()
        ctx2 = pool.get_connection()
        ctx2.__enter__()

        # A third connection must wait for the timeout
        start_time = time.time()
        with self.assertRaises(TimeoutError):
            with pool.get_connection():
                pass

        elapsed = time.time() - start_time
        self.assertGreaterEqual(elapsed, 1.0)

        ctx1.__exit__(None, None, None)
        ctx2.__exit__(None, None, None)
        pool.close()

    def test_concurrent_access(self):
        """Test thread-safe concurrent access."""
        pool = ConnectionPool(self.db_path, max_connections=5)

        with pool.transaction() as conn:
            conn.execute("CREATE TABLE test (id INTEGER PRIMARY KEY, value TEXT)")

        def worker(worker_id):
            for i in range(5):
                with pool.transaction() as conn:
                    conn.execute(
                        "INSERT INTO test (value) VALUES (?)",
                        (f"worker_{worker_id}_item_{i}",)
                    )

        with ThreadPoolExecutor(max_workers=10) as executor:
            futures = [executor.submit(worker, i) for i in range(10)]
            for future in futures:
                future.result()

        with pool.get_connection() as conn:
            count = conn.execute("SELECT COUNT(*) FROM test").fetchone()[0]
            self.assertEqual(count, 50)  # 10 workers * 5 items each

        pool.close()

    def test_transaction_context_manager(self):
        """Test transaction commit and rollback."""
        pool = ConnectionPool(self.db_path)

        with pool.transaction() as conn:
            conn.execute("CREATE TABLE test (id INTEGER PRIMARY KEY, value TEXT)")
            conn.execute("INSERT INTO test (value) VALUES ('test1')")
            conn.execute("INSERT INTO test (value) VALUES ('test2')")

        with self.assertRaises(sqlite3.OperationalError):
            with pool.transaction() as conn:
                conn.execute("INSERT INTO test (value) VALUES ('test3')")
                conn.execute("INVALID SQL")

        with pool.get_connection() as conn:
            self.assertEqual(conn.execute("SELECT COUNT(*) FROM test").fetchone()[0], 2)

        pool.close()

    def test_pool_stats(self):
        """Test connection pool statistics."""
        pool = ConnectionPool(self.db_path, max_connections=3)

        stats = pool.get_pool_stats()
        self.assertEqual(stats['max_connections'], 3)
        self.assertEqual(stats['created_connections'], 0)
        self.assertEqual(stats['available_connections'], 0)
        self.assertEqual(stats['in_use_connections'], 0)
        self.assertFalse(stats['is_closed'])

        ctx1 = pool.get_connection()
        ctx1.__enter__()

        stats = pool.get_pool_stats()
        self.assertEqual(stats['created_connections'], 1)
        self.assertEqual(stats['in_use_connections'], 1)

        ctx1.__exit__(None, None, None)

        stats = pool.get_pool_stats()
        self.assertEqual(stats['available_connections'], 1)
        self.assertEqual(stats['in_use_connections'], 0)

        pool.close()
        self.assertTrue(pool.get_pool_stats()['is_closed'])

    def test_context_manager_support(self):
        """Test using pool as context manager."""
        with ConnectionPool(self.db_path) as pool:
            with pool.get_connection() as conn:
                self.assertEqual(conn.execute("SELECT 1").fetchone()[0], 1)

        self.assertTrue(pool._closed)

    def test_closed_pool_error(self):
        """Test that closed pool raises error."""
        pool = ConnectionPool(self.db_path)
        pool.close()

        with self.assertRaises(RuntimeError) as ctx:
            with pool.get_connection():
                pass

        self.assertIn("closed", str(ctx.exception))


class TestTransactionHelpers(unittest.TestCase):
    """Test TransactionManager savepoints and batched execution."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.conn = sqlite3.connect(f"{self.temp_dir}/test.db")
        self.conn.execute("CREATE TABLE test (id INTEGER PRIMARY KEY, value TEXT UNIQUE)")
        self.conn.commit()

    def tearDown(self):
        self.conn.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def values(self):
        return [r[0] for r in self.conn.execute("SELECT value FROM test ORDER BY id")]

    def test_nested_block_uses_savepoint(self):
        manager = TransactionManager(self.conn)

        with manager.transaction():
            self.conn.execute("INSERT INTO test (value) VALUES ('outer')")
            with self.assertRaises(sqlite3.IntegrityError):
                with manager.transaction("inner"):
                    self.conn.execute("INSERT INTO test (value) VALUES ('inner')")
                    self.conn.execute("INSERT INTO test (value) VALUES ('outer')")

        # Only the inner block was rolled back
        self.assertEqual(self.values(), ['outer'])
        self.assertFalse(self.conn.in_transaction)

    def test_outer_rollback_discards_released_savepoint(self):
        manager = TransactionManager(self.conn)

        with self.assertRaises(ValueError):
            with manager.transaction():
                with manager.transaction("inner"):
                    self.conn.execute("INSERT INTO test (value) VALUES ('inner')")
                raise ValueError("abort")

        self.assertEqual(self.values(), [])

    def test_batch_transaction(self):
        progress = []
        batch = BatchTransaction(self.conn, batch_size=2)

        processed = batch.execute_batch(
            "INSERT INTO test (value) VALUES (?)",
            [('a',), ('b',), ('c',)],
            progress_callback=lambda done, total: progress.append((done, total))
        )

        self.assertEqual(processed, 3)
        self.assertEqual(progress, [(2, 3), (3, 3)])
        self.assertEqual(self.values(), ['a', 'b', 'c'])

    def test_failed_batch_leaves_no_rows(self):
        batch = BatchTransaction(self.conn, batch_size=1)

        with self.assertRaises(sqlite3.IntegrityError):
            batch.execute_batch("INSERT INTO test (value) VALUES (?)", [('a',), ('b',), ('a',)])

        self.assertEqual(self.values(), [])

    def test_chunked(self):
        self.assertEqual(list(chunked([1, 2, 3, 4, 5], 2)), [[1, 2], [3, 4], [5]])
        self.assertEqual(list(chunked([], 3)), [])
        with self.assertRaises(ValueError):
            list(chunked([1], 0))


if __name__ == '__main__':
    unittest.main()
