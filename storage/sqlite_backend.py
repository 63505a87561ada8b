"""SQLite implementation of the index store and registry interfaces."""

import json
import os
import re
import sqlite3
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Dict, Any, Tuple, Iterable, Mapping

from search.errors import IndexingError, SearchTimeoutError
from search.models import SearchEntity, EntitySearchResult
from search.query_compiler import (
    CompiledQuery, ExpressionTerm, FilterPredicate, unsanitize_term, wildcard_to_like
)
from .backend import IndexStore, RegistryReader
from .connection_pool import ConnectionPool
from .migrations import SchemaMigrator, FTS_COLUMN_WEIGHTS
from .models import Module, Version, FileInfo, ProtoFile
from .transaction import BatchTransaction, chunked

logger = logging.getLogger(__name__)

HISTORY_TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'

_WORD_PATTERN = re.compile(r'\w+', re.UNICODE)


class SqliteBackend(IndexStore, RegistryReader):
    """SQLite storage for the schema registry and its search index.

    Entities live in ``search_entities``; an external-content FTS5 table
    kept in sync by triggers provides matching and bm25 ranking.
    """

    # Columns addressable by structured predicates
    _PREDICATE_COLUMNS = {
        FilterPredicate.ENTITY_TYPE: 'e.entity_type',
        FilterPredicate.FIELD_TYPE: 'e.field_type',
        FilterPredicate.MODULE: 'm.name',
        FilterPredicate.VERSION: 'v.version',
        FilterPredicate.COMMENTS: 'e.comments',
    }

    _ENTITY_COLUMNS = (
        'version_id', 'entity_type', 'entity_name', 'full_path', 'parent_path',
        'proto_file_path', 'line_number', 'description', 'comments', 'field_type',
        'field_number', 'is_repeated', 'is_optional', 'method_input_type',
        'method_output_type', 'metadata'
    )

    _INSERT_ENTITY_SQL = (
        f"INSERT INTO search_entities ({', '.join(_ENTITY_COLUMNS)}) "
        f"VALUES ({', '.join('?' for _ in _ENTITY_COLUMNS)})"
    )

    def __init__(self, db_path: str, max_connections: int = 5, busy_timeout_ms: int = 5000):
        """
        Args:
            db_path: Path to the SQLite database file
            max_connections: Maximum number of pooled connections
            busy_timeout_ms: How long a writer waits on a locked database
        """
        self.db_path = db_path

        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self.connection_pool = ConnectionPool(
            db_path, max_connections=max_connections, busy_timeout_ms=busy_timeout_ms
        )
        self.ensure_schema()

    # Schema
    def ensure_schema(self) -> List[str]:
        """Apply pending migrations and return the versions applied."""
        with self.connection_pool.get_connection() as conn:
            applied = SchemaMigrator(conn).migrate_to_current_version()
        if applied:
            logger.info(f"Applied schema migrations {applied} to {self.db_path}")
        return applied

    def get_schema_version(self) -> Optional[str]:
        with self.connection_pool.get_connection() as conn:
            return SchemaMigrator(conn).current_version()

    @contextmanager
    def _query_timeout(self, conn: sqlite3.Connection, timeout_ms: Optional[int] = None):
        """Interrupt the connection's statement once ``timeout_ms`` elapses.

        Raises:
            SearchTimeoutError: If the interrupt fired
        """
        if not timeout_ms or timeout_ms <= 0:
            yield conn
            return

        interrupted = threading.Event()

        def interrupt_query():
            logger.warning(f"Query timeout after {timeout_ms}ms, interrupting")
            interrupted.set()
            conn.interrupt()

        timer = threading.Timer(timeout_ms / 1000.0, interrupt_query)
        timer.start()
        try:
            yield conn
        except sqlite3.OperationalError as e:
            if interrupted.is_set():
                raise SearchTimeoutError(f"Query exceeded timeout of {timeout_ms}ms") from e
            raise
        finally:
            timer.cancel()

        if interrupted.is_set():
            raise SearchTimeoutError(f"Query exceeded timeout of {timeout_ms}ms")

    # Row conversion
    def _entity_to_row(self, entity: SearchEntity) -> Tuple:
        return (
            entity.version_id,
            entity.entity_type,
            entity.entity_name,
            entity.full_path,
            entity.parent_path or '',
            entity.proto_file_path or '',
            entity.line_number or 0,
            entity.description or '',
            entity.comments or '',
            entity.field_type or '',
            entity.field_number or 0,
            int(bool(entity.is_repeated)),
            int(bool(entity.is_optional)),
            entity.method_input_type or '',
            entity.method_output_type or '',
            json.dumps(entity.metadata or {}, sort_keys=True),
        )

    def _row_to_result(self, row: sqlite3.Row) -> EntitySearchResult:
        try:
            metadata = json.loads(row['metadata']) if row['metadata'] else {}
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Invalid metadata JSON for entity {row['id']}")
            metadata = {}

        return EntitySearchResult(
            id=row['id'],
            entity_type=row['entity_type'],
            entity_name=row['entity_name'],
            full_path=row['full_path'],
            module_name=row['module_name'],
            version=row['version'],
            parent_path=row['parent_path'],
            proto_file_path=row['proto_file_path'],
            line_number=row['line_number'],
            description=row['description'],
            comments=row['comments'],
            field_type=row['field_type'],
            field_number=row['field_number'],
            is_repeated=bool(row['is_repeated']),
            is_optional=bool(row['is_optional']),
            method_input_type=row['method_input_type'],
            method_output_type=row['method_output_type'],
            rank=row['rank'] or 0.0,
            metadata=metadata
        )

    # Query building
    def _build_fts5_query(self, terms: List[ExpressionTerm]) -> str:
        """Render compiled terms as an FTS5 MATCH expression.

        Each term becomes a prefix phrase of its word tokens (``"user"*``);
        a term without word characters is dropped together with its
        connector.
        """
        parts = []
        for term in terms:
            words = _WORD_PATTERN.findall(unsanitize_term(term.text))
            if not words:
                continue
            if parts:
                parts.append(term.connector or 'AND')
            parts.append('"' + ' '.join(words) + '"*')
        return ' '.join(parts)

    def _predicate_sql(self, predicate: FilterPredicate) -> Tuple[str, List[Any]]:
        values = list(predicate.values)

        if predicate.op == FilterPredicate.IN and not values:
            raise ValueError(f"predicate on {predicate.field} has no values")

        if predicate.field == FilterPredicate.IMPORTS:
            # A value matches the exact import path or its trailing segments
            clauses = []
            params: List[Any] = []
            for value in values:
                clauses.append("(vi.import_path = ? OR vi.import_path LIKE ? ESCAPE '\\')")
                params.extend([value, '%/' + wildcard_to_like(value)])
            return (
                "EXISTS (SELECT 1 FROM version_imports vi "
                f"WHERE vi.version_id = e.version_id AND ({' OR '.join(clauses)}))",
                params
            )

        if predicate.field == FilterPredicate.DEPENDS_ON:
            placeholders = ', '.join('?' for _ in values)
            return (
                "EXISTS (SELECT 1 FROM version_dependencies vd "
                f"WHERE vd.version_id = e.version_id AND vd.module_name IN ({placeholders}))",
                values
            )

        column = self._PREDICATE_COLUMNS.get(predicate.field)
        if column is None:
            raise ValueError(f"Unsupported predicate field: {predicate.field}")

        if predicate.op == FilterPredicate.IN:
            return f"{column} IN ({', '.join('?' for _ in values)})", values
        if predicate.op == FilterPredicate.EQ:
            return f"{column} = ?", values[:1]
        if predicate.op == FilterPredicate.LIKE:
            return f"{column} LIKE ? ESCAPE '\\'", values[:1]
        if predicate.op == FilterPredicate.NOT_EMPTY:
            return f"({column} IS NOT NULL AND {column} != '')", []

        raise ValueError(f"Unsupported predicate operator: {predicate.op}")

    def _build_query_body(self, query: CompiledQuery, fts_query: str) -> Tuple[str, List[Any]]:
        """Build the shared FROM/WHERE clause for search and count."""
        where: List[str] = []
        params: List[Any] = []

        if fts_query:
            from_clause = """
                FROM search_entities_fts
                JOIN search_entities e ON e.id = search_entities_fts.rowid
                JOIN versions v ON v.id = e.version_id
                JOIN modules m ON m.id = v.module_id
            """
            where.append("search_entities_fts MATCH ?")
            params.append(fts_query)
        else:
            from_clause = """
                FROM search_entities e
                JOIN versions v ON v.id = e.version_id
                JOIN modules m ON m.id = v.module_id
            """

        for predicate in query.predicates:
            clause, clause_params = self._predicate_sql(predicate)
            where.append(clause)
            params.extend(clause_params)

        sql = from_clause
        if where:
            sql += " WHERE " + " AND ".join(where)
        return sql, params

    # IndexStore: search
    def search_entities(self, query: CompiledQuery, limit: int, offset: int = 0,
                        timeout_ms: Optional[int] = None) -> List[EntitySearchResult]:
        fts_query = self._build_fts5_query(query.terms) if query.has_expression else ''
        if query.has_expression and not fts_query:
            # Terms survived sanitizing but hold no indexable token
            return []

        body, params = self._build_query_body(query, fts_query)

        if fts_query:
            weights = ', '.join(str(w) for w in FTS_COLUMN_WEIGHTS)
            rank_expr = f"-bm25(search_entities_fts, {weights})"
            order_by = "rank DESC, e.entity_name ASC, e.id ASC"
        else:
            rank_expr = "0.0"
            order_by = "e.entity_name ASC, m.name ASC, e.id ASC"

        sql = f"""
            SELECT e.*, m.name AS module_name, v.version AS version, {rank_expr} AS rank
            {body}
            ORDER BY {order_by}
            LIMIT ? OFFSET ?
        """

        with self.connection_pool.get_connection() as conn:
            with self._query_timeout(conn, timeout_ms):
                rows = conn.execute(sql, params + [limit, max(offset, 0)]).fetchall()

        return [self._row_to_result(row) for row in rows]

    def count_entities(self, query: CompiledQuery, timeout_ms: Optional[int] = None) -> int:
        fts_query = self._build_fts5_query(query.terms) if query.has_expression else ''
        if query.has_expression and not fts_query:
            return 0

        body, params = self._build_query_body(query, fts_query)

        with self.connection_pool.get_connection() as conn:
            with self._query_timeout(conn, timeout_ms):
                row = conn.execute(f"SELECT COUNT(*) AS count {body}", params).fetchone()
        return row['count']

    # IndexStore: writes
    def resolve_version_id(self, module_name: str, version: str) -> Optional[int]:
        with self.connection_pool.get_connection() as conn:
            row = conn.execute("""
                SELECT v.id FROM versions v
                JOIN modules m ON m.id = v.module_id
                WHERE m.name = ? AND v.version = ?
            """, (module_name, version)).fetchone()
        return row['id'] if row else None

    def delete_entities(self, version_id: int) -> int:
        try:
            with self.connection_pool.transaction() as conn:
                cursor = conn.execute("DELETE FROM search_entities WHERE version_id = ?", (version_id,))
                return cursor.rowcount
        except sqlite3.Error as e:
            logger.error(f"Failed to delete entities of version {version_id}: {e}")
            raise IndexingError('clear', str(e), e) from e

    def insert_entities(self, entities: List[SearchEntity]) -> int:
        rows = [self._entity_to_row(e) for e in entities]
        try:
            with self.connection_pool.transaction() as conn:
                conn.executemany(self._INSERT_ENTITY_SQL, rows)
        except sqlite3.Error as e:
            logger.error(f"Failed to insert {len(rows)} entities: {e}")
            raise IndexingError('insert', str(e), e) from e
        return len(rows)

    def _clear_version(self, conn: sqlite3.Connection, version_id: int,
                       imports: Optional[Iterable[str]]) -> int:
        cursor = conn.execute("DELETE FROM search_entities WHERE version_id = ?", (version_id,))
        conn.execute("DELETE FROM version_imports WHERE version_id = ?", (version_id,))
        import_rows = [(version_id, path) for path in sorted(set(imports or ()))]
        if import_rows:
            conn.executemany(
                "INSERT INTO version_imports (version_id, import_path) VALUES (?, ?)", import_rows
            )
        return cursor.rowcount

    def replace_entities(self, version_id: int, entities: List[SearchEntity],
                         imports: Optional[Iterable[str]] = None,
                         batch_size: int = 100, atomic: bool = True) -> int:
        rows = [self._entity_to_row(e) for e in entities]
        stage = 'clear'

        try:
            if atomic:
                with self.connection_pool.transaction() as conn:
                    deleted = self._clear_version(conn, version_id, imports)
                    stage = 'insert'
                    BatchTransaction(conn, batch_size).execute_batch(self._INSERT_ENTITY_SQL, rows)
            else:
                with self.connection_pool.transaction() as conn:
                    deleted = self._clear_version(conn, version_id, imports)
                stage = 'insert'
                for chunk in chunked(rows, batch_size):
                    with self.connection_pool.transaction() as conn:
                        conn.executemany(self._INSERT_ENTITY_SQL, chunk)
        except sqlite3.Error as e:
            logger.error(f"Replacing entities of version {version_id} failed during {stage}: {e}")
            raise IndexingError(stage, str(e), e) from e

        logger.debug(f"Version {version_id}: replaced {deleted} entities with {len(rows)}")
        return len(rows)

    # IndexStore: history
    def record_search(self, query: str, result_count: int, duration_ms: int,
                      searched_at: Optional[datetime] = None) -> None:
        searched_at = searched_at or datetime.now(timezone.utc)
        try:
            with self.connection_pool.transaction() as conn:
                conn.execute("""
                    INSERT INTO search_history (query, result_count, duration_ms, searched_at)
                    VALUES (?, ?, ?, ?)
                """, (query, result_count, duration_ms, searched_at.strftime(HISTORY_TIMESTAMP_FORMAT)))
        except sqlite3.Error as e:
            logger.error(f"Failed to record search history: {e}")
            raise

    def get_suggestions(self, prefix: str, limit: int, window_days: int = 30) -> List[str]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=window_days)
        prefix = prefix or ''

        try:
            with self.connection_pool.get_connection() as conn:
                rows = conn.execute("""
                    SELECT query, COUNT(*) AS frequency, MAX(searched_at) AS last_searched
                    FROM search_history
                    WHERE substr(query, 1, ?) = ?
                      AND result_count > 0
                      AND searched_at >= ?
                    GROUP BY query
                    ORDER BY frequency DESC, last_searched DESC
                    LIMIT ?
                """, (len(prefix), prefix, cutoff.strftime(HISTORY_TIMESTAMP_FORMAT), limit)).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to load suggestions for {prefix!r}: {e}")
            raise

        return [row['query'] for row in rows]

    # Registry
    def create_module(self, name: str, description: str = '') -> Module:
        """Register a module, or return it if it already exists."""
        with self.connection_pool.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO modules (name, description) VALUES (?, ?)",
                (name, description)
            )
            row = conn.execute("SELECT id, name, description FROM modules WHERE name = ?", (name,)).fetchone()
        return Module(id=row['id'], name=row['name'], description=row['description'])

    def create_version(self, module_name: str, version: str,
                       files: Mapping[str, Optional[str]],
                       dependencies: Optional[Iterable[str]] = None) -> Version:
        """
        Register a version with its schema files and module dependencies.

        Registering an existing version replaces its files and dependencies.

        Args:
            module_name: Owning module, which must already exist
            version: Version label
            files: File path mapped to content; None declares a missing file
            dependencies: Names of modules this version depends on

        Raises:
            LookupError: If the module is not registered
        """
        dependencies = sorted(set(dependencies or ()))

        with self.connection_pool.transaction() as conn:
            module_row = conn.execute("SELECT id FROM modules WHERE name = ?", (module_name,)).fetchone()
            if module_row is None:
                raise LookupError(f"Module not found: {module_name}")

            conn.execute(
                "INSERT OR IGNORE INTO versions (module_id, version) VALUES (?, ?)",
                (module_row['id'], version)
            )
            version_id = conn.execute(
                "SELECT id FROM versions WHERE module_id = ? AND version = ?",
                (module_row['id'], version)
            ).fetchone()['id']

            conn.execute("DELETE FROM version_files WHERE version_id = ?", (version_id,))
            conn.execute("DELETE FROM version_dependencies WHERE version_id = ?", (version_id,))
            conn.executemany(
                "INSERT INTO version_files (version_id, path, content) VALUES (?, ?, ?)",
                [(version_id, path, content) for path, content in sorted(files.items())]
            )
            conn.executemany(
                "INSERT INTO version_dependencies (version_id, module_name) VALUES (?, ?)",
                [(version_id, dep) for dep in dependencies]
            )

        logger.info(f"Registered {module_name}@{version} with {len(files)} file(s)")
        return Version(
            id=version_id,
            module_name=module_name,
            version=version,
            files=[FileInfo(path) for path in sorted(files)],
            dependencies=dependencies
        )

    def list_modules(self) -> List[Module]:
        with self.connection_pool.get_connection() as conn:
            rows = conn.execute("SELECT id, name, description FROM modules ORDER BY name").fetchall()
        return [Module(id=r['id'], name=r['name'], description=r['description']) for r in rows]

    def list_versions(self, module_name: str) -> List[Version]:
        """List a module's versions in registration order, without files."""
        with self.connection_pool.get_connection() as conn:
            rows = conn.execute("""
                SELECT v.id, v.version FROM versions v
                JOIN modules m ON m.id = v.module_id
                WHERE m.name = ?
                ORDER BY v.id
            """, (module_name,)).fetchall()
        return [Version(id=r['id'], module_name=module_name, version=r['version']) for r in rows]

    def get_version(self, module_name: str, version: str) -> Optional[Version]:
        with self.connection_pool.get_connection() as conn:
            row = conn.execute("""
                SELECT v.id FROM versions v
                JOIN modules m ON m.id = v.module_id
                WHERE m.name = ? AND v.version = ?
            """, (module_name, version)).fetchone()
            if row is None:
                return None

            files = conn.execute(
                "SELECT path FROM version_files WHERE version_id = ? ORDER BY path", (row['id'],)
            ).fetchall()
            deps = conn.execute(
                "SELECT module_name FROM version_dependencies WHERE version_id = ? ORDER BY module_name",
                (row['id'],)
            ).fetchall()

        return Version(
            id=row['id'],
            module_name=module_name,
            version=version,
            files=[FileInfo(f['path']) for f in files],
            dependencies=[d['module_name'] for d in deps]
        )

    def get_file(self, version_id: int, path: str) -> Optional[ProtoFile]:
        with self.connection_pool.get_connection() as conn:
            row = conn.execute(
                "SELECT path, content FROM version_files WHERE version_id = ? AND path = ?",
                (version_id, path)
            ).fetchone()
        if row is None or row['content'] is None:
            return None
        return ProtoFile(path=row['path'], content=row['content'])

    def get_storage_info(self) -> Dict[str, Any]:
        """Row counts and pool statistics for status output."""
        info: Dict[str, Any] = {
            'db_path': self.db_path,
            'db_size_bytes': os.path.getsize(self.db_path) if os.path.exists(self.db_path) else 0,
            'schema_version': self.get_schema_version(),
            'connection_pool_stats': self.connection_pool.get_pool_stats()
        }
        with self.connection_pool.get_connection() as conn:
            for table in ('modules', 'versions', 'search_entities', 'search_history'):
                info[f'{table}_count'] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        return info

    def close(self):
        """Close the backend and its connections."""
        self.connection_pool.close()
