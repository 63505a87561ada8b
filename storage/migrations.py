"""Schema migrations for the schema registry database."""

import logging
import sqlite3
from typing import List, Callable, Tuple, Optional

logger = logging.getLogger(__name__)

# bm25 column weights, in search_entities_fts column order
FTS_COLUMN_WEIGHTS = (10.0, 5.0, 2.0, 1.0, 2.0, 2.0, 2.0)

FTS_COLUMNS = (
    'entity_name',
    'full_path',
    'description',
    'comments',
    'field_type',
    'method_input_type',
    'method_output_type',
)


class SchemaMigrator:
    """Brings a database up to the current schema version.

    Each migration runs once; applied versions are recorded in the
    ``schema_version`` table.
    """

    def __init__(self, db_connection: sqlite3.Connection):
        self.db = db_connection

    @property
    def migrations(self) -> List[Tuple[str, Callable[[], None]]]:
        return [
            ('1', self._migrate_to_v1_registry),
            ('2', self._migrate_to_v2_entities),
            ('3', self._migrate_to_v3_search_history),
        ]

    def current_version(self) -> Optional[str]:
        cursor = self.db.execute(
            "SELECT version FROM schema_version ORDER BY CAST(version AS INTEGER) DESC LIMIT 1"
        )
        row = cursor.fetchone()
        return row[0] if row else None

    def migrate_to_current_version(self) -> List[str]:
        """
        Apply every pending migration.

        Returns:
            Versions applied by this call
        """
        self.db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version TEXT PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        self.db.commit()

        applied = []
        for version, migrate in self.migrations:
            cursor = self.db.execute("SELECT 1 FROM schema_version WHERE version = ?", (version,))
            if cursor.fetchone():
                continue

            logger.info(f"Applying schema migration {version}")
            try:
                self.db.execute("BEGIN")
                migrate()
                self.db.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
                self.db.commit()
            except sqlite3.Error as e:
                logger.error(f"Schema migration {version} failed: {e}", exc_info=True)
                self.db.rollback()
                raise
            applied.append(version)

        return applied

    def _migrate_to_v1_registry(self):
        """Modules, versions, their files and declared dependencies."""
        self.db.execute("""
            CREATE TABLE modules (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                description TEXT NOT NULL DEFAULT '',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        self.db.execute("""
            CREATE TABLE versions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                module_id INTEGER NOT NULL REFERENCES modules(id) ON DELETE CASCADE,
                version TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (module_id, version)
            )
        """)
        # content is NULL when a declared file was never uploaded
        self.db.execute("""
            CREATE TABLE version_files (
                version_id INTEGER NOT NULL REFERENCES versions(id) ON DELETE CASCADE,
                path TEXT NOT NULL,
                content TEXT,
                PRIMARY KEY (version_id, path)
            )
        """)
        self.db.execute("""
            CREATE TABLE version_dependencies (
                version_id INTEGER NOT NULL REFERENCES versions(id) ON DELETE CASCADE,
                module_name TEXT NOT NULL,
                PRIMARY KEY (version_id, module_name)
            )
        """)

    def _migrate_to_v2_entities(self):
        """Search entities, their FTS5 index and the version import table."""
        self.db.execute("""
            CREATE TABLE search_entities (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                version_id INTEGER NOT NULL REFERENCES versions(id) ON DELETE CASCADE,
                entity_type TEXT NOT NULL,
                entity_name TEXT NOT NULL,
                full_path TEXT NOT NULL,
                parent_path TEXT NOT NULL DEFAULT '',
                proto_file_path TEXT NOT NULL DEFAULT '',
                line_number INTEGER NOT NULL DEFAULT 0,
                description TEXT NOT NULL DEFAULT '',
                comments TEXT NOT NULL DEFAULT '',
                field_type TEXT NOT NULL DEFAULT '',
                field_number INTEGER NOT NULL DEFAULT 0,
                is_repeated INTEGER NOT NULL DEFAULT 0,
                is_optional INTEGER NOT NULL DEFAULT 0,
                method_input_type TEXT NOT NULL DEFAULT '',
                method_output_type TEXT NOT NULL DEFAULT '',
                metadata TEXT NOT NULL DEFAULT '{}',
                indexed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (version_id, full_path, entity_type)
            )
        """)
        self.db.execute("CREATE INDEX idx_entities_version ON search_entities(version_id)")
        self.db.execute("CREATE INDEX idx_entities_type ON search_entities(entity_type)")
        self.db.execute("CREATE INDEX idx_entities_field_type ON search_entities(field_type)")
        self.db.execute("CREATE INDEX idx_entities_name ON search_entities(entity_name)")

        columns = ', '.join(FTS_COLUMNS)
        new_values = ', '.join(f"new.{c}" for c in FTS_COLUMNS)
        old_values = ', '.join(f"old.{c}" for c in FTS_COLUMNS)

        # '_' is part of a token so snake_case names stay whole
        self.db.execute(f"""
            CREATE VIRTUAL TABLE search_entities_fts USING fts5(
                {columns},
                content='search_entities',
                content_rowid='id',
                tokenize = 'unicode61 tokenchars ''_'''
            )
        """)
        self.db.execute(f"""
            CREATE TRIGGER search_entities_ai AFTER INSERT ON search_entities BEGIN
                INSERT INTO search_entities_fts(rowid, {columns})
                VALUES (new.id, {new_values});
            END
        """)
        self.db.execute(f"""
            CREATE TRIGGER search_entities_ad AFTER DELETE ON search_entities BEGIN
                INSERT INTO search_entities_fts(search_entities_fts, rowid, {columns})
                VALUES ('delete', old.id, {old_values});
            END
        """)
        self.db.execute(f"""
            CREATE TRIGGER search_entities_au AFTER UPDATE ON search_entities BEGIN
                INSERT INTO search_entities_fts(search_entities_fts, rowid, {columns})
                VALUES ('delete', old.id, {old_values});
                INSERT INTO search_entities_fts(rowid, {columns})
                VALUES (new.id, {new_values});
            END
        """)

        self.db.execute("""
            CREATE TABLE version_imports (
                version_id INTEGER NOT NULL REFERENCES versions(id) ON DELETE CASCADE,
                import_path TEXT NOT NULL,
                PRIMARY KEY (version_id, import_path)
            )
        """)

    def _migrate_to_v3_search_history(self):
        """Append-only query log backing suggestions."""
        self.db.execute("""
            CREATE TABLE search_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                query TEXT NOT NULL,
                result_count INTEGER NOT NULL DEFAULT 0,
                duration_ms INTEGER NOT NULL DEFAULT 0,
                searched_at TEXT NOT NULL
            )
        """)
        self.db.execute("CREATE INDEX idx_history_query ON search_history(query)")
        self.db.execute("CREATE INDEX idx_history_searched_at ON search_history(searched_at)")
