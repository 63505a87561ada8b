"""Tests for SQLite backend implementation."""

import unittest
import tempfile
import shutil
import os
from datetime import datetime, timedelta, timezone

from search.errors import IndexingError
from search.indexer import Indexer
from search.models import SearchEntity
from search.query_compiler import QueryCompiler, CompiledQuery, FilterPredicate
from search.query_parser import QueryParser
from storage.sqlite_backend import SqliteBackend

from sample_protos import NESTED_PROTO, USER_PROTO, STATUS_PROTO


def compile_query(raw):
    return QueryCompiler().compile(QueryParser().parse(raw))


class TestSqliteBackendRegistry(unittest.TestCase):
    """Test schema setup and registry operations."""

    def setUp(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, 'data', 'registry.db')
        self.backend = SqliteBackend(self.db_path)

    def tearDown(self):
        """Clean up test environment."""
        if hasattr(self, 'backend'):
            self.backend.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_backend_initialization(self):
        """Test backend creates the database and applies every migration."""
        self.assertTrue(os.path.exists(self.db_path))
        self.assertEqual(self.backend.get_schema_version(), '3')

    def test_ensure_schema_is_idempotent(self):
        self.assertEqual(self.backend.ensure_schema(), [])

        reopened = SqliteBackend(self.db_path)
        try:
            self.assertEqual(reopened.get_schema_version(), '3')
        finally:
            reopened.close()

    def test_module_and_version_registration(self):
        module = self.backend.create_module('common', 'Shared types')
        self.assertIsNotNone(module.id)

        # Registering again returns the existing module
        again = self.backend.create_module('common', 'ignored')
        self.assertEqual(again.id, module.id)
        self.assertEqual(again.description, 'Shared types')

        version = self.backend.create_version(
            'common', '1.0.0', {'b.proto': STATUS_PROTO, 'a.proto': None}, ['base', 'base']
        )
        self.assertEqual([f.path for f in version.files], ['a.proto', 'b.proto'])
        self.assertEqual(version.dependencies, ['base'])

        fetched = self.backend.get_version('common', '1.0.0')
        self.assertEqual(fetched.id, version.id)
        self.assertEqual([f.path for f in fetched.files], ['a.proto', 'b.proto'])
        self.assertEqual(fetched.dependencies, ['base'])

        self.assertEqual([m.name for m in self.backend.list_modules()], ['common'])
        self.assertEqual([v.version for v in self.backend.list_versions('common')], ['1.0.0'])
        self.assertEqual(self.backend.resolve_version_id('common', '1.0.0'), version.id)

    def test_create_version_requires_module(self):
        with self.assertRaises(LookupError):
            self.backend.create_version('missing', '1', {'a.proto': STATUS_PROTO})

    def test_create_version_replaces_files(self):
        self.backend.create_module('common')
        first = self.backend.create_version('common', '1', {'a.proto': STATUS_PROTO}, ['x'])
        second = self.backend.create_version('common', '1', {'b.proto': STATUS_PROTO})

        self.assertEqual(first.id, second.id)
        fetched = self.backend.get_version('common', '1')
        self.assertEqual([f.path for f in fetched.files], ['b.proto'])
        self.assertEqual(fetched.dependencies, [])

    def test_get_file(self):
        self.backend.create_module('common')
        version = self.backend.create_version('common', '1', {'a.proto': STATUS_PROTO, 'b.proto': None})

        proto_file = self.backend.get_file(version.id, 'a.proto')
        self.assertEqual(proto_file.path, 'a.proto')
        self.assertEqual(proto_file.content, STATUS_PROTO)
        self.assertIsNone(self.backend.get_file(version.id, 'b.proto'))
        self.assertIsNone(self.backend.get_file(version.id, 'c.proto'))

    def test_unknown_lookups(self):
        self.assertIsNone(self.backend.get_version('missing', '1'))
        self.assertIsNone(self.backend.resolve_version_id('missing', '1'))
        self.assertEqual(self.backend.list_versions('missing'), [])

    def test_storage_info(self):
        self.backend.create_module('common')
        info = self.backend.get_storage_info()

        self.assertEqual(info['modules_count'], 1)
        self.assertEqual(info['search_entities_count'], 0)
        self.assertEqual(info['schema_version'], '3')
        self.assertIn('connection_pool_stats', info)


class TestSqliteBackendSearch(unittest.TestCase):
    """Test full-text search and filters over indexed schemas."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.backend = SqliteBackend(os.path.join(self.temp_dir, 'registry.db'))
        indexer = Indexer(self.backend, self.backend)

        for module_name, version, files, deps in (
            ('acme.users', 'v1', {'acme/users/v1/user.proto': USER_PROTO}, ['common']),
            ('common', '1.0.0', {'common/status.proto': STATUS_PROTO}, []),
            ('pkg', '1.0.0', {'pkg/outer.proto': NESTED_PROTO}, []),
        ):
            self.backend.create_module(module_name)
            self.backend.create_version(module_name, version, files, deps)
            indexer.index_version(module_name, version)

    def tearDown(self):
        self.backend.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def search(self, raw, limit=100, offset=0):
        return self.backend.search_entities(compile_query(raw), limit, offset)

    def count(self, raw):
        return self.backend.count_entities(compile_query(raw))

    def test_term_search(self):
        results = self.search('email')
        self.assertEqual([r.full_path for r in results], ['acme.users.v1.User.email'])

        result = results[0]
        self.assertEqual(result.module_name, 'acme.users')
        self.assertEqual(result.version, 'v1')
        self.assertEqual(result.field_type, 'string')
        self.assertEqual(result.description, 'Primary email address.')
        self.assertGreater(result.rank, 0)

    def test_prefix_matching(self):
        paths = {r.full_path for r in self.search('slack')}
        self.assertEqual(paths, {'acme.users.v1.User.slack_handle'})

    def test_name_match_ranks_first(self):
        results = self.search('Status module:common')
        self.assertEqual(len(results), 3)
        self.assertEqual(results[0].full_path, 'common.Status')
        self.assertEqual(results[0].entity_type, 'message')
        ranks = [r.rank for r in results]
        self.assertEqual(ranks, sorted(ranks, reverse=True))

    def test_or_and_not(self):
        self.assertEqual(self.count('slack OR pager'), 2)

        results = self.search('user NOT deleted module:acme.users')
        self.assertEqual(len(results), 18)
        self.assertFalse(any('DeletedUser' in r.full_path for r in results))

    def test_filter_only_search_is_ordered_by_name(self):
        results = self.search('entity:enum_value')
        self.assertEqual([r.entity_name for r in results], [
            'KIND_PRIMARY', 'KIND_UNSPECIFIED', 'USER_STATUS_ACTIVE', 'USER_STATUS_UNSPECIFIED'
        ])
        self.assertTrue(all(r.rank == 0.0 for r in results))

    def test_empty_query_returns_everything(self):
        self.assertEqual(self.count(''), 31)

    def test_pagination(self):
        everything = self.search('entity:field', limit=100)
        page = self.search('entity:field', limit=5, offset=5)
        self.assertEqual([r.id for r in page], [r.id for r in everything[5:10]])
        self.assertEqual(self.count('entity:field'), len(everything))

    def test_type_filter(self):
        results = self.search('entity:field type:string module:acme.users')
        self.assertEqual(sorted(r.entity_name for r in results), [
            'display_name', 'email', 'pager', 'phone', 'roles', 'slack_handle', 'user_id', 'user_id'
        ])

    def test_module_wildcard(self):
        self.assertEqual(self.count('module:acme.*'), 20)
        self.assertEqual(self.count('module:comm*'), 3)
        self.assertEqual(self.count('module:*'), 31)

    def test_module_like_characters_are_literal(self):
        """'_' in a module pattern only matches an underscore."""
        self.assertEqual(self.count('module:comm_n*'), 0)

    def test_exact_module(self):
        self.assertEqual(self.count('module:acme'), 0)
        self.assertEqual(self.count('module:"acme.users"'), 20)

    def test_version_filter(self):
        self.assertEqual(self.count('version:1.0.0'), 11)
        self.assertEqual(self.count('version:>=1.0.0'), 0)

    def test_has_comment_filter(self):
        results = self.search('has-comment:true')
        self.assertEqual(sorted(r.full_path for r in results), [
            'acme.users.v1.User',
            'acme.users.v1.User.email',
            'acme.users.v1.UserService',
            'acme.users.v1.UserService.GetUser',
            'common.Status',
            'pkg.Outer',
            'pkg.Outer.Inner',
        ])

    def test_imports_filter(self):
        self.assertEqual(self.count('imports:google/protobuf/timestamp.proto'), 20)
        self.assertEqual(self.count('imports:status.proto'), 20)
        self.assertEqual(self.count('imports:tatus.proto'), 0)
        self.assertEqual(self.count('imports:common/status.proto entity:service'), 1)

    def test_depends_on_filter(self):
        self.assertEqual(self.count('depends-on:common'), 20)
        self.assertEqual(self.count('depends-on:pkg'), 0)

    def test_unsearchable_terms_match_nothing(self):
        query = compile_query("'")
        self.assertTrue(query.has_expression)
        self.assertEqual(self.backend.search_entities(query, 10), [])
        self.assertEqual(self.backend.count_entities(query), 0)

    def test_fts_syntax_in_terms_is_neutralized(self):
        """Terms containing FTS5 syntax are matched as words."""
        self.assertEqual(self.count('"email'), 1)
        self.assertEqual(self.count('email*'), 1)
        self.assertEqual(self.count('user.email'), 1)

    def test_metadata_round_trips(self):
        results = self.search('WatchUsers entity:method')
        self.assertEqual(results[0].metadata, {'server_streaming': True})
        self.assertEqual(results[0].method_output_type, 'User')

    def test_unsupported_predicate(self):
        query = CompiledQuery(expression='', predicates=[FilterPredicate('color', FilterPredicate.EQ, ('red',))])
        with self.assertRaises(ValueError):
            self.backend.search_entities(query, 10)


class TestSqliteBackendWrites(unittest.TestCase):
    """Test replacing a version's entities."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.backend = SqliteBackend(os.path.join(self.temp_dir, 'registry.db'))
        self.backend.create_module('common')
        self.version_id = self.backend.create_version('common', '1', {'a.proto': STATUS_PROTO}).id

    def tearDown(self):
        self.backend.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def entity(self, name):
        return SearchEntity(
            version_id=self.version_id,
            entity_type='message',
            entity_name=name,
            full_path=f'common.{name}'
        )

    def names(self):
        with self.backend.connection_pool.get_connection() as conn:
            rows = conn.execute(
                "SELECT entity_name FROM search_entities WHERE version_id = ? ORDER BY entity_name",
                (self.version_id,)
            ).fetchall()
        return [r['entity_name'] for r in rows]

    def test_replace_entities(self):
        self.backend.replace_entities(self.version_id, [self.entity('Old')])
        count = self.backend.replace_entities(
            self.version_id, [self.entity('A'), self.entity('B'), self.entity('C')], batch_size=2
        )
        self.assertEqual(count, 3)
        self.assertEqual(self.names(), ['A', 'B', 'C'])

    def test_replace_keeps_fts_in_sync(self):
        self.backend.replace_entities(self.version_id, [self.entity('Widget')])
        self.backend.replace_entities(self.version_id, [self.entity('Gadget')])

        self.assertEqual(self.backend.count_entities(compile_query('widget')), 0)
        self.assertEqual(self.backend.count_entities(compile_query('gadget')), 1)

    def test_atomic_replace_rolls_back(self):
        self.backend.replace_entities(self.version_id, [self.entity('Old')])

        duplicate = [self.entity('A'), self.entity('B'), self.entity('A')]
        with self.assertRaises(IndexingError) as cm:
            self.backend.replace_entities(self.version_id, duplicate, batch_size=1)

        self.assertEqual(cm.exception.stage, 'insert')
        self.assertEqual(self.names(), ['Old'])

    def test_non_atomic_replace_commits_per_batch(self):
        self.backend.replace_entities(self.version_id, [self.entity('Old')])

        duplicate = [self.entity('A'), self.entity('B'), self.entity('A')]
        with self.assertRaises(IndexingError) as cm:
            self.backend.replace_entities(self.version_id, duplicate, batch_size=2, atomic=False)

        self.assertEqual(cm.exception.stage, 'insert')
        self.assertEqual(self.names(), ['A', 'B'])

    def test_invalid_batch_size(self):
        with self.assertRaises(ValueError):
            self.backend.replace_entities(self.version_id, [self.entity('A')], batch_size=0)

    def test_delete_and_insert(self):
        self.assertEqual(self.backend.insert_entities([self.entity('A'), self.entity('B')]), 2)
        self.assertEqual(self.backend.delete_entities(self.version_id), 2)
        self.assertEqual(self.names(), [])

    def test_insert_error_is_wrapped(self):
        with self.assertRaises(IndexingError) as cm:
            self.backend.insert_entities([self.entity('A'), self.entity('A')])
        self.assertEqual(cm.exception.stage, 'insert')
        self.assertEqual(self.names(), [])


class TestSqliteBackendHistory(unittest.TestCase):
    """Test search history and suggestions."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.backend = SqliteBackend(os.path.join(self.temp_dir, 'registry.db'))
        self.now = datetime.now(timezone.utc)

    def tearDown(self):
        self.backend.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def record(self, query, result_count=1, minutes_ago=0):
        self.backend.record_search(
            query, result_count, 5, searched_at=self.now - timedelta(minutes=minutes_ago)
        )

    def test_frequency_then_recency(self):
        for _ in range(3):
            self.record('user email', minutes_ago=30)
        self.record('user', minutes_ago=20)
        self.record('users', minutes_ago=10)
        self.record('other')

        self.assertEqual(self.backend.get_suggestions('user', 10), ['user email', 'users', 'user'])

    def test_zero_result_queries_are_excluded(self):
        self.record('user', result_count=0)
        self.record('user id')
        self.assertEqual(self.backend.get_suggestions('user', 10), ['user id'])

    def test_window(self):
        self.record('user old', minutes_ago=60 * 24 * 40)
        self.record('user new')

        self.assertEqual(self.backend.get_suggestions('user', 10), ['user new'])
        self.assertEqual(self.backend.get_suggestions('user', 10, window_days=60), ['user new', 'user old'])

    def test_prefix_is_literal_and_case_sensitive(self):
        self.record('User')
        self.record('us%er')
        self.record('use_r')

        self.assertEqual(self.backend.get_suggestions('us%', 10), ['us%er'])
        self.assertEqual(self.backend.get_suggestions('use_', 10), ['use_r'])
        self.assertEqual(self.backend.get_suggestions('user', 10), [])

    def test_limit(self):
        for i in range(5):
            self.record(f'query {i}', minutes_ago=i)
        self.assertEqual(self.backend.get_suggestions('query', 2), ['query 0', 'query 1'])

    def test_empty_prefix_matches_all(self):
        self.record('a')
        self.record('b')
        self.assertEqual(sorted(self.backend.get_suggestions('', 10)), ['a', 'b'])


if __name__ == '__main__':
    unittest.main()
