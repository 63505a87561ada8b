"""Tests for file discovery and application wiring."""

import unittest
import tempfile
import shutil
import os
import json
from unittest.mock import patch

from app.context import ProtoSearchApp
from app.discovery import ProtoFileDiscovery

from sample_protos import NESTED_PROTO, STATUS_PROTO


class TestProtoFileDiscovery(unittest.TestCase):
    """Test ProtoFileDiscovery functionality."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        for path in ('a.proto', 'nested/b.proto', 'nested/deep/c.PROTO', 'README.md',
                     'build/generated.proto', '.git/objects/x.proto', 'vendor/third.proto'):
            self.write(path, STATUS_PROTO)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write(self, relative_path, content):
        full_path = os.path.join(self.temp_dir, *relative_path.split('/'))
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, 'w') as f:
            f.write(content)

    def test_discover_files(self):
        files = ProtoFileDiscovery(self.temp_dir).discover_files()
        self.assertEqual(files, ['a.proto', 'nested/b.proto', 'nested/deep/c.PROTO'])

    def test_custom_excludes(self):
        discovery = ProtoFileDiscovery(self.temp_dir)
        self.assertEqual(discovery.discover_files(['nested/deep/*']), ['a.proto', 'nested/b.proto'])
        self.assertEqual(discovery.discover_files(['*/b.proto']), ['a.proto', 'nested/deep/c.PROTO'])

    def test_load_files(self):
        with open(os.path.join(self.temp_dir, 'bad.proto'), 'wb') as f:
            f.write(b'\xff\xfe\x00bad')

        contents = ProtoFileDiscovery(self.temp_dir).load_files(['a.proto', 'bad.proto', 'gone.proto'])

        self.assertEqual(contents['a.proto'], STATUS_PROTO)
        self.assertIsNone(contents['bad.proto'])
        self.assertIsNone(contents['gone.proto'])


class TestProtoSearchApp(unittest.TestCase):
    """Test ProtoSearchApp wiring."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, 'config.json')
        with open(self.config_path, 'w') as f:
            json.dump({
                'database_path': os.path.join(self.temp_dir, 'db', 'registry.db'),
                'search': {'default_limit': 7},
                'indexing': {'batch_size': 3}
            }, f)

        self.schema_dir = os.path.join(self.temp_dir, 'schemas')
        os.makedirs(os.path.join(self.schema_dir, 'pkg'))
        with open(os.path.join(self.schema_dir, 'pkg', 'outer.proto'), 'w') as f:
            f.write(NESTED_PROTO)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_from_config_file(self):
        with ProtoSearchApp.from_config_file(self.config_path) as app:
            self.assertIs(app.search_service.store, app.backend)
            self.assertIs(app.indexer.store, app.backend)
            self.assertIs(app.indexer.registry, app.backend)
            self.assertEqual(app.search_service.config.default_limit, 7)
            self.assertEqual(app.indexer.config.batch_size, 3)
            self.assertTrue(os.path.exists(app.config['database_path']))

    @patch.dict(os.environ, {'PROTOSEARCH_BATCH_SIZE': '11'})
    def test_environment_overrides_apply(self):
        with ProtoSearchApp.from_config_file(self.config_path) as app:
            self.assertEqual(app.indexer.config.batch_size, 11)

    def test_register_directory(self):
        with ProtoSearchApp.from_config_file(self.config_path) as app:
            version = app.register_directory(
                'pkg', '1.0.0', self.schema_dir, dependencies=['common'], description='Nested types'
            )

            self.assertEqual([f.path for f in version.files], ['pkg/outer.proto'])
            self.assertEqual(version.dependencies, ['common'])
            self.assertEqual(app.backend.list_modules()[0].description, 'Nested types')

            result = app.indexer.index_version('pkg', '1.0.0')
            self.assertEqual(result.entity_count, 8)

    def test_register_empty_directory(self):
        with ProtoSearchApp.from_config_file(self.config_path) as app:
            with self.assertRaises(ValueError):
                app.register_directory('pkg', '1.0.0', self.schema_dir, exclude_patterns=['pkg/*'])


if __name__ == '__main__':
    unittest.main()
