"""Tests for the MCP tool handlers."""

import unittest
import tempfile
import shutil
import os
import json
import asyncio
from unittest.mock import patch

import server
from app.context import ProtoSearchApp
from config.config_manager import ConfigManager
from tools.mcp_tools import get_tools

from sample_protos import USER_PROTO, STATUS_PROTO


class TestMcpTools(unittest.TestCase):
    """Test tool dispatch against a temporary registry."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        config = ConfigManager(os.path.join(self.temp_dir, 'config.json')).validate_config({
            'database_path': os.path.join(self.temp_dir, 'registry.db')
        })
        self.app = ProtoSearchApp(config)

        for module_name, files, deps in (('acme.users', {'user.proto': USER_PROTO}, ['common']),
                                         ('common', {'status.proto': STATUS_PROTO}, [])):
            self.app.backend.create_module(module_name, f'{module_name} schemas')
            self.app.backend.create_version(module_name, '1.0.0', files, deps)

    def tearDown(self):
        self.app.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_tool_definitions(self):
        names = [tool.name for tool in get_tools()]
        self.assertEqual(names, [
            'search_schemas', 'get_search_suggestions', 'list_modules', 'index_version', 'reindex_all'
        ])

    def test_list_modules(self):
        result = server.handle_tool(self.app, 'list_modules', {})
        self.assertEqual([m['name'] for m in result['modules']], ['acme.users', 'common'])
        self.assertEqual(result['modules'][0]['versions'], ['1.0.0'])
        self.assertEqual(result['modules'][0]['description'], 'acme.users schemas')

    def test_index_then_search(self):
        result = server.handle_tool(self.app, 'index_version', {'module_name': 'acme.users', 'version': '1.0.0'})
        self.assertTrue(result['success'])
        self.assertEqual(result['entity_count'], 20)

        result = server.handle_tool(self.app, 'search_schemas', {'query': 'email entity:field'})
        self.assertEqual(result['total_count'], 1)
        self.assertEqual(result['results'][0]['full_path'], 'acme.users.v1.User.email')
        self.assertNotIn('parsed_query', result)

        result = server.handle_tool(self.app, 'search_schemas', {'query': 'email', 'include_parsed': True})
        self.assertEqual(result['parsed_query']['terms'], ['email'])

    def test_search_records_history(self):
        server.handle_tool(self.app, 'reindex_all', {})
        server.handle_tool(self.app, 'search_schemas', {'query': 'Status'})

        result = server.handle_tool(self.app, 'get_search_suggestions', {'prefix': 'Sta'})
        self.assertEqual(result, {'prefix': 'Sta', 'suggestions': ['Status']})

    def test_reindex_all(self):
        result = server.handle_tool(self.app, 'reindex_all', {})
        self.assertEqual(result['indexed_versions'], 2)
        self.assertEqual(result['indexed_entities'], 23)
        self.assertEqual(result['failed'], [])

    def test_unknown_tool(self):
        with self.assertRaises(ValueError):
            server.handle_tool(self.app, 'drop_tables', {})

    def test_call_tool_reports_errors(self):
        with patch.object(server, 'get_app', return_value=self.app):
            contents = asyncio.run(server.call_tool('search_schemas', {'query': 'entity:table'}))

        payload = json.loads(contents[0].text)
        self.assertFalse(payload['success'])
        self.assertIn('invalid entity type', payload['error'])

    def test_call_tool_unknown_version(self):
        with patch.object(server, 'get_app', return_value=self.app):
            contents = asyncio.run(server.call_tool(
                'index_version', {'module_name': 'common', 'version': '9.9.9'}
            ))

        payload = json.loads(contents[0].text)
        self.assertFalse(payload['success'])
        self.assertIn('common@9.9.9', payload['error'])


if __name__ == '__main__':
    unittest.main()
