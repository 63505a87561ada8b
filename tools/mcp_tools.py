"""MCP tool definitions for the protosearch server."""

from typing import List
from mcp.types import Tool


def get_tools() -> List[Tool]:
    """Return all available MCP tools."""
    return [
        Tool(
            name="search_schemas",
            description="""Search protobuf schema entities (messages, fields, enums, enum values, services, RPC methods) across registered modules and versions. Returns ranked results with the entity's full path, module, version, type information and documentation.

Free-text terms are prefix-matched against names, paths, types and comments. Terms are ANDed by default; use OR and NOT between terms (upper case).

Filters:
• entity:<message|field|enum|enum_value|service|method>
• type:<field type>, e.g. type:string
• module:<name>, * is a wildcard (module:common.*); quote for exact match (module:"a*b")
• version:<exact version>
• imports:<proto path>, depends-on:<module>
• has-comment:true, only documented entities

Examples:
- "user email" - entities matching both terms
- "email entity:field type:string" - string fields matching email
- "Status module:common.*" - Status entities in common.* modules
- "user NOT deleted" - user but not deleted""",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Search query"
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum number of results (default 50, max 1000)",
                        "default": 50
                    },
                    "offset": {
                        "type": "integer",
                        "description": "Number of results to skip",
                        "default": 0
                    },
                    "include_parsed": {
                        "type": "boolean",
                        "description": "Include the parsed query structure in the response",
                        "default": False
                    }
                },
                "required": ["query"]
            }
        ),
        Tool(
            name="get_search_suggestions",
            description="Suggest previously successful queries that start with a prefix, most frequent first.",
            inputSchema={
                "type": "object",
                "properties": {
                    "prefix": {
                        "type": "string",
                        "description": "Beginning of the query being typed"
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum number of suggestions (default 5, max 20)",
                        "default": 5
                    }
                },
                "required": ["prefix"]
            }
        ),
        Tool(
            name="list_modules",
            description="List registered schema modules and their versions. Use this first if module or version names are unknown.",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
        Tool(
            name="index_version",
            description="Rebuild the search index of one module version. Unparseable files are skipped and reported as diagnostics.",
            inputSchema={
                "type": "object",
                "properties": {
                    "module_name": {
                        "type": "string",
                        "description": "Module name"
                    },
                    "version": {
                        "type": "string",
                        "description": "Version to index"
                    },
                    "background": {
                        "type": "boolean",
                        "description": "Enqueue for the background worker instead of indexing now",
                        "default": False
                    }
                },
                "required": ["module_name", "version"]
            }
        ),
        Tool(
            name="reindex_all",
            description="Rebuild the search index of every registered version. A failing version is reported and does not stop the others.",
            inputSchema={
                "type": "object",
                "properties": {
                    "background": {
                        "type": "boolean",
                        "description": "Enqueue one task per version for the background worker",
                        "default": False
                    }
                },
                "required": []
            }
        )
    ]
