#!/usr/bin/env python3
"""protosearch MCP Server - search registered protobuf schemas.

Module Discovery Pattern:
When a tool needs a module name or version that is unknown, call
list_modules first to discover what is registered.
"""

import os
import json
import logging
from typing import List, Dict, Any, Optional

from mcp.server import Server
from mcp.types import Tool, TextContent
from mcp.server.stdio import stdio_server
from mcp.server.models import InitializationOptions
from mcp.server.lowlevel import NotificationOptions

from app.context import ProtoSearchApp
from config.config_manager import DEFAULT_CONFIG_PATH, configure_logging
from search.errors import SearchError
from search.models import SearchRequest
from tools.mcp_tools import get_tools

CONFIG_PATH = os.environ.get('PROTOSEARCH_CONFIG', DEFAULT_CONFIG_PATH)

server = Server("protosearch")
_app: Optional[ProtoSearchApp] = None


def get_app() -> ProtoSearchApp:
    """Create the application on first use."""
    global _app
    if _app is None:
        _app = ProtoSearchApp.from_config_file(CONFIG_PATH)
        logging.info(f"Using registry database at {_app.config['database_path']}")
    return _app


def handle_tool(app: ProtoSearchApp, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """
    Run one tool call and return its JSON-serializable result.

    Raises:
        ValueError: For unknown tools
    """
    if name == "search_schemas":
        request = SearchRequest(
            query=arguments.get("query", ""),
            limit=arguments.get("limit", 0),
            offset=arguments.get("offset", 0)
        )
        response = app.search_service.search_and_record(request)
        return response.to_dict(include_parsed=arguments.get("include_parsed", False))

    elif name == "get_search_suggestions":
        prefix = arguments.get("prefix", "")
        suggestions = app.search_service.get_suggestions(prefix, arguments.get("limit", 0))
        return {"prefix": prefix, "suggestions": suggestions}

    elif name == "list_modules":
        modules = []
        for module in app.backend.list_modules():
            entry = module.to_dict()
            entry["versions"] = [v.version for v in app.backend.list_versions(module.name)]
            modules.append(entry)
        return {"modules": modules}

    elif name == "index_version":
        module_name = arguments.get("module_name", "")
        version = arguments.get("version", "")
        if arguments.get("background", False):
            from tasks import index_version_task
            task = index_version_task(module_name, version, CONFIG_PATH)
            return {"status": "enqueued", "task_id": str(task.id)}
        return {"success": True, **app.indexer.index_version(module_name, version).to_dict()}

    elif name == "reindex_all":
        if arguments.get("background", False):
            from tasks import reindex_all_task
            task = reindex_all_task(CONFIG_PATH)
            return {"status": "enqueued", "task_id": str(task.id)}
        return app.indexer.reindex_all().to_dict()

    raise ValueError(f"Unknown tool: {name}")


@server.list_tools()
async def list_tools() -> List[Tool]:
    """List available tools."""
    return get_tools()


@server.call_tool()
async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
    """Handle tool calls."""
    try:
        result = handle_tool(get_app(), name, arguments or {})
    except (SearchError, LookupError, ValueError) as e:
        logging.warning(f"Tool {name} failed: {e}")
        result = {"success": False, "error": str(e)}
    return [TextContent(type="text", text=json.dumps(result, indent=2))]


async def main_async():
    """Main entry point for async stdio execution."""
    app = get_app()
    configure_logging(app.config)

    logging.info("Starting stdio server")
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            InitializationOptions(
                server_name="protosearch",
                server_version="0.1.0",
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={}
                )
            )
        )


def main():
    import asyncio
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
