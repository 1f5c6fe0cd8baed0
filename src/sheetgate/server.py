#!/usr/bin/env python3

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from pydantic import ValidationError

from .client import CrudOperation
from .config import Settings
from .errors import SheetgateError
from .gateway import SheetGateway
from .models import Operation, ValidationContext
from .validators import format_validation_errors, summarize_batch

logger = logging.getLogger("sheetgate")

server = Server("sheetgate")

# Global gateway instance
gateway: Optional[SheetGateway] = None

RECORD_PROPERTIES = {
    "table": {"type": "string", "description": "Table name, e.g. Materiales"},
    "data": {"type": "object", "description": "Record fields"},
}


@server.list_tools()
async def handle_list_tools() -> List[types.Tool]:
    """List validation and data access tools."""
    return [
        types.Tool(
            name="validate_record",
            description="Validate a record against its table schema without saving it",
            inputSchema={
                "type": "object",
                "properties": {
                    **RECORD_PROPERTIES,
                    "operation": {
                        "type": "string",
                        "enum": ["create", "update"],
                        "description": "Operation the record is meant for",
                    },
                },
                "required": ["table", "data"],
            },
        ),
        types.Tool(
            name="validate_batch",
            description="Validate several records of one table",
            inputSchema={
                "type": "object",
                "properties": {
                    "table": RECORD_PROPERTIES["table"],
                    "records": {"type": "array", "items": {"type": "object"}},
                },
                "required": ["table", "records"],
            },
        ),
        types.Tool(
            name="execute_request",
            description="Run a raw CRUD operation through the cache and request queue",
            inputSchema={
                "type": "object",
                "properties": {
                    **RECORD_PROPERTIES,
                    "operation": {
                        "type": "string",
                        "enum": ["list", "get", "create", "update", "delete"],
                    },
                    "id": {"type": "string", "description": "Record ID"},
                    "filters": {"type": "object", "description": "Field filters"},
                    "page": {"type": "integer"},
                    "limit": {"type": "integer"},
                    "skip_cache": {"type": "boolean", "default": False},
                },
                "required": ["table", "operation"],
            },
        ),
        types.Tool(
            name="submit_record",
            description="Validate and save a record; invalid records are not sent",
            inputSchema={
                "type": "object",
                "properties": {
                    **RECORD_PROPERTIES,
                    "operation": {
                        "type": "string",
                        "enum": ["create", "update", "delete"],
                    },
                    "id": {"type": "string", "description": "Record ID"},
                },
                "required": ["table", "operation"],
            },
        ),
        types.Tool(
            name="get_stats",
            description="Queue, cache and related-data statistics",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        types.Tool(
            name="clear_cache",
            description="Drop every cached response and related-data snapshot",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
    ]


async def call_tool(gateway: SheetGateway, name: str, arguments: Dict[str, Any]) -> str:
    """Run one tool against a gateway and render its result as text."""
    if name == "validate_record":
        context = ValidationContext(
            operation=Operation(arguments.get("operation", "create"))
        )
        result = await gateway.validate_record(
            arguments["table"], arguments["data"], context
        )
        return format_validation_errors(result)

    elif name == "validate_batch":
        result = await gateway.validate_batch(arguments["table"], arguments["records"])
        return json.dumps(summarize_batch(result), indent=2, ensure_ascii=False)

    elif name == "execute_request":
        operation = CrudOperation(
            table=arguments["table"],
            operation=arguments["operation"],
            data=arguments.get("data"),
            id=arguments.get("id"),
            filters=arguments.get("filters"),
            page=arguments.get("page"),
            limit=arguments.get("limit"),
        )
        response = await gateway.execute_request(
            operation, skip_cache=arguments.get("skip_cache", False)
        )
        return response.model_dump_json(indent=2)

    elif name == "submit_record":
        outcome = await gateway.submit(
            arguments["table"],
            arguments["operation"],
            arguments.get("data"),
            id=arguments.get("id"),
        )
        return json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False, default=str)

    elif name == "get_stats":
        return json.dumps(gateway.stats(), indent=2)

    elif name == "clear_cache":
        gateway.clear_cache()
        return "Cache cleared"

    else:
        raise ValueError(f"Unknown tool: {name}")


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: Dict[str, Any]
) -> List[types.TextContent]:
    """Handle tool calls against the gateway."""
    if not gateway:
        return [
            types.TextContent(
                type="text",
                text="Gateway not initialized. Please check SHEETGATE_API_URL.",
            )
        ]

    try:
        text = await call_tool(gateway, name, arguments or {})
        return [types.TextContent(type="text", text=text)]
    except SheetgateError as e:
        logger.error(f"Error calling {name}: {e}")
        return [
            types.TextContent(
                type="text", text=f"Error calling {name}: {e.user_message} ({e})"
            )
        ]
    except Exception as e:
        logger.error(f"Error calling {name}: {e}")
        return [types.TextContent(type="text", text=f"Error calling {name}: {str(e)}")]


async def main():
    global gateway

    try:
        settings = Settings.from_env()
    except ValidationError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Invalid SHEETGATE_* configuration: {e}")
        return

    logging.basicConfig(level=settings.log_level.upper())
    gateway = SheetGateway(settings)
    logger.info(f"Gateway initialized with API URL: {settings.api_url}")

    # Run the server
    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            InitializationOptions(
                server_name="sheetgate",
                server_version="0.1.0",
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )

    # Cleanup connections
    await gateway.aclose()


def cli():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
