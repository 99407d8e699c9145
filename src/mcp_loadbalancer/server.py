"""MCP Server for load balancer configuration management.

Provides transactional, versioned access to the configuration engine:
- Reads are cached per transaction and returned with the configuration version
- Writes take either a transaction ID or the current version

Tools exposed:
- list_entities: List entities of a type (optionally under a parent)
- get_entity: Get one entity by name or positional ID
- create_entity: Create an entity
- edit_entity: Replace an entity's attributes
- delete_entity: Delete an entity
- get_version: Get the configuration version (or a transaction's baseline)
- start_transaction: Open a transaction against the current version
- commit_transaction: Commit a transaction
- delete_transaction: Abort a transaction
- list_transactions: List open transactions
- get_audit_log: Show recent configuration changes
- engine_stats: Engine timing and cache statistics
"""
import asyncio
import json
import logging
from typing import Any, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .config import Settings
from .configuration import ConfigurationClient, ConfError, ValidationError
from .utils.audit_log import get_recent_changes, setup_audit_logging
from .utils.logging_config import global_stats, setup_logging, timed_section

# Configure logging - file output and performance tracking
setup_logging()
logger = logging.getLogger(__name__)

# Global client (initialized on first tool call)
client: Optional[ConfigurationClient] = None
audit_file = None

ENTITY_TYPES = [
    "site",
    "frontend",
    "backend",
    "server",
    "listener",
    "backend_switching_rule",
    "tcp_content_rule",
]


def get_client() -> ConfigurationClient:
    """Get or create the configuration client."""
    global client, audit_file
    if client is None:
        settings = Settings.load()
        audit_file = setup_audit_logging(str(settings.audit_log_dir))
        client = ConfigurationClient.from_settings(settings)
    return client


# Create MCP server
server = Server("lbcraft")


# Shared input schema fragments
ENTITY_TYPE = {
    "type": "string",
    "enum": ENTITY_TYPES,
    "description": "Entity type",
}
PARENT_NAME = {
    "type": "string",
    "description": "Parent frontend/backend name (servers, listeners and rules)",
}
PARENT_TYPE = {
    "type": "string",
    "enum": ["frontend", "backend"],
    "description": "Parent type (tcp_content_rule only)",
}
RULE_TYPE = {
    "type": "string",
    "enum": ["request", "response"],
    "description": "Rule type (tcp_content_rule only; response rules exist only under backends)",
}
KEY = {
    "type": ["string", "integer"],
    "description": "Entity name, or positional ID for rules",
}
TRANSACTION_ID = {
    "type": "string",
    "description": "Transaction ID",
}
VERSION = {
    "type": "integer",
    "description": "Current configuration version (for writes outside a transaction)",
}
DATA = {
    "type": "object",
    "description": "Entity attributes",
}


# === TOOLS ===

@server.list_tools()
async def list_tools() -> list[Tool]:
    """List all available tools."""
    return [
        Tool(
            name="list_entities",
            description="List entities of a type, with the configuration version",
            inputSchema={
                "type": "object",
                "properties": {
                    "entity_type": ENTITY_TYPE,
                    "parent_name": PARENT_NAME,
                    "parent_type": PARENT_TYPE,
                    "rule_type": RULE_TYPE,
                    "transaction_id": TRANSACTION_ID,
                },
                "required": ["entity_type"]
            }
        ),
        Tool(
            name="get_entity",
            description="Get one entity by name or positional ID, with the configuration version",
            inputSchema={
                "type": "object",
                "properties": {
                    "entity_type": ENTITY_TYPE,
                    "key": KEY,
                    "parent_name": PARENT_NAME,
                    "parent_type": PARENT_TYPE,
                    "rule_type": RULE_TYPE,
                    "transaction_id": TRANSACTION_ID,
                },
                "required": ["entity_type", "key"]
            }
        ),
        Tool(
            name="create_entity",
            description="Create an entity. Give exactly one of transaction_id or version",
            inputSchema={
                "type": "object",
                "properties": {
                    "entity_type": ENTITY_TYPE,
                    "data": DATA,
                    "parent_name": PARENT_NAME,
                    "parent_type": PARENT_TYPE,
                    "rule_type": RULE_TYPE,
                    "transaction_id": TRANSACTION_ID,
                    "version": VERSION,
                },
                "required": ["entity_type", "data"]
            }
        ),
        Tool(
            name="edit_entity",
            description="Replace an entity's attributes. Give exactly one of transaction_id or version",
            inputSchema={
                "type": "object",
                "properties": {
                    "entity_type": ENTITY_TYPE,
                    "key": KEY,
                    "data": DATA,
                    "parent_name": PARENT_NAME,
                    "parent_type": PARENT_TYPE,
                    "rule_type": RULE_TYPE,
                    "transaction_id": TRANSACTION_ID,
                    "version": VERSION,
                },
                "required": ["entity_type", "key", "data"]
            }
        ),
        Tool(
            name="delete_entity",
            description="Delete an entity. Give exactly one of transaction_id or version",
            inputSchema={
                "type": "object",
                "properties": {
                    "entity_type": ENTITY_TYPE,
                    "key": KEY,
                    "parent_name": PARENT_NAME,
                    "parent_type": PARENT_TYPE,
                    "rule_type": RULE_TYPE,
                    "transaction_id": TRANSACTION_ID,
                    "version": VERSION,
                },
                "required": ["entity_type", "key"]
            }
        ),
        Tool(
            name="get_version",
            description="Get the configuration version, or a transaction's baseline version",
            inputSchema={
                "type": "object",
                "properties": {
                    "transaction_id": TRANSACTION_ID,
                },
                "required": []
            }
        ),
        Tool(
            name="start_transaction",
            description="Open a transaction against the current configuration version",
            inputSchema={
                "type": "object",
                "properties": {
                    "version": VERSION,
                },
                "required": ["version"]
            }
        ),
        Tool(
            name="commit_transaction",
            description="Commit a transaction, bumping the configuration version",
            inputSchema={
                "type": "object",
                "properties": {
                    "transaction_id": TRANSACTION_ID,
                },
                "required": ["transaction_id"]
            }
        ),
        Tool(
            name="delete_transaction",
            description="Abort a transaction and discard its changes",
            inputSchema={
                "type": "object",
                "properties": {
                    "transaction_id": TRANSACTION_ID,
                },
                "required": ["transaction_id"]
            }
        ),
        Tool(
            name="list_transactions",
            description="List transactions, optionally filtered by status",
            inputSchema={
                "type": "object",
                "properties": {
                    "status": {
                        "type": "string",
                        "enum": ["in_progress", "failed", "success"],
                        "description": "Transaction status"
                    },
                },
                "required": []
            }
        ),
        Tool(
            name="get_audit_log",
            description="Get recent configuration changes from the audit log",
            inputSchema={
                "type": "object",
                "properties": {
                    "entity_type": {
                        "type": "string",
                        "description": "Filter by entity type (or 'transaction')"
                    },
                    "operation": {
                        "type": "string",
                        "description": "Filter by operation (create, edit, delete, commit)"
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum number of records",
                        "default": 20
                    }
                },
                "required": []
            }
        ),
        Tool(
            name="engine_stats",
            description="Engine invocation timings and cache hit/miss statistics",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls."""
    target = arguments.get("entity_type") or arguments.get("transaction_id")

    async with timed_section(f"tool:{name}", target=target):
        try:
            conf = get_client()

            if name == "list_entities":
                return await handle_list_entities(conf, arguments)

            elif name == "get_entity":
                return await handle_get_entity(conf, arguments)

            elif name == "create_entity":
                return await handle_create_entity(conf, arguments)

            elif name == "edit_entity":
                return await handle_edit_entity(conf, arguments)

            elif name == "delete_entity":
                return await handle_delete_entity(conf, arguments)

            elif name == "get_version":
                return handle_get_version(conf, arguments.get("transaction_id", ""))

            elif name == "start_transaction":
                return await handle_start_transaction(conf, arguments["version"])

            elif name == "commit_transaction":
                return await handle_commit_transaction(conf, arguments["transaction_id"])

            elif name == "delete_transaction":
                return await handle_delete_transaction(conf, arguments["transaction_id"])

            elif name == "list_transactions":
                return handle_list_transactions(conf, arguments.get("status"))

            elif name == "get_audit_log":
                return handle_get_audit_log(
                    arguments.get("entity_type"),
                    arguments.get("operation"),
                    arguments.get("limit", 20)
                )

            elif name == "engine_stats":
                return handle_engine_stats(conf)

            else:
                return [TextContent(type="text", text=f"Unknown tool: {name}")]

        except ConfError as e:
            logger.warning(f"Tool {name} failed: {e}")
            return _json(e.to_dict())
        except Exception as e:
            logger.exception(f"Tool {name} failed")
            return _json({"error": "internal_error", "message": str(e)})


# === TOOL HANDLERS ===

def _json(data: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(data, indent=2))]


def _write_token(args: dict) -> dict:
    return {
        "transaction_id": args.get("transaction_id", ""),
        "version": args.get("version"),
    }


def _rule_address(args: dict) -> tuple[str, str, str]:
    try:
        return args["parent_type"], args["parent_name"], args["rule_type"]
    except KeyError as e:
        raise ValidationError(f"tcp_content_rule requires {e.args[0]}")


def _resource(conf: ConfigurationClient, entity_type: str):
    resources = {
        "site": conf.sites,
        "frontend": conf.frontends,
        "backend": conf.backends,
        "server": conf.servers,
        "listener": conf.listeners,
        "backend_switching_rule": conf.backend_switching_rules,
    }
    if entity_type not in resources:
        raise ValidationError(f"Unknown entity type: {entity_type}")
    return resources[entity_type]


async def handle_list_entities(conf: ConfigurationClient, args: dict) -> list[TextContent]:
    """List entities of a type."""
    tid = args.get("transaction_id", "")
    if args["entity_type"] == "tcp_content_rule":
        result = await conf.tcp_content_rules.list(*_rule_address(args), transaction_id=tid)
    else:
        resource = _resource(conf, args["entity_type"])
        result = await resource.list(args.get("parent_name"), transaction_id=tid)
    return _json(result.to_dict())


async def handle_get_entity(conf: ConfigurationClient, args: dict) -> list[TextContent]:
    """Get one entity."""
    tid = args.get("transaction_id", "")
    if args["entity_type"] == "tcp_content_rule":
        result = await conf.tcp_content_rules.get(args["key"], *_rule_address(args), transaction_id=tid)
    else:
        resource = _resource(conf, args["entity_type"])
        result = await resource.get(args["key"], args.get("parent_name"), transaction_id=tid)
    return _json(result.to_dict())


async def handle_create_entity(conf: ConfigurationClient, args: dict) -> list[TextContent]:
    """Create an entity."""
    token = _write_token(args)
    if args["entity_type"] == "tcp_content_rule":
        await conf.tcp_content_rules.create(*_rule_address(args), args["data"], **token)
    else:
        resource = _resource(conf, args["entity_type"])
        await resource.create(args["data"], args.get("parent_name"), **token)
    return _json({"success": True, "operation": "create", "entity_type": args["entity_type"]})


async def handle_edit_entity(conf: ConfigurationClient, args: dict) -> list[TextContent]:
    """Replace an entity's attributes."""
    token = _write_token(args)
    if args["entity_type"] == "tcp_content_rule":
        await conf.tcp_content_rules.edit(args["key"], *_rule_address(args), args["data"], **token)
    else:
        resource = _resource(conf, args["entity_type"])
        await resource.edit(args["key"], args["data"], args.get("parent_name"), **token)
    return _json({
        "success": True,
        "operation": "edit",
        "entity_type": args["entity_type"],
        "key": args["key"],
    })


async def handle_delete_entity(conf: ConfigurationClient, args: dict) -> list[TextContent]:
    """Delete an entity."""
    token = _write_token(args)
    if args["entity_type"] == "tcp_content_rule":
        await conf.tcp_content_rules.delete(args["key"], *_rule_address(args), **token)
    else:
        resource = _resource(conf, args["entity_type"])
        await resource.delete(args["key"], args.get("parent_name"), **token)
    return _json({
        "success": True,
        "operation": "delete",
        "entity_type": args["entity_type"],
        "key": args["key"],
    })


def handle_get_version(conf: ConfigurationClient, transaction_id: str) -> list[TextContent]:
    """Get the configuration version."""
    return _json({
        "version": conf.get_version(transaction_id),
        "transaction_id": transaction_id or None,
    })


async def handle_start_transaction(conf: ConfigurationClient, version: int) -> list[TextContent]:
    """Open a transaction."""
    transaction = await conf.start_transaction(version)
    return _json(transaction.model_dump())


async def handle_commit_transaction(conf: ConfigurationClient, transaction_id: str) -> list[TextContent]:
    """Commit a transaction."""
    transaction = await conf.commit_transaction(transaction_id)
    return _json(transaction.model_dump())


async def handle_delete_transaction(conf: ConfigurationClient, transaction_id: str) -> list[TextContent]:
    """Abort a transaction."""
    await conf.delete_transaction(transaction_id)
    return _json({"success": True, "transaction_id": transaction_id})


def handle_list_transactions(conf: ConfigurationClient, status: Optional[str] = None) -> list[TextContent]:
    """List transactions."""
    transactions = conf.get_transactions(status)
    return _json({
        "total": len(transactions),
        "transactions": [t.model_dump() for t in transactions],
    })


def handle_get_audit_log(
    entity_type: Optional[str] = None,
    operation: Optional[str] = None,
    limit: int = 20
) -> list[TextContent]:
    """Get recent configuration changes from the audit log."""
    records = get_recent_changes(
        log_file=str(audit_file) if audit_file else None,
        entity_type=entity_type,
        operation=operation,
        limit=limit
    )

    return _json({
        "total_records": len(records),
        "filters": {
            "entity_type": entity_type,
            "operation": operation,
            "limit": limit,
        },
        "records": [
            {
                "timestamp": r.timestamp,
                "operation": r.operation,
                "entity_type": r.entity_type,
                "key": r.key,
                "parent": r.parent,
                "transaction_id": r.transaction_id,
                "version": r.version,
                "success": r.success,
                "error": r.error,
            }
            for r in records
        ],
    })


def handle_engine_stats(conf: ConfigurationClient) -> list[TextContent]:
    """Engine timings and cache statistics."""
    return _json({
        "engine": global_stats.summary(),
        "cache": conf.cache.stats(),
    })


def main():
    """Run the MCP server."""

    async def run():
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options()
            )

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass
    finally:
        # Cleanup
        if client:
            asyncio.run(client.close())


if __name__ == "__main__":
    main()
