"""MCP server wiring for gitlab-mcp.

Tool results and resources are returned as JSON text. Both resources are
computed on read and never include the access token.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable
from typing import Any

try:
    from mcp.server import Server
    from mcp.types import Resource, TextContent, Tool
except ImportError as exc:  # pragma: no cover
    raise ImportError("MCP library not installed. Install with: pip install mcp") from exc

from . import __version__, user_search
from .errors import SafeError, internal_error
from .policy import WRITE_OPERATIONS
from .safety import redact_text
from .tools import TOOL_METADATA, dispatch_tool, initialize_runtime_from_env

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger(__name__)

SERVER_NAME = "gitlab-mcp"
STATUS_URI = "gitlab-mcp://server-status"
CAPABILITIES_URI = "gitlab-mcp://capabilities"

server = Server(SERVER_NAME)


def _as_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, default=str)


def _capabilities() -> dict[str, Any]:
    return {
        "server": SERVER_NAME,
        "version": __version__,
        "allow_listed_operations": sorted(TOOL_METADATA),
        "write_operations": sorted(WRITE_OPERATIONS),
        "user_search": {
            "smart_search_default": True,
            "strategies": [
                user_search.STRATEGY_EXACT_EMAIL,
                user_search.STRATEGY_EXACT_HANDLE,
                user_search.STRATEGY_FUZZY,
                user_search.STRATEGY_TRANSLITERATED,
                user_search.STRATEGY_BROADENED,
            ],
            "caches_results": False,
        },
        "safety": {
            "credentials_rejected_in_arguments": True,
            "no_arbitrary_gitlab_api_calls": True,
        },
    }


def _server_status() -> dict[str, Any]:
    """Describe the effective configuration, or ``configured: false`` if it is invalid."""
    status: dict[str, Any] = {
        "server": SERVER_NAME,
        "version": __version__,
        "tools_available": len(TOOL_METADATA),
        "tool_names": sorted(TOOL_METADATA),
        "configured": False,
    }
    try:
        runtime = initialize_runtime_from_env()
    except SafeError as err:
        status["config_error"] = err.message
        return status

    config = runtime.config
    allowed = config.policy.allowed_projects
    status.update(
        configured=True,
        gitlab_api_url=config.api_url,
        auth_scheme=runtime.auth.scheme,
        limits={
            "total_timeout_s": config.limits.total_timeout_s,
            "file_max_bytes": config.limits.file_max_bytes,
            "attachment_max_bytes": config.limits.attachment_max_bytes,
        },
        policy={
            "read_only": runtime.policy.read_only,
            "project_allowlist_enabled": bool(allowed),
            "project_allowlist_count": len(allowed),
        },
        audit={"file_sink_enabled": config.audit_log_path is not None},
    )
    return status


# uri -> (name, description, builder)
_RESOURCES: dict[str, tuple[str, str, Callable[[], dict[str, Any]]]] = {
    STATUS_URI: ("Server Status", "Non-secret server configuration and limits", _server_status),
    CAPABILITIES_URI: ("Capabilities", "Allow-listed operations and safety constraints", _capabilities),
}


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List all available tools."""
    tools = [
        Tool(name=name, description=meta["description"], inputSchema=meta["inputSchema"])
        for name, meta in TOOL_METADATA.items()
    ]
    logger.debug("Listed %s tools", len(tools))
    return tools


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    if not isinstance(arguments, dict):
        arguments = {}

    logger.info("Tool called: %s", name)
    try:
        result = await dispatch_tool(name, arguments)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        logger.error("Tool %s failed: %s", name, redact_text(str(exc)))
        result = internal_error("Tool execution failed")
    return [TextContent(type="text", text=_as_json(result))]


@server.list_resources()
async def list_resources() -> list[Resource]:
    return [
        Resource(uri=uri, name=name, description=description, mimeType="application/json")
        for uri, (name, description, _) in _RESOURCES.items()
    ]


@server.read_resource()
async def read_resource(uri: Any) -> str:
    """Render a resource; unknown URIs get a ``NotFound`` envelope."""
    entry = _RESOURCES.get(str(uri).rstrip("/"))
    if entry is None:
        return _as_json({"ok": False, "code": "NotFound", "message": "Unknown resource"})
    return _as_json(entry[2]())


async def run_server() -> None:
    """Run the server over stdio.

    Invalid host configuration fails startup instead of every later tool call.
    """
    try:
        runtime = initialize_runtime_from_env()
    except SafeError as err:
        logger.error("Startup configuration error: %s", err.message)
        raise
    logger.info("Serving %s tools against %s", len(TOOL_METADATA), runtime.config.api_url)

    from mcp.server.stdio import stdio_server

    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


async def self_test() -> None:
    """Check that tool and resource listing work without touching GitLab."""
    tools = await list_tools()
    resources = await list_resources()
    for uri in _RESOURCES:
        json.loads(await read_resource(uri))
    logger.info("Self-test OK: %s tools, %s resources", len(tools), len(resources))
