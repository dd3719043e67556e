"""MCP server implementation."""

import asyncio
import json
import signal
import sys
from typing import Any, Dict, List

import mcp.types as types
from mcp.server import stdio
from mcp.server.lowlevel import Server
from mcp.server.models import InitializationOptions

from mcp_pyrunner.config import Settings
from mcp_pyrunner.handlers import RequestHandlers, Response, create_handlers
from mcp_pyrunner.logging import get_logger

logger = get_logger("server")

SERVER_NAME = "mcp-pyrunner"
SERVER_VERSION = "0.1.0"

VENV_PROPERTY = {
    "type": "string",
    "description": "Virtual environment name (letters and numbers, default: 'default')",
}


def _tool(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> types.Tool:
    return types.Tool(
        name=name,
        description=description,
        inputSchema={"type": "object", "properties": properties, "required": required},
    )


tools = [
    _tool("status", "Report service state, interpreter and known environments", {}, []),
    _tool("list_environments", "List virtual environments", {}, []),
    _tool(
        "create_environment",
        "Create a new named virtual environment",
        {"name": {"type": "string", "description": "Environment name"}},
        ["name"],
    ),
    _tool(
        "delete_environment",
        "Delete a virtual environment (the default environment is protected)",
        {"name": {"type": "string", "description": "Environment name"}},
        ["name"],
    ),
    _tool(
        "execute_code",
        "Run Python code in a virtual environment with a wall-clock timeout",
        {
            "code": {"type": "string", "description": "Python source to run"},
            "timeout": {"type": "integer", "description": "Timeout in ms (1000-300000)"},
            "venv": VENV_PROPERTY,
        },
        ["code"],
    ),
    _tool(
        "install_packages",
        "Install packages with pip",
        {
            "packages": {"type": "string", "description": "Whitespace-separated specifiers"},
            "venv": VENV_PROPERTY,
        },
        ["packages"],
    ),
    _tool(
        "uninstall_packages",
        "Uninstall packages with pip",
        {
            "packages": {"type": "string", "description": "Whitespace-separated names"},
            "venv": VENV_PROPERTY,
        },
        ["packages"],
    ),
    _tool("list_packages", "List installed packages", {"venv": VENV_PROPERTY}, []),
    _tool("get_log_config", "Show the audit log configuration", {}, []),
    _tool(
        "set_log_config",
        "Update part of the audit log configuration",
        {
            "enabled": {"type": "boolean"},
            "directory": {"type": "string"},
            "maxFileSizeBytes": {"type": "integer"},
            "levels": {"type": "object", "description": "e.g. {\"DEBUG\": true}"},
        },
        [],
    ),
    _tool("list_log_files", "List audit log files, newest first", {}, []),
    _tool(
        "read_logs",
        "Read audit log lines, newest first",
        {
            "file": {"type": "string", "description": "Log file name (default: newest)"},
            "lines": {"type": "integer", "description": "Lines to return (1-500)"},
            "offset": {"type": "integer", "description": "Newest lines to skip"},
        },
        [],
    ),
    _tool(
        "delete_log_file",
        "Delete one audit log file",
        {"name": {"type": "string", "description": "Log file name"}},
        ["name"],
    ),
]


async def dispatch(handlers: RequestHandlers, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Route a tool call to its handler and wrap the response."""
    args = arguments or {}

    match name:
        case "status":
            response = await handlers.status()
        case "list_environments":
            response = await handlers.list_environments()
        case "create_environment":
            response = await handlers.create_environment(args.get("name"))
        case "delete_environment":
            response = await handlers.delete_environment(args.get("name"))
        case "execute_code":
            response = await handlers.execute_code(
                args.get("code"), args.get("timeout"), args.get("venv")
            )
        case "install_packages":
            response = await handlers.install_packages(args.get("packages"), args.get("venv"))
        case "uninstall_packages":
            response = await handlers.uninstall_packages(args.get("packages"), args.get("venv"))
        case "list_packages":
            response = await handlers.list_packages(args.get("venv"))
        case "get_log_config":
            response = await handlers.get_log_configuration()
        case "set_log_config":
            response = await handlers.set_log_configuration(dict(args))
        case "list_log_files":
            response = await handlers.list_log_files()
        case "read_logs":
            response = await handlers.read_logs(
                args.get("file"), args.get("lines"), args.get("offset")
            )
        case "delete_log_file":
            response = await handlers.delete_log_file(args.get("name"))
        case _:
            return {"success": False, "error": f"Unknown tool: {name}"}

    return wrap(response)


def wrap(response: Response) -> Dict[str, Any]:
    if response.ok:
        return {"success": True, "status": response.status, "data": response.body}
    return {"success": False, "status": response.status, **response.body}


async def init_server(handlers: RequestHandlers) -> Server:
    logger.info(f"Registered tools: {', '.join(t.name for t in tools)}")

    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        logger.debug("Tools requested")
        return tools

    @server.call_tool()
    async def call_tool(
        name: str, arguments: Dict[str, Any]
    ) -> list[types.TextContent | types.ImageContent | types.EmbeddedResource]:
        try:
            logger.debug(f"Tool called: {name}")
            result = await dispatch(handlers, name, arguments)
        except Exception as e:
            logger.exception(f"Tool invocation failed: {str(e)}")
            result = {"success": False, "status": 500, "error": str(e)}
        return [types.TextContent(text=json.dumps(result), type="text")]

    return server


async def serve(settings: Settings | None = None) -> None:
    settings = settings or Settings.from_env()
    handlers = await create_handlers(settings)
    logger.info("Starting PyRunner MCP server")

    server = await init_server(handlers)
    async with stdio.stdio_server() as (read_stream, write_stream):
        init_options = InitializationOptions(
            server_name=SERVER_NAME,
            server_version=SERVER_VERSION,
            capabilities=types.ServerCapabilities(
                tools=types.ToolsCapability(listChanged=False),
                logging=types.LoggingCapability(),
            ),
        )
        await server.run(read_stream, write_stream, init_options)


def handle_shutdown(signum, frame):
    logger.info(f"Shutting down on signal {signum}")
    sys.exit(0)


def setup_handlers() -> None:
    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)


def main() -> None:
    setup_handlers()
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception:
        logger.exception("Fatal server error")
        sys.exit(1)
