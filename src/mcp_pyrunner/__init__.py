"""PyRunner MCP server package."""

from mcp_pyrunner.types import (
    Environment,
    ExecutionResult,
    LogCategory,
    LogLevel,
    PackageInfo,
    PackageResult,
)
from mcp_pyrunner.config import Settings
from mcp_pyrunner.audit import AuditLog, LogConfig, LogConfigManager
from mcp_pyrunner.environments.store import EnvironmentStore
from mcp_pyrunner.execution.engine import ExecutionEngine
from mcp_pyrunner.packages.manager import PackageManager
from mcp_pyrunner.handlers import RequestHandlers, Response, create_handlers
from mcp_pyrunner.errors import (
    PyRunnerError,
    ValidationError,
    EnvironmentNotFoundError,
    ProtectedEnvironmentError,
    ToolUnavailableError,
    ExecutionTimeoutError,
    SpawnError,
)

__version__ = "0.1.0"

__all__ = [
    # Types
    "Environment",
    "ExecutionResult",
    "LogCategory",
    "LogLevel",
    "PackageInfo",
    "PackageResult",
    "Settings",

    # Components
    "AuditLog",
    "LogConfig",
    "LogConfigManager",
    "EnvironmentStore",
    "ExecutionEngine",
    "PackageManager",
    "RequestHandlers",
    "Response",
    "create_handlers",

    # Error types
    "PyRunnerError",
    "ValidationError",
    "EnvironmentNotFoundError",
    "ProtectedEnvironmentError",
    "ToolUnavailableError",
    "ExecutionTimeoutError",
    "SpawnError",
]
