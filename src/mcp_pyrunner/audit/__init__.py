"""Audit log: persisted configuration and the rotating, leveled log store."""

from mcp_pyrunner.audit.config import LogConfig, LogConfigManager
from mcp_pyrunner.audit.store import AuditLog

__all__ = ["AuditLog", "LogConfig", "LogConfigManager"]
