"""Diagnostic logging configuration.

Stdout is owned by the MCP stdio transport, so all diagnostics go to stderr.
"""
import datetime
import json
import logging
import sys
from typing import Any, Dict, List, Optional

import structlog
from structlog.types import EventDict, Processor

IGNORED_LOGGERS = [
    "mcp.server.session",
    "mcp.server.stdio",
    "asyncio",
]


def add_timestamp(_, __, event_dict: EventDict) -> EventDict:
    """Add ISO timestamp to the event dict."""
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.datetime.now(datetime.timezone.utc).isoformat()
    return event_dict


def drop_ignored(logger: Any, name: str, event_dict: EventDict) -> EventDict:
    """Drop events emitted by noisy third-party loggers."""
    logger_name = getattr(logger, "name", "") or ""
    if any(ignored in logger_name for ignored in IGNORED_LOGGERS):
        raise structlog.DropEvent
    return event_dict


class CompactJSONRenderer:
    """Single-line JSON renderer with minimal output."""

    def __call__(self, _: Any, __: str, event_dict: EventDict) -> str:
        event = event_dict.pop("event", "")
        # Call sites log dicts: {"event": "...", ...}
        if isinstance(event, dict):
            event = dict(event)
            msg = event.pop("event", "")
            event_dict.update(event)
        else:
            msg = event
        items = {
            "ts": event_dict.pop("timestamp", None),
            "lvl": event_dict.pop("level", "???"),
            "logger": event_dict.pop("logger", None),
            "msg": msg,
        }
        if other := {k: v for k, v in event_dict.items()}:
            items["data"] = other
        return json.dumps(items, separators=(",", ":"), default=str)


def configure_logging(level: str = "INFO") -> None:
    """Configure structured diagnostic logging on stderr."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    processors: List[Processor] = [
        structlog.stdlib.filter_by_level,
        drop_ignored,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_timestamp,
        structlog.processors.format_exc_info,
        CompactJSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_error(
    logger: structlog.stdlib.BoundLogger,
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
) -> None:
    """Log an error with context."""
    error_info: Dict[str, Any] = {
        "event": "error",
        "error_type": error.__class__.__name__,
        "error_message": str(error),
    }
    if context:
        error_info["context"] = context
    details = getattr(error, "details", None)
    if details:
        error_info["details"] = details
    logger.error(error_info)
