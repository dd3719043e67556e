"""Core type definitions"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class LogLevel(str, Enum):
    ERROR = "ERROR"
    WARN = "WARN"
    INFO = "INFO"
    DEBUG = "DEBUG"


class LogCategory(str, Enum):
    SCRIPT = "SCRIPT"
    SYSTEM = "SYSTEM"
    VENV = "VENV"
    PACKAGE = "PACKAGE"


@dataclass(frozen=True)
class Environment:
    """Named virtual environment on disk"""
    name: str
    root: Path
    interpreter: Path

    @property
    def exists(self) -> bool:
        return self.interpreter.exists()


@dataclass(frozen=True)
class OperationResult:
    """Success flag plus diagnostic for lifecycle operations"""
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class ProcessOutput:
    """Outcome of one bounded subprocess run"""
    returncode: Optional[int]
    stdout: str
    stderr: str
    timed_out: bool = False
    truncated: bool = False


@dataclass(frozen=True)
class ExecutionResult:
    """Result of running submitted code"""
    stdout: str
    stderr: Optional[str] = None
    exit_status: Optional[int] = 0

    @property
    def failed(self) -> bool:
        return self.stderr is not None


@dataclass(frozen=True)
class PackageResult:
    """Result of an install or uninstall"""
    stdout: str
    error: Optional[str] = None


@dataclass(frozen=True)
class PackageInfo:
    name: str
    version: str


@dataclass(frozen=True)
class LogRecord:
    """One audit log entry"""
    timestamp: datetime
    level: LogLevel
    category: LogCategory
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LogFileInfo:
    name: str
    size: int
    modified: datetime
