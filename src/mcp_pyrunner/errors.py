"""Error types for the PyRunner service."""
from typing import Any, Dict, Optional

BAD_REQUEST = 400
NOT_FOUND = 404
INTERNAL_ERROR = 500


class PyRunnerError(Exception):
    """Base error class for the PyRunner service."""

    def __init__(
        self,
        message: str,
        status: int = INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status = status
        self.details = details or {}

    def to_response(self) -> Dict[str, Any]:
        """Convert to a response body."""
        return {"error": str(self)}


class ValidationError(PyRunnerError):
    """Request rejected before any filesystem or process action."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status=BAD_REQUEST, details=details)


class EnvironmentExistsError(PyRunnerError):
    def __init__(self, name: str):
        super().__init__(
            f'Virtual environment "{name}" already exists',
            status=BAD_REQUEST,
            details={"name": name},
        )


class ProtectedEnvironmentError(PyRunnerError):
    def __init__(self, name: str):
        super().__init__(
            f'Cannot delete the "{name}" virtual environment',
            status=BAD_REQUEST,
            details={"name": name},
        )


class EnvironmentNotFoundError(PyRunnerError):
    def __init__(self, name: str, status: int = NOT_FOUND):
        super().__init__(
            f'Virtual environment "{name}" not found',
            status=status,
            details={"name": name},
        )


class ToolUnavailableError(PyRunnerError):
    """Package tool missing from the target environment."""

    def __init__(self, name: str):
        super().__init__(
            f'pip is not installed or not available in "{name}". Please install pip first.',
            status=BAD_REQUEST,
            details={"name": name},
        )


class LogFileNotFoundError(PyRunnerError):
    def __init__(self, filename: str):
        super().__init__(
            f"Log file {filename} not found",
            status=NOT_FOUND,
            details={"file": filename},
        )


class ExecutionTimeoutError(PyRunnerError):
    """Process exceeded its wall-clock budget and was terminated."""

    def __init__(self, timeout_ms: int, stdout: str = "", stderr: str = ""):
        super().__init__(
            "Execution timed out",
            status=INTERNAL_ERROR,
            details={"timeout_ms": timeout_ms},
        )
        self.timeout_ms = timeout_ms
        self.stdout = stdout
        self.stderr = stderr

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": str(self)}
        if self.stdout:
            body["stdout"] = self.stdout
        return body


class SpawnError(PyRunnerError):
    """Process could not be started (missing binary, permission denied)."""

    def __init__(self, binary: str, reason: str):
        super().__init__(
            f"Failed to execute {binary}: {reason}",
            status=INTERNAL_ERROR,
            details={"binary": binary, "reason": reason},
        )


class PackageListError(PyRunnerError):
    """The package tool ran but produced no listing."""

    def __init__(self, message: str):
        super().__init__(message, status=INTERNAL_ERROR)
