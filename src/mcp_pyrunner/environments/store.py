"""Environment lifecycle management."""
import asyncio
import re
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from mcp_pyrunner.audit import AuditLog
from mcp_pyrunner.config import DEFAULT_ENVIRONMENT, MiB
from mcp_pyrunner.errors import (
    EnvironmentNotFoundError,
    ProtectedEnvironmentError,
    SpawnError,
    ValidationError,
)
from mcp_pyrunner.execution.process import run_bounded
from mcp_pyrunner.logging import get_logger
from mcp_pyrunner.types import Environment, LogCategory, LogLevel, OperationResult

logger = get_logger(__name__)

NAME_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


def validate_name(name: object) -> str:
    """Return ``name`` if it is a legal environment name."""
    if not isinstance(name, str) or not NAME_PATTERN.match(name):
        raise ValidationError(
            "Invalid venv name. Use only letters and numbers.",
            details={"name": name},
        )
    return name


def interpreter_path(root: Path, platform: Optional[str] = None) -> Path:
    """Location of the interpreter inside a virtual environment root."""
    match platform or sys.platform:
        case "win32":
            return root / "Scripts" / "python.exe"
        case _:
            return root / "bin" / "python"


class EnvironmentStore:
    """Creates, deletes, lists and resolves named virtual environments.

    Lifecycle operations on the same name are not serialized; callers check
    ``exists`` before ``create``.
    """

    def __init__(
        self,
        base_dir: Path,
        audit: AuditLog,
        runtime_command: str = sys.executable,
        create_timeout: float = 120,
        max_output_bytes: int = MiB,
    ):
        self.base_dir = base_dir
        self.audit = audit
        self.runtime_command = runtime_command
        self.create_timeout = create_timeout
        self.max_output_bytes = max_output_bytes

    def get(self, name: str) -> Environment:
        validate_name(name)
        root = self.base_dir / name
        return Environment(name=name, root=root, interpreter=interpreter_path(root))

    def resolve(self, name: str) -> Environment:
        """Environment for ``name``, which must already exist."""
        env = self.get(name)
        if not env.exists:
            raise EnvironmentNotFoundError(name)
        return env

    def exists(self, name: str) -> bool:
        return self.get(name).exists

    def list(self) -> List[str]:
        if not self.base_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.base_dir.iterdir()
            if entry.is_dir()
            and NAME_PATTERN.match(entry.name)
            and interpreter_path(entry).exists()
        )

    async def create(self, name: str) -> OperationResult:
        env = self.get(name)
        await self.audit.record(
            LogLevel.INFO, LogCategory.VENV, f"Creating virtual environment: {name}",
            {"path": str(env.root)},
        )

        self.base_dir.mkdir(parents=True, exist_ok=True)
        argv = [self.runtime_command, "-m", "venv", str(env.root)]
        try:
            output = await run_bounded(argv, self.create_timeout, self.max_output_bytes)
        except SpawnError as e:
            await self.audit.record(
                LogLevel.ERROR, LogCategory.VENV, f"Failed to spawn venv creation for {name}",
                {"error": str(e), **e.details},
            )
            return OperationResult(success=False, error=str(e))

        if output.timed_out:
            error = f"Virtual environment creation timed out after {self.create_timeout}s"
            await self.audit.record(
                LogLevel.ERROR, LogCategory.VENV, f"Venv creation timed out: {name}",
                {"timeout_s": self.create_timeout},
            )
            return OperationResult(success=False, error=error)

        if output.returncode != 0:
            error = output.stderr.strip() or "Failed to create virtual environment"
            await self.audit.record(
                LogLevel.ERROR, LogCategory.VENV, f"Venv creation failed: {name}",
                {"returncode": output.returncode, "stderr": output.stderr.strip()},
            )
            return OperationResult(success=False, error=error)

        logger.info({"event": "environment_created", "name": name, "root": str(env.root)})
        await self.audit.record(
            LogLevel.INFO, LogCategory.VENV, f"Virtual environment created: {name}",
        )
        return OperationResult(success=True)

    async def delete(self, name: str) -> OperationResult:
        env = self.get(name)
        if name == DEFAULT_ENVIRONMENT:
            raise ProtectedEnvironmentError(name)

        if not env.root.exists():
            return OperationResult(success=True)

        try:
            await asyncio.to_thread(shutil.rmtree, env.root)
        except OSError as e:
            await self.audit.record(
                LogLevel.ERROR, LogCategory.VENV, f"Failed to delete virtual environment: {name}",
                {"error": str(e)},
            )
            return OperationResult(success=False, error=str(e))

        logger.info({"event": "environment_deleted", "name": name})
        await self.audit.record(
            LogLevel.INFO, LogCategory.VENV, f"Virtual environment deleted: {name}",
        )
        return OperationResult(success=True)

    async def ensure_default(self) -> OperationResult:
        """Provision the default environment if it is missing."""
        if self.exists(DEFAULT_ENVIRONMENT):
            return OperationResult(success=True)

        await self.audit.record(
            LogLevel.INFO, LogCategory.SYSTEM, "Default virtual environment missing, provisioning",
        )
        result = await self.create(DEFAULT_ENVIRONMENT)
        if not result.success:
            logger.error({"event": "default_environment_failed", "error": result.error})
        return result
