"""Package management through an environment's pip."""
from typing import List

from mcp_pyrunner.audit import AuditLog
from mcp_pyrunner.config import MiB
from mcp_pyrunner.environments.store import EnvironmentStore
from mcp_pyrunner.errors import (
    ExecutionTimeoutError,
    PackageListError,
    SpawnError,
    ToolUnavailableError,
)
from mcp_pyrunner.execution.process import run_bounded
from mcp_pyrunner.logging import get_logger
from mcp_pyrunner.types import LogCategory, LogLevel, PackageInfo, PackageResult

logger = get_logger(__name__)

VERSION_SEPARATOR = "=="


def split_packages(packages: str) -> List[str]:
    """Whitespace-separated specifiers; pip validates them."""
    return [p for p in packages.split() if p]


def parse_freeze(output: str) -> List[PackageInfo]:
    """Parse ``pip list --format=freeze`` output."""
    packages = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        name, sep, version = line.partition(VERSION_SEPARATOR)
        if sep:
            packages.append(PackageInfo(name=name or line, version=version))
        else:
            packages.append(PackageInfo(name=line, version=""))
    return packages


class PackageManager:
    def __init__(
        self,
        store: EnvironmentStore,
        audit: AuditLog,
        install_timeout: float = 120,
        list_timeout: float = 30,
        probe_timeout: float = 10,
        max_output_bytes: int = MiB,
    ):
        self.store = store
        self.audit = audit
        self.install_timeout = install_timeout
        self.list_timeout = list_timeout
        self.probe_timeout = probe_timeout
        self.max_output_bytes = max_output_bytes

    def _pip(self, environment: str, *args: str) -> List[str]:
        env = self.store.resolve(environment)
        return [str(env.interpreter), "-m", "pip", *args]

    async def check_available(self, environment: str) -> bool:
        """True if pip runs in ``environment``."""
        argv = self._pip(environment, "--version")
        try:
            output = await run_bounded(argv, self.probe_timeout, self.max_output_bytes)
        except SpawnError as e:
            logger.debug({"event": "pip_probe_failed", "venv": environment, "error": str(e)})
            return False
        return not output.timed_out and output.returncode == 0

    async def install(self, packages: str, timeout_s: float, environment: str) -> PackageResult:
        return await self._change(
            "install", ["install"], packages, timeout_s, environment, "Installation failed"
        )

    async def uninstall(self, packages: str, timeout_s: float, environment: str) -> PackageResult:
        return await self._change(
            "uninstall", ["uninstall", "-y"], packages, timeout_s, environment, "Uninstall failed"
        )

    async def _change(
        self,
        action: str,
        pip_args: List[str],
        packages: str,
        timeout_s: float,
        environment: str,
        fallback_error: str,
    ) -> PackageResult:
        if not await self.check_available(environment):
            await self.audit.record(
                LogLevel.ERROR, LogCategory.PACKAGE, f"pip unavailable for {action}",
                {"venv": environment},
            )
            raise ToolUnavailableError(environment)

        names = split_packages(packages)
        await self.audit.record(
            LogLevel.INFO, LogCategory.PACKAGE, f"Running pip {action}",
            {"venv": environment, "packages": names},
        )

        argv = self._pip(environment, *pip_args, *names)
        try:
            output = await run_bounded(argv, timeout_s, self.max_output_bytes)
        except SpawnError as e:
            await self.audit.record(
                LogLevel.ERROR, LogCategory.PACKAGE, f"Failed to run pip {action}",
                {"venv": environment, "error": str(e)},
            )
            raise

        if output.timed_out:
            await self.audit.record(
                LogLevel.ERROR, LogCategory.PACKAGE, f"pip {action} timed out",
                {"venv": environment, "packages": names},
            )
            raise ExecutionTimeoutError(int(timeout_s * 1000), stdout=output.stdout)

        if output.returncode != 0:
            error = output.stderr.strip() or fallback_error
            await self.audit.record(
                LogLevel.ERROR, LogCategory.PACKAGE, f"pip {action} failed",
                {"venv": environment, "packages": names, "returncode": output.returncode},
            )
            return PackageResult(stdout=output.stdout, error=error)

        await self.audit.record(
            LogLevel.INFO, LogCategory.PACKAGE, f"pip {action} completed",
            {"venv": environment, "packages": names},
        )
        return PackageResult(stdout=output.stdout.strip())

    async def list(self, environment: str) -> List[PackageInfo]:
        """Installed packages in ``environment``.

        Raises:
            ToolUnavailableError: pip cannot run in ``environment``.
            ExecutionTimeoutError: the listing did not finish in time.
            SpawnError: pip could not be started.
            PackageListError: pip exited with an error.
        """
        if not await self.check_available(environment):
            raise ToolUnavailableError(environment)

        argv = self._pip(environment, "list", "--format=freeze")
        try:
            output = await run_bounded(argv, self.list_timeout, self.max_output_bytes)
        except SpawnError as e:
            await self.audit.record(
                LogLevel.ERROR, LogCategory.PACKAGE, "Failed to run pip list",
                {"venv": environment, "error": str(e)},
            )
            raise

        if output.timed_out:
            await self.audit.record(
                LogLevel.ERROR, LogCategory.PACKAGE, "pip list timed out",
                {"venv": environment, "timeout_s": self.list_timeout},
            )
            raise ExecutionTimeoutError(int(self.list_timeout * 1000), stdout=output.stdout)

        if output.returncode != 0 and not output.stdout:
            error = output.stderr.strip() or "Failed to list packages"
            await self.audit.record(
                LogLevel.ERROR, LogCategory.PACKAGE, "pip list failed",
                {"venv": environment, "error": error},
            )
            raise PackageListError(error)

        packages = parse_freeze(output.stdout)
        await self.audit.record(
            LogLevel.DEBUG, LogCategory.PACKAGE, "Listed packages",
            {"venv": environment, "count": len(packages)},
        )
        return packages
