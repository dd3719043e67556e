"""Code execution against a named environment."""
from mcp_pyrunner.audit import AuditLog
from mcp_pyrunner.config import MiB
from mcp_pyrunner.environments.store import EnvironmentStore
from mcp_pyrunner.errors import ExecutionTimeoutError, SpawnError
from mcp_pyrunner.execution.process import run_bounded
from mcp_pyrunner.logging import get_logger
from mcp_pyrunner.types import ExecutionResult, LogCategory, LogLevel

logger = get_logger(__name__)

PREVIEW_CHARS = 200


def _preview(text: str) -> str:
    return text if len(text) <= PREVIEW_CHARS else text[:PREVIEW_CHARS] + "..."


class ExecutionEngine:
    """Runs submitted code as ``<interpreter> -c <code>``, one process per call."""

    def __init__(self, store: EnvironmentStore, audit: AuditLog, max_output_bytes: int = MiB):
        self.store = store
        self.audit = audit
        self.max_output_bytes = max_output_bytes

    async def execute(self, code: str, timeout_ms: int, environment: str) -> ExecutionResult:
        """Run ``code`` and return its output.

        A nonzero exit with stderr output is a failed result, not an
        exception. A nonzero exit without stderr output counts as success.

        Raises:
            EnvironmentNotFoundError: ``environment`` does not exist.
            ExecutionTimeoutError: the timer fired before the process exited.
            SpawnError: the interpreter could not be started.
        """
        env = self.store.resolve(environment)

        await self.audit.record(
            LogLevel.INFO, LogCategory.SCRIPT, f"Executing code in venv: {environment}",
            {"timeout_ms": timeout_ms, "code": _preview(code)},
        )

        argv = [str(env.interpreter), "-c", code]
        try:
            output = await run_bounded(argv, timeout_ms / 1000, self.max_output_bytes)
        except SpawnError as e:
            await self.audit.record(
                LogLevel.ERROR, LogCategory.SCRIPT, "Failed to execute Python",
                {"venv": environment, "error": str(e)},
            )
            raise

        if output.timed_out:
            await self.audit.record(
                LogLevel.ERROR, LogCategory.SCRIPT, "Execution timed out",
                {"venv": environment, "timeout_ms": timeout_ms},
            )
            raise ExecutionTimeoutError(timeout_ms, stdout=output.stdout, stderr=output.stderr)

        details = {"venv": environment, "returncode": output.returncode}
        if output.truncated:
            details["truncated"] = True

        if output.returncode != 0 and output.stderr:
            await self.audit.record(
                LogLevel.WARN, LogCategory.SCRIPT, "Execution finished with error",
                {**details, "stderr": _preview(output.stderr.strip())},
            )
            return ExecutionResult(
                stdout=output.stdout,
                stderr=output.stderr.strip(),
                exit_status=output.returncode,
            )

        await self.audit.record(
            LogLevel.INFO, LogCategory.SCRIPT, "Execution completed", details,
        )
        return ExecutionResult(stdout=output.stdout.strip(), exit_status=output.returncode)
