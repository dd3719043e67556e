import asyncio
import time
from pathlib import Path

import pytest

from mcp_pyrunner.audit import AuditLog
from mcp_pyrunner.environments.store import EnvironmentStore, interpreter_path
from mcp_pyrunner.errors import EnvironmentNotFoundError, ExecutionTimeoutError, SpawnError
from mcp_pyrunner.execution.engine import ExecutionEngine
from mcp_pyrunner.execution.process import is_running


@pytest.mark.asyncio
async def test_execute_success(engine: ExecutionEngine):
    result = await engine.execute("print(2+2)", 5000, "default")

    assert result.stdout == "4"
    assert result.stderr is None
    assert not result.failed


@pytest.mark.asyncio
async def test_execute_trims_successful_output(engine: ExecutionEngine):
    result = await engine.execute("print('\\n  hello  \\n')", 5000, "default")
    assert result.stdout == "hello"


@pytest.mark.asyncio
async def test_execute_unhandled_error(engine: ExecutionEngine):
    """Test a raising script yields a failed result with partial stdout"""
    result = await engine.execute("print('before')\nraise ValueError('boom')", 5000, "default")

    assert result.failed
    assert "ValueError: boom" in result.stderr
    assert result.stdout == "before\n"
    assert result.exit_status == 1


@pytest.mark.asyncio
async def test_nonzero_exit_without_stderr_is_success(engine: ExecutionEngine):
    result = await engine.execute("print('partial')\nraise SystemExit(2)", 5000, "default")

    assert not result.failed
    assert result.stderr is None
    assert result.stdout == "partial"
    assert result.exit_status == 2


@pytest.mark.asyncio
async def test_execute_timeout(engine: ExecutionEngine, monkeypatch):
    """Test the timer forces termination and reports a timeout"""
    spawned = []
    create_subprocess_exec = asyncio.create_subprocess_exec

    async def recording_exec(*args, **kwargs):
        process = await create_subprocess_exec(*args, **kwargs)
        spawned.append(process.pid)
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", recording_exec)
    started = time.monotonic()

    with pytest.raises(ExecutionTimeoutError) as exc_info:
        await engine.execute("import time; time.sleep(10)", 200, "default")

    assert time.monotonic() - started < 2
    assert exc_info.value.timeout_ms == 200
    assert len(spawned) == 1
    assert not is_running(spawned[0])


@pytest.mark.asyncio
async def test_execute_unknown_environment(engine: ExecutionEngine):
    with pytest.raises(EnvironmentNotFoundError):
        await engine.execute("print(1)", 5000, "missing")


@pytest.mark.asyncio
async def test_execute_spawn_failure(store: EnvironmentStore, audit: AuditLog):
    """Test an unexecutable interpreter is a hard failure"""
    interpreter = interpreter_path(store.base_dir / "broken")
    interpreter.parent.mkdir(parents=True)
    interpreter.write_text("not a binary")
    interpreter.chmod(0o644)
    engine = ExecutionEngine(store, audit)

    with pytest.raises(SpawnError):
        await engine.execute("print(1)", 5000, "broken")


@pytest.mark.asyncio
async def test_concurrent_executions_are_independent(engine: ExecutionEngine):
    results = await asyncio.gather(
        *(engine.execute(f"print({i} * 10)", 10000, "default") for i in range(5))
    )
    assert [r.stdout for r in results] == [str(i * 10) for i in range(5)]


@pytest.mark.asyncio
async def test_execution_is_audited(engine: ExecutionEngine, audit: AuditLog):
    await engine.execute("print('x')", 5000, "default")

    page = await audit.read()
    assert page["total"] >= 2
    assert '"category":"SCRIPT"' in page["entries"][0]
