"""Bounded subprocess runner shared by the execution engine and package manager."""
import asyncio
import os
from typing import Dict, List, Optional, Sequence, Set

import psutil

from mcp_pyrunner.config import MiB
from mcp_pyrunner.errors import SpawnError
from mcp_pyrunner.logging import get_logger
from mcp_pyrunner.types import ProcessOutput

logger = get_logger(__name__)

READ_CHUNK = 64 * 1024
SETTLE_S = 0.5
TERMINATE_GRACE_S = 5.0

PROCESS_ENV = {
    "PYTHONIOENCODING": "utf-8",
    "PYTHONUNBUFFERED": "1",
}


class BoundedBuffer:
    """Byte buffer that keeps the first ``limit`` bytes and counts the rest."""

    def __init__(self, limit: int):
        self.limit = limit
        self.size = 0
        self.discarded = 0
        self._chunks: List[bytes] = []

    def append(self, data: bytes) -> None:
        room = self.limit - self.size
        if room > 0:
            kept = data[:room]
            self._chunks.append(kept)
            self.size += len(kept)
            self.discarded += len(data) - len(kept)
        else:
            self.discarded += len(data)

    @property
    def truncated(self) -> bool:
        return self.discarded > 0

    def text(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")


async def _drain(stream: Optional[asyncio.StreamReader], buffer: BoundedBuffer) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(READ_CHUNK)
        if not chunk:
            break
        buffer.append(chunk)


async def _wait_for_exit(
    process: asyncio.subprocess.Process, stdout: BoundedBuffer, stderr: BoundedBuffer
) -> int:
    await asyncio.gather(_drain(process.stdout, stdout), _drain(process.stderr, stderr))
    return await process.wait()


def is_running(pid: int) -> bool:
    """True if ``pid`` is alive and not merely an unreaped zombie."""
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False


_reapers: Set["asyncio.Task[None]"] = set()


async def _reap(process: asyncio.subprocess.Process, exited: "asyncio.Future[int]") -> None:
    done, _ = await asyncio.wait({exited}, timeout=TERMINATE_GRACE_S)
    if not done:
        # No escalation to SIGKILL
        logger.warning(
            {
                "event": "process_ignored_terminate",
                "pid": process.pid,
                "running": is_running(process.pid),
            }
        )
    try:
        await exited
    except Exception as e:
        logger.debug({"event": "process_reap_failed", "pid": process.pid, "error": str(e)})


async def _terminate(process: asyncio.subprocess.Process, exited: "asyncio.Future[int]") -> None:
    """Send one SIGTERM and wait briefly for the process to go away.

    A process still around after ``SETTLE_S`` is reaped by a background task,
    so the caller settles without waiting on it.
    """
    try:
        process.terminate()
    except ProcessLookupError:
        pass

    done, _ = await asyncio.wait({exited}, timeout=SETTLE_S)
    if not done:
        task = asyncio.ensure_future(_reap(process, exited))
        _reapers.add(task)
        task.add_done_callback(_reapers.discard)


async def run_bounded(
    argv: Sequence[str],
    timeout: float,
    max_output_bytes: int = MiB,
    env_vars: Optional[Dict[str, str]] = None,
) -> ProcessOutput:
    """Run ``argv`` to completion or until ``timeout`` seconds elapse.

    Process exit and the timer race; whichever settles first decides the
    outcome. On timeout the process receives a single termination signal and
    the returned output has ``timed_out`` set.

    Raises:
        SpawnError: the process could not be started.
    """
    env = {**os.environ, **PROCESS_ENV, **(env_vars or {})}

    logger.debug({"event": "process_spawn", "argv": list(argv[:3]), "timeout": timeout})

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except (OSError, ValueError) as e:
        raise SpawnError(str(argv[0]), getattr(e, "strerror", None) or str(e)) from e

    stdout = BoundedBuffer(max_output_bytes)
    stderr = BoundedBuffer(max_output_bytes)
    exited = asyncio.ensure_future(_wait_for_exit(process, stdout, stderr))
    timer = asyncio.ensure_future(asyncio.sleep(timeout))

    try:
        done, _ = await asyncio.wait({exited, timer}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        timer.cancel()
        exited.cancel()
        if process.returncode is None:
            process.terminate()
        raise

    timed_out = exited not in done
    if timed_out:
        await _terminate(process, exited)
    else:
        timer.cancel()
        exited.result()

    logger.debug(
        {
            "event": "process_settled",
            "pid": process.pid,
            "returncode": process.returncode,
            "timed_out": timed_out,
        }
    )

    return ProcessOutput(
        returncode=process.returncode,
        stdout=stdout.text(),
        stderr=stderr.text(),
        timed_out=timed_out,
        truncated=stdout.truncated or stderr.truncated,
    )
