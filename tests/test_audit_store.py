import asyncio
import json
import os
import time
from pathlib import Path

import pytest

from mcp_pyrunner.audit import AuditLog, LogConfigManager
from mcp_pyrunner.audit.store import page_bounds
from mcp_pyrunner.errors import LogFileNotFoundError, ValidationError
from mcp_pyrunner.types import LogCategory, LogLevel


def read_all_records(directory: Path) -> list[dict]:
    records = []
    for path in directory.glob("*.log"):
        records.extend(json.loads(line) for line in path.read_text().splitlines() if line)
    return records


@pytest.mark.asyncio
async def test_record_appends_json_line(audit: AuditLog):
    await audit.record(LogLevel.INFO, LogCategory.SCRIPT, "Executing code", {"venv": "default"})

    files = list(audit.directory.glob("pyrunner-*.log"))
    assert len(files) == 1
    entry = json.loads(files[0].read_text().strip())
    assert entry["level"] == "INFO"
    assert entry["category"] == "SCRIPT"
    assert entry["msg"] == "Executing code"
    assert entry["details"] == {"venv": "default"}
    assert "ts" in entry


@pytest.mark.asyncio
async def test_disabled_level_is_skipped(audit: AuditLog):
    await audit.record(LogLevel.DEBUG, LogCategory.SYSTEM, "noise")
    assert not audit.directory.exists() or not list(audit.directory.glob("*.log"))


@pytest.mark.asyncio
async def test_disabled_log_writes_nothing(audit: AuditLog, log_config: LogConfigManager):
    await log_config.update({"enabled": False})
    await audit.record(LogLevel.ERROR, LogCategory.SYSTEM, "dropped")
    assert not audit.directory.exists()


@pytest.mark.asyncio
async def test_record_never_raises(audit: AuditLog, log_config: LogConfigManager, tmp_path: Path):
    """Test a broken log directory does not reach the caller"""
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    await log_config.update({"directory": str(blocker)})

    await audit.record(LogLevel.ERROR, LogCategory.SYSTEM, "still fine")


@pytest.mark.asyncio
async def test_append_order_preserved(audit: AuditLog):
    await asyncio.gather(
        *(audit.record(LogLevel.INFO, LogCategory.SCRIPT, f"msg {i}") for i in range(20))
    )

    (path,) = audit.directory.glob("*.log")
    records = [json.loads(line) for line in path.read_text().splitlines()]
    assert [r["msg"] for r in records] == [f"msg {i}" for i in range(20)]


@pytest.mark.asyncio
async def test_rotation_happens_once_and_loses_nothing(audit: AuditLog, log_config: LogConfigManager):
    """Test crossing the size threshold rotates exactly once before the next write"""
    await log_config.update({"maxFileSizeBytes": 400})

    written = 0
    while True:
        await audit.record(LogLevel.INFO, LogCategory.SCRIPT, f"record {written}")
        written += 1
        files = list(audit.directory.glob("*.log"))
        assert len(files) == 1
        if files[0].stat().st_size >= 400:
            break

    await audit.record(LogLevel.INFO, LogCategory.SCRIPT, f"record {written}")
    written += 1

    files = sorted(audit.directory.glob("*.log"))
    assert len(files) == 2
    canonical = [f for f in files if f.name.count(".") == 1]
    rotated = [f for f in files if f.name.count(".") == 2]
    assert len(canonical) == 1 and len(rotated) == 1
    assert len(canonical[0].read_text().splitlines()) == 1

    messages = sorted(int(r["msg"].split()[1]) for r in read_all_records(audit.directory))
    assert messages == list(range(written))


@pytest.mark.asyncio
async def test_rotated_names_are_unique(audit: AuditLog, log_config: LogConfigManager):
    await log_config.update({"maxFileSizeBytes": 1})
    for i in range(5):
        await audit.record(LogLevel.INFO, LogCategory.SCRIPT, f"record {i}")

    files = list(audit.directory.glob("*.log"))
    assert len(files) == 5
    assert len(read_all_records(audit.directory)) == 5


@pytest.mark.parametrize(
    "total,offset,count,expected",
    [
        (10, 0, 3, (7, 10)),
        (10, 3, 3, (4, 7)),
        (10, 8, 5, (0, 2)),
        (10, 12, 5, (0, 0)),
        (0, 0, 100, (0, 0)),
    ],
)
def test_page_bounds(total, offset, count, expected):
    assert page_bounds(total, offset, count) == expected


@pytest.mark.asyncio
async def test_read_most_recent_first(audit: AuditLog):
    for i in range(10):
        await audit.record(LogLevel.INFO, LogCategory.SCRIPT, f"msg {i}")

    page = await audit.read(lines=3, offset=2)

    assert page["total"] == 10
    assert page["returned"] == 3
    assert page["offset"] == 2
    assert [json.loads(e)["msg"] for e in page["entries"]] == ["msg 7", "msg 6", "msg 5"]


@pytest.mark.asyncio
async def test_read_clamps_line_count(audit: AuditLog):
    for i in range(3):
        await audit.record(LogLevel.INFO, LogCategory.SCRIPT, f"msg {i}")

    page = await audit.read(lines=0)
    assert page["returned"] == 1
    assert json.loads(page["entries"][0])["msg"] == "msg 2"

    page = await audit.read(lines=10_000)
    assert page["returned"] == 3


@pytest.mark.asyncio
async def test_read_without_files(audit: AuditLog):
    page = await audit.read()
    assert page == {"entries": [], "total": 0, "file": None, "offset": 0, "returned": 0}


@pytest.mark.asyncio
async def test_read_unknown_file(audit: AuditLog):
    with pytest.raises(LogFileNotFoundError):
        await audit.read("pyrunner-1999-01-01.log")


@pytest.mark.asyncio
async def test_list_files_newest_first(audit: AuditLog):
    audit.directory.mkdir(parents=True)
    old = audit.directory / "pyrunner-2024-01-01.log"
    new = audit.directory / "pyrunner-2024-01-02.log"
    old.write_text("a\n")
    new.write_text("bb\n")
    (audit.directory / "notes.txt").write_text("ignored")
    now = time.time()
    os.utime(old, (now - 100, now - 100))
    os.utime(new, (now, now))

    files = await audit.list_files()

    assert [f.name for f in files] == [new.name, old.name]
    assert files[0].size == 3


@pytest.mark.asyncio
async def test_delete_file(audit: AuditLog):
    await audit.record(LogLevel.INFO, LogCategory.SYSTEM, "x")
    name = (await audit.list_files())[0].name

    await audit.delete_file(name)
    assert await audit.list_files() == []

    with pytest.raises(LogFileNotFoundError):
        await audit.delete_file(name)


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["../secret.log", "a/b.log", "notes.txt", "", "..log"])
async def test_delete_rejects_invalid_names(audit: AuditLog, name):
    with pytest.raises(ValidationError):
        await audit.delete_file(name)
