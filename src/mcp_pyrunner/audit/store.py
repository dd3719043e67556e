"""Append-only audit log with size-based rotation."""
import asyncio
import json
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp_pyrunner.audit.config import LogConfigManager
from mcp_pyrunner.errors import LogFileNotFoundError, ValidationError
from mcp_pyrunner.logging import get_logger
from mcp_pyrunner.types import LogCategory, LogFileInfo, LogLevel, LogRecord

logger = get_logger(__name__)

LOG_PREFIX = "pyrunner-"
LOG_SUFFIX = ".log"
LOG_FILENAME = re.compile(r"^[A-Za-z0-9._-]+\.log$")
DEFAULT_READ_LINES = 100
MAX_READ_LINES = 500


def day_filename(moment: datetime) -> str:
    return f"{LOG_PREFIX}{moment.strftime('%Y-%m-%d')}{LOG_SUFFIX}"


def format_record(record: LogRecord) -> str:
    entry: Dict[str, Any] = {
        "ts": record.timestamp.isoformat(),
        "level": record.level.value,
        "category": record.category.value,
        "msg": record.message,
    }
    if record.details:
        entry["details"] = record.details
    return json.dumps(entry, separators=(",", ":"), default=str)


def page_bounds(total: int, offset: int, count: int) -> tuple[int, int]:
    """Index range of the ``count`` lines that precede the newest ``offset`` lines."""
    end = max(0, total - offset)
    start = max(0, total - offset - count)
    return start, end


class AuditLog:
    """Durable operation log shared by every component.

    ``record`` is best effort: a failure anywhere in the write pipeline is
    reported on the diagnostic logger and never reaches the caller.
    """

    def __init__(self, config: LogConfigManager):
        self.config = config
        self._lock = asyncio.Lock()
        self._last_suffix = 0

    @property
    def directory(self) -> Path:
        return self.config.current.directory

    async def record(
        self,
        level: LogLevel,
        category: LogCategory,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            current = self.config.current
            if not current.enabled or not current.level_enabled(level):
                return

            entry = LogRecord(
                timestamp=datetime.now(timezone.utc),
                level=level,
                category=category,
                message=message,
                details=details or {},
            )
            line = format_record(entry)

            # Appends share one lock so file order equals append order
            async with self._lock:
                await asyncio.to_thread(
                    self._append,
                    current.directory,
                    day_filename(entry.timestamp),
                    current.max_file_size_bytes,
                    line,
                )
        except Exception as e:
            logger.warning(
                {
                    "event": "audit_record_failed",
                    "level": level.value,
                    "category": category.value,
                    "message": message,
                    "error": str(e),
                }
            )

    def _append(self, directory: Path, filename: str, max_size: int, line: str) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / filename
        if path.exists() and path.stat().st_size >= max_size:
            self._rotate(path)
        with path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def _rotate(self, path: Path) -> Path:
        suffix = max(int(time.time() * 1000), self._last_suffix + 1)
        target = path.with_name(f"{path.stem}.{suffix}{LOG_SUFFIX}")
        while target.exists():
            suffix += 1
            target = path.with_name(f"{path.stem}.{suffix}{LOG_SUFFIX}")
        self._last_suffix = suffix
        path.rename(target)
        logger.debug({"event": "audit_log_rotated", "from": str(path), "to": str(target)})
        return target

    async def list_files(self) -> List[LogFileInfo]:
        return await asyncio.to_thread(self._list_files, self.directory)

    @staticmethod
    def _list_files(directory: Path) -> List[LogFileInfo]:
        if not directory.is_dir():
            return []
        files = []
        for path in directory.glob(f"*{LOG_SUFFIX}"):
            if not path.is_file():
                continue
            stat = path.stat()
            files.append(
                LogFileInfo(
                    name=path.name,
                    size=stat.st_size,
                    modified=datetime.fromtimestamp(stat.st_mtime, timezone.utc),
                )
            )
        files.sort(key=lambda f: (f.modified, f.name), reverse=True)
        return files

    async def read(
        self,
        filename: Optional[str] = None,
        lines: int = DEFAULT_READ_LINES,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """Return a most-recent-first page of lines from one log file."""
        count = min(max(int(lines), 1), MAX_READ_LINES)
        offset = max(int(offset), 0)

        if filename is None:
            files = await self.list_files()
            if not files:
                return {"entries": [], "total": 0, "file": None, "offset": offset, "returned": 0}
            filename = files[0].name

        path = self._resolve(filename)
        if not path.is_file():
            raise LogFileNotFoundError(filename)

        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        all_lines = [line for line in content.splitlines() if line.strip()]
        start, end = page_bounds(len(all_lines), offset, count)
        entries = list(reversed(all_lines[start:end]))

        return {
            "entries": entries,
            "total": len(all_lines),
            "file": filename,
            "offset": offset,
            "returned": len(entries),
        }

    async def delete_file(self, filename: str) -> None:
        path = self._resolve(filename)
        if not path.is_file():
            raise LogFileNotFoundError(filename)
        await asyncio.to_thread(path.unlink)

    def _resolve(self, filename: str) -> Path:
        if not isinstance(filename, str) or ".." in filename or not LOG_FILENAME.match(filename):
            raise ValidationError("Invalid log filename", details={"file": filename})
        return self.directory / filename
