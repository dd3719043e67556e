"""Persisted audit log configuration."""
import asyncio
import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from mcp_pyrunner.config import MiB
from mcp_pyrunner.errors import ValidationError
from mcp_pyrunner.logging import get_logger
from mcp_pyrunner.types import LogLevel

logger = get_logger(__name__)

DEFAULT_MAX_FILE_SIZE = 5 * MiB


def default_levels() -> Dict[str, bool]:
    return {
        LogLevel.ERROR.value: True,
        LogLevel.WARN.value: True,
        LogLevel.INFO.value: True,
        LogLevel.DEBUG.value: False,
    }


@dataclass(frozen=True)
class LogConfig:
    """Audit log configuration"""
    enabled: bool
    directory: Path
    max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE
    levels: Dict[str, bool] = field(default_factory=default_levels)

    def level_enabled(self, level: LogLevel) -> bool:
        return self.levels.get(level.value, False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "directory": str(self.directory),
            "maxFileSizeBytes": self.max_file_size_bytes,
            "levels": dict(self.levels),
        }

    def merge(self, partial: Mapping[str, Any]) -> "LogConfig":
        """Return a copy with every known field in ``partial`` applied."""
        changes: Dict[str, Any] = {}

        if "enabled" in partial:
            changes["enabled"] = bool(partial["enabled"])

        if "directory" in partial:
            directory = partial["directory"]
            if not isinstance(directory, str) or not directory.strip():
                raise ValidationError("directory must be a non-empty string")
            changes["directory"] = Path(directory).expanduser()

        if "maxFileSizeBytes" in partial:
            size = partial["maxFileSizeBytes"]
            if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
                raise ValidationError(
                    "maxFileSizeBytes must be a positive integer",
                    details={"maxFileSizeBytes": size},
                )
            changes["max_file_size_bytes"] = size

        if "levels" in partial:
            levels = partial["levels"]
            if not isinstance(levels, Mapping):
                raise ValidationError("levels must be an object")
            merged = dict(self.levels)
            for name, enabled in levels.items():
                key = str(name).upper()
                if key not in LogLevel.__members__:
                    raise ValidationError(f"Unknown log level: {name}")
                merged[key] = bool(enabled)
            changes["levels"] = merged

        return replace(self, **changes)


class LogConfigManager:
    """Single owner of the process-wide audit log configuration.

    Loaded once at startup; every update merges into the current value and is
    persisted before the new value becomes visible.
    """

    def __init__(self, path: Path, default_directory: Path):
        self.path = path
        self._defaults = LogConfig(enabled=True, directory=default_directory)
        self._current = self._defaults
        self._lock = asyncio.Lock()

    @property
    def current(self) -> LogConfig:
        return self._current

    def load(self) -> LogConfig:
        """Load the persisted configuration, falling back to defaults."""
        if not self.path.exists():
            self._current = self._defaults
            return self._current

        try:
            stored = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(stored, dict):
                raise ValueError("configuration root must be an object")
            self._current = self._defaults.merge(stored)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(
                {"event": "log_config_load_failed", "path": str(self.path), "error": str(e)}
            )
            self._current = self._defaults

        return self._current

    async def update(self, partial: Mapping[str, Any]) -> LogConfig:
        """Merge ``partial`` into the configuration and persist it."""
        async with self._lock:
            updated = self._current.merge(partial)
            await asyncio.to_thread(self._write, updated)
            self._current = updated
            logger.info({"event": "log_config_updated", "config": updated.to_dict()})
            return updated

    def _write(self, config: LogConfig) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)
