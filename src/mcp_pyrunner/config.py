"""Service settings."""
import os
import sys
from dataclasses import dataclass
from pathlib import Path

import appdirs

APP_NAME = "mcp-pyrunner"
DEFAULT_ENVIRONMENT = "default"
MiB = 1024 * 1024


@dataclass(frozen=True)
class Settings:
    """Process-wide service settings"""
    data_dir: Path
    runtime_command: str = sys.executable
    default_timeout_ms: int = 30000
    min_timeout_ms: int = 1000
    max_timeout_ms: int = 300000
    max_output_bytes: int = MiB
    create_timeout_s: float = 120
    install_timeout_s: float = 120
    list_timeout_s: float = 30
    probe_timeout_s: float = 10
    diagnostic_level: str = "INFO"

    @property
    def venv_dir(self) -> Path:
        return self.data_dir / "venvs"

    @property
    def log_config_path(self) -> Path:
        return self.data_dir / "log-config.json"

    @property
    def default_log_dir(self) -> Path:
        return self.data_dir / "logs"

    @classmethod
    def from_env(cls) -> "Settings":
        data_dir = os.environ.get("PYRUNNER_DATA_DIR") or appdirs.user_data_dir(APP_NAME)
        return cls(
            data_dir=Path(data_dir),
            diagnostic_level=os.environ.get("PYRUNNER_LOG_LEVEL", "INFO"),
        )
