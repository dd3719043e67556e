import subprocess
import sys
from pathlib import Path

import pytest

from mcp_pyrunner.audit import AuditLog, LogConfigManager
from mcp_pyrunner.config import DEFAULT_ENVIRONMENT, Settings
from mcp_pyrunner.environments.store import EnvironmentStore, interpreter_path
from mcp_pyrunner.execution.engine import ExecutionEngine
from mcp_pyrunner.handlers import RequestHandlers
from mcp_pyrunner.packages.manager import PackageManager


def make_fake_environment(base_dir: Path, name: str) -> Path:
    """Environment whose interpreter is a link to the running Python."""
    interpreter = interpreter_path(base_dir / name)
    interpreter.parent.mkdir(parents=True, exist_ok=True)
    interpreter.symlink_to(sys.executable)
    return interpreter


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(data_dir=tmp_path)


@pytest.fixture
def log_config(settings: Settings) -> LogConfigManager:
    manager = LogConfigManager(settings.log_config_path, settings.default_log_dir)
    manager.load()
    return manager


@pytest.fixture
def audit(log_config: LogConfigManager) -> AuditLog:
    return AuditLog(log_config)


@pytest.fixture
def store(settings: Settings, audit: AuditLog) -> EnvironmentStore:
    return EnvironmentStore(settings.venv_dir, audit)


@pytest.fixture
def default_env(store: EnvironmentStore) -> Path:
    """Fast stand-in for the default environment"""
    return make_fake_environment(store.base_dir, DEFAULT_ENVIRONMENT)


@pytest.fixture
def engine(store: EnvironmentStore, audit: AuditLog, default_env: Path) -> ExecutionEngine:
    return ExecutionEngine(store, audit)


@pytest.fixture
def handlers(
    settings: Settings,
    log_config: LogConfigManager,
    audit: AuditLog,
    store: EnvironmentStore,
    engine: ExecutionEngine,
) -> RequestHandlers:
    packages = PackageManager(store, audit, install_timeout=60)
    return RequestHandlers(settings, log_config, audit, store, engine, packages)


@pytest.fixture(scope="session")
def real_venv_dir(tmp_path_factory) -> Path:
    """Directory holding one real virtual environment with pip, built once per session"""
    base_dir = tmp_path_factory.mktemp("venvs")
    subprocess.run(
        [sys.executable, "-m", "venv", str(base_dir / DEFAULT_ENVIRONMENT)],
        check=True,
        capture_output=True,
    )
    return base_dir


@pytest.fixture
def real_store(real_venv_dir: Path, audit: AuditLog) -> EnvironmentStore:
    return EnvironmentStore(real_venv_dir, audit)


@pytest.fixture
def offline_pip(monkeypatch):
    """Make pip give up quickly when the index is unreachable"""
    monkeypatch.setenv("PIP_RETRIES", "0")
    monkeypatch.setenv("PIP_TIMEOUT", "5")
    monkeypatch.setenv("PIP_DISABLE_PIP_VERSION_CHECK", "1")
