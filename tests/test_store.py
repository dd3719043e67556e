import json
from pathlib import Path

import pytest

from conftest import make_fake_environment
from mcp_pyrunner.audit import AuditLog
from mcp_pyrunner.environments.store import EnvironmentStore, interpreter_path, validate_name
from mcp_pyrunner.errors import (
    EnvironmentNotFoundError,
    ProtectedEnvironmentError,
    ValidationError,
)


@pytest.mark.parametrize("name", ["default", "build123", "ABC"])
def test_valid_names(name):
    assert validate_name(name) == name


@pytest.mark.parametrize("name", ["", "my-env", "../etc", "a b", "env_1", None, 42])
def test_invalid_names(name):
    with pytest.raises(ValidationError):
        validate_name(name)


def test_interpreter_path_per_platform(tmp_path: Path):
    assert interpreter_path(tmp_path, "linux") == tmp_path / "bin" / "python"
    assert interpreter_path(tmp_path, "darwin") == tmp_path / "bin" / "python"
    assert interpreter_path(tmp_path, "win32") == tmp_path / "Scripts" / "python.exe"


def test_list_only_includes_environments_with_interpreter(store: EnvironmentStore):
    make_fake_environment(store.base_dir, "zeta")
    make_fake_environment(store.base_dir, "alpha")
    (store.base_dir / "broken").mkdir()
    (store.base_dir / "bad-name").mkdir()

    assert store.list() == ["alpha", "zeta"]
    assert store.exists("alpha")
    assert not store.exists("broken")


def test_list_without_base_dir(store: EnvironmentStore):
    assert store.list() == []


def test_resolve_unknown(store: EnvironmentStore):
    with pytest.raises(EnvironmentNotFoundError):
        store.resolve("missing")


@pytest.mark.asyncio
async def test_create_then_delete(store: EnvironmentStore):
    """Test a real venv round trip through create, exists and delete"""
    result = await store.create("build123")
    assert result.success, result.error
    assert store.exists("build123")
    assert "build123" in store.list()

    result = await store.delete("build123")
    assert result.success
    assert not store.exists("build123")
    assert not (store.base_dir / "build123").exists()


@pytest.mark.asyncio
async def test_delete_default_is_refused(store: EnvironmentStore, default_env: Path):
    with pytest.raises(ProtectedEnvironmentError):
        await store.delete("default")
    assert store.exists("default")


@pytest.mark.asyncio
async def test_delete_missing_is_noop(store: EnvironmentStore):
    result = await store.delete("ghost")
    assert result.success


@pytest.mark.asyncio
async def test_create_with_missing_tool(tmp_path: Path, audit: AuditLog):
    """Test spawn failures collapse into a failed result"""
    store = EnvironmentStore(tmp_path / "venvs", audit, runtime_command=str(tmp_path / "nope"))

    result = await store.create("build1")

    assert not result.success
    assert "nope" in result.error
    assert not store.exists("build1")


@pytest.mark.asyncio
async def test_create_with_failing_tool(tmp_path: Path, audit: AuditLog):
    """Test a silent nonzero exit gets a generic diagnostic"""
    store = EnvironmentStore(tmp_path / "venvs", audit, runtime_command="false")

    result = await store.create("build1")

    assert not result.success
    assert result.error == "Failed to create virtual environment"

    entries = [json.loads(line) for f in audit.directory.glob("*.log") for line in f.read_text().splitlines()]
    assert any(e["level"] == "ERROR" and e["category"] == "VENV" for e in entries)


@pytest.mark.asyncio
async def test_ensure_default_skips_existing(store: EnvironmentStore, default_env: Path, monkeypatch):
    async def fail_create(name):
        raise AssertionError("should not create")

    monkeypatch.setattr(store, "create", fail_create)
    result = await store.ensure_default()
    assert result.success


@pytest.mark.asyncio
async def test_ensure_default_provisions(store: EnvironmentStore):
    result = await store.ensure_default()
    assert result.success, result.error
    assert store.exists("default")
