"""Service boundary operations.

Each handler returns a ``Response`` whose status follows HTTP conventions, so
the same contracts serve any transport. Handlers never raise.
"""
import functools
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from mcp_pyrunner.audit import AuditLog, LogConfigManager
from mcp_pyrunner.config import DEFAULT_ENVIRONMENT, Settings
from mcp_pyrunner.environments.store import EnvironmentStore, validate_name
from mcp_pyrunner.errors import (
    BAD_REQUEST,
    INTERNAL_ERROR,
    EnvironmentExistsError,
    EnvironmentNotFoundError,
    PackageListError,
    ProtectedEnvironmentError,
    PyRunnerError,
    ToolUnavailableError,
    ValidationError,
)
from mcp_pyrunner.execution.engine import ExecutionEngine
from mcp_pyrunner.logging import configure_logging, get_logger, log_error
from mcp_pyrunner.packages.manager import PackageManager
from mcp_pyrunner.types import LogCategory, LogLevel

logger = get_logger(__name__)


@dataclass(frozen=True)
class Response:
    status: int
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status < 400


def respond(**body: Any) -> Response:
    return Response(status=200, body=body)


def handles_errors(
    fn: Callable[..., Awaitable[Response]]
) -> Callable[..., Awaitable[Response]]:
    """Map raised errors onto responses."""

    @functools.wraps(fn)
    async def wrapper(self: "RequestHandlers", *args: Any, **kwargs: Any) -> Response:
        try:
            return await fn(self, *args, **kwargs)
        except PyRunnerError as e:
            if e.status >= INTERNAL_ERROR:
                log_error(logger, e, {"operation": fn.__name__})
            return Response(status=e.status, body=e.to_response())
        except Exception as e:
            log_error(logger, e, {"operation": fn.__name__})
            await self.audit.record(
                LogLevel.ERROR, LogCategory.SYSTEM, f"Unhandled error in {fn.__name__}",
                {"error": str(e)},
            )
            return Response(status=INTERNAL_ERROR, body={"error": str(e)})

    return wrapper


def parse_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class RequestHandlers:
    def __init__(
        self,
        settings: Settings,
        log_config: LogConfigManager,
        audit: AuditLog,
        store: EnvironmentStore,
        engine: ExecutionEngine,
        packages: PackageManager,
    ):
        self.settings = settings
        self.log_config = log_config
        self.audit = audit
        self.store = store
        self.engine = engine
        self.packages = packages

    def _target(self, venv: Optional[str]) -> str:
        """Validated name of an existing environment, for operations that use one."""
        name = validate_name(venv or DEFAULT_ENVIRONMENT)
        if not self.store.exists(name):
            raise EnvironmentNotFoundError(name, status=BAD_REQUEST)
        return name

    def _clamp_timeout(self, timeout: Any) -> int:
        value = parse_int(timeout, self.settings.default_timeout_ms)
        if value <= 0:
            value = self.settings.default_timeout_ms
        return min(max(value, self.settings.min_timeout_ms), self.settings.max_timeout_ms)

    @handles_errors
    async def status(self) -> Response:
        default_ready = self.store.exists(DEFAULT_ENVIRONMENT)
        pip_available = default_ready and await self.packages.check_available(DEFAULT_ENVIRONMENT)
        return respond(
            serviceState="ok",
            runtimeCommand=self.settings.runtime_command,
            knownEnvironments=self.store.list(),
            defaultEnvironmentReady=default_ready,
            packageToolAvailable=pip_available,
        )

    @handles_errors
    async def list_environments(self) -> Response:
        return respond(environments=self.store.list())

    @handles_errors
    async def create_environment(self, name: Any) -> Response:
        name = validate_name(name)
        if self.store.exists(name):
            raise EnvironmentExistsError(name)

        result = await self.store.create(name)
        if not result.success:
            return Response(status=INTERNAL_ERROR, body={"error": result.error})
        return respond(success=True, name=name)

    @handles_errors
    async def delete_environment(self, name: Any) -> Response:
        name = validate_name(name)
        if name == DEFAULT_ENVIRONMENT:
            raise ProtectedEnvironmentError(name)
        if not self.store.get(name).root.exists():
            raise EnvironmentNotFoundError(name)

        result = await self.store.delete(name)
        if not result.success:
            return Response(status=INTERNAL_ERROR, body={"error": result.error})
        return respond(success=True, name=name)

    @handles_errors
    async def execute_code(
        self, code: Any, timeout: Any = None, venv: Optional[str] = None
    ) -> Response:
        if not code or not isinstance(code, str):
            raise ValidationError("No code provided")
        if "\x00" in code:
            raise ValidationError("Code must not contain NUL bytes")
        name = self._target(venv)

        result = await self.engine.execute(code, self._clamp_timeout(timeout), name)
        if result.failed:
            return respond(stdout=result.stdout, stderr=result.stderr)
        return respond(stdout=result.stdout)

    async def _package_change(self, action: str, packages: Any, venv: Optional[str]) -> Response:
        if not packages or not isinstance(packages, str) or not packages.split():
            raise ValidationError("No packages specified")
        name = self._target(venv)

        operation = self.packages.install if action == "install" else self.packages.uninstall
        result = await operation(packages, self.packages.install_timeout, name)
        if result.error:
            return respond(stdout=result.stdout, error=result.error)
        return respond(stdout=result.stdout)

    @handles_errors
    async def install_packages(self, packages: Any, venv: Optional[str] = None) -> Response:
        return await self._package_change("install", packages, venv)

    @handles_errors
    async def uninstall_packages(self, packages: Any, venv: Optional[str] = None) -> Response:
        return await self._package_change("uninstall", packages, venv)

    @handles_errors
    async def list_packages(self, venv: Optional[str] = None) -> Response:
        name = self._target(venv)
        try:
            packages = await self.packages.list(name)
        except (ToolUnavailableError, PackageListError) as e:
            return respond(packages=[], error=str(e))
        return respond(packages=[asdict(p) for p in packages])

    @handles_errors
    async def get_log_configuration(self) -> Response:
        return respond(**self.log_config.current.to_dict())

    @handles_errors
    async def set_log_configuration(self, partial: Any) -> Response:
        if not isinstance(partial, dict):
            raise ValidationError("Log configuration must be an object")
        updated = await self.log_config.update(partial)
        await self.audit.record(
            LogLevel.INFO, LogCategory.SYSTEM, "Log configuration updated",
            {"fields": sorted(partial)},
        )
        return respond(**updated.to_dict())

    @handles_errors
    async def list_log_files(self) -> Response:
        files = await self.audit.list_files()
        return respond(
            files=[
                {"name": f.name, "size": f.size, "modified": f.modified.isoformat()}
                for f in files
            ],
            directory=str(self.audit.directory),
        )

    @handles_errors
    async def read_logs(
        self, file: Optional[str] = None, lines: Any = None, offset: Any = None
    ) -> Response:
        page = await self.audit.read(
            file or None,
            lines=parse_int(lines, 100),
            offset=parse_int(offset, 0),
        )
        return respond(**page)

    @handles_errors
    async def delete_log_file(self, name: Any) -> Response:
        await self.audit.delete_file(name)
        await self.audit.record(
            LogLevel.INFO, LogCategory.SYSTEM, f"Log file deleted: {name}",
        )
        return respond(success=True)


async def create_handlers(settings: Settings) -> RequestHandlers:
    """Load configuration, wire components and provision the default environment."""
    configure_logging(settings.diagnostic_level)

    log_config = LogConfigManager(settings.log_config_path, settings.default_log_dir)
    log_config.load()
    audit = AuditLog(log_config)

    store = EnvironmentStore(
        settings.venv_dir,
        audit,
        runtime_command=settings.runtime_command,
        create_timeout=settings.create_timeout_s,
        max_output_bytes=settings.max_output_bytes,
    )
    engine = ExecutionEngine(store, audit, max_output_bytes=settings.max_output_bytes)
    packages = PackageManager(
        store,
        audit,
        install_timeout=settings.install_timeout_s,
        list_timeout=settings.list_timeout_s,
        probe_timeout=settings.probe_timeout_s,
        max_output_bytes=settings.max_output_bytes,
    )

    await audit.record(
        LogLevel.INFO, LogCategory.SYSTEM, "PyRunner starting",
        {"data_dir": str(settings.data_dir)},
    )
    await store.ensure_default()

    return RequestHandlers(settings, log_config, audit, store, engine, packages)
