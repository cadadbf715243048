"""Task runner: one isolated resolve -> build -> deploy -> health pipeline."""

from typing import Any

from deployctl.config import Configuration
from deployctl.core.exceptions import DeployCtlError
from deployctl.core.logging import get_logger
from deployctl.core.utils import LogTail, clock_prefix
from deployctl.deploy.builder import Builder
from deployctl.deploy.deployer import Deployer, container_env
from deployctl.deploy.health import HealthMonitor
from deployctl.deploy.models import DeploymentRequest, TaskRecord, TaskStatus
from deployctl.deploy.resolver import SourceResolver
from deployctl.deploy.state import StatusStore
from deployctl.registry import ServiceDescriptor

logger = get_logger(__name__)


class TaskRunner:
    """Drives one service through its pipeline and records the outcome.

    ``run`` never raises: every error ends up as a terminal record in the
    status store.
    """

    def __init__(
        self,
        store: StatusStore,
        resolver: SourceResolver,
        builder: Builder,
        deployer: Deployer,
        monitor: HealthMonitor,
        configuration: Configuration,
        strict: bool = False,
        log_tail_lines: int = 200,
        health_timeout: float | None = None,
        health_interval: float | None = None,
    ):
        self._store = store
        self._resolver = resolver
        self._builder = builder
        self._deployer = deployer
        self._monitor = monitor
        self._configuration = configuration
        self._strict = strict
        self._log_tail_lines = log_tail_lines
        self._health_timeout = health_timeout
        self._health_interval = health_interval

    def run(self, service: ServiceDescriptor, request: DeploymentRequest) -> TaskRecord:
        """Deploy one service. Always returns a terminal record."""
        tail = LogTail(self._log_tail_lines)
        slog = logger.bind(service=service.name)
        record = TaskRecord(service=service.name)

        def log(line: str) -> None:
            tail.append(f"{clock_prefix()} {line}")

        def publish(status: TaskStatus, **changes: Any) -> None:
            nonlocal record
            record = record.advance(status, log_tail=tail.snapshot(), **changes)
            self._store.put(record)

        def fail(kind: str, message: str) -> None:
            nonlocal record
            if record.is_terminal:
                return
            record = record.advance(TaskStatus.FAILED, log_tail=tail.snapshot(), error_kind=kind, message=message)
            try:
                self._store.put(record)
            except Exception:
                slog.exception("Failed to store final task record")

        try:
            self._store.put(record)
            log(f"Starting deployment of {service.name} on port {service.port} (branch {request.branch})")

            publish(TaskStatus.RESOLVING)
            source = self._resolver.resolve(service, request.branch, log=log)
            origin = {"origin": source.origin, "actual_branch": source.actual_branch}
            if source.is_fallback and self._strict:
                log(f"Strict mode: refusing {source.origin.value} source")
                publish(
                    TaskStatus.FAILED,
                    error_kind="resolve",
                    message=f"strict mode rejects {source.origin.value} source",
                    **origin,
                )
                return record

            publish(TaskStatus.BUILDING, **origin)
            image = self._builder.build(service, source, request.force_rebuild, log=log)

            publish(TaskStatus.DEPLOYING)
            env = container_env(service, self._configuration)
            self._deployer.deploy(service, image, env, log=log)

            publish(TaskStatus.HEALTH_CHECKING)

            def on_attempt(attempt: int, max_attempts: int) -> None:
                publish(TaskStatus.HEALTH_CHECKING, attempts=attempt)

            result = self._monitor.await_healthy(
                service,
                timeout=self._health_timeout,
                interval=self._health_interval,
                log=log,
                on_attempt=on_attempt,
            )
            if result.healthy:
                if source.is_fallback:
                    log(f"Note: deployed from {source.origin.value} ({source.actual_branch})")
                log(f"{service.name} deployment completed successfully")
                publish(TaskStatus.SUCCESS, attempts=result.attempts, message="healthy")
            else:
                for line in result.diagnostics:
                    log(line)
                publish(TaskStatus.UNHEALTHY, attempts=result.attempts, message=result.message)

        except DeployCtlError as e:
            log(f"{e.kind} failed: {e.message}")
            slog.error("Deployment failed", kind=e.kind, error=e.message)
            fail(e.kind, e.message)
        except Exception as e:
            log(f"Unexpected error: {type(e).__name__}: {e}")
            slog.exception("Unexpected error in task runner")
            fail("internal", f"{type(e).__name__}: {e}")

        return record
