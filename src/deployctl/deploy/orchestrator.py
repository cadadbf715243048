"""Parallel deployment orchestrator."""

import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait

from deployctl.config import Configuration, DeployCtlConfig
from deployctl.core.logging import get_logger
from deployctl.core.output import OutputFormatter
from deployctl.core.progress import progress_table, summary_table
from deployctl.deploy.builder import Builder
from deployctl.deploy.deployer import Deployer
from deployctl.deploy.health import HealthMonitor
from deployctl.deploy.models import DeploymentRequest, RunSummary, TaskRecord, TaskStatus
from deployctl.deploy.resolver import SourceResolver, SubprocessGitCloner
from deployctl.deploy.runner import TaskRunner
from deployctl.deploy.runtime import ContainerRuntime
from deployctl.deploy.state import StatusStore
from deployctl.registry import ServiceDescriptor, ServiceRegistry

logger = get_logger(__name__)


class Orchestrator:
    """Fans out one task runner per service and joins on all of them.

    Progress is read from the status store and printed every
    ``poll_interval`` seconds until every record is terminal.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        runner: TaskRunner,
        store: StatusStore,
        output: OutputFormatter,
        max_parallel: int = 6,
        poll_interval: float = 2.0,
        excerpt_lines: int = 20,
        show_progress: bool = True,
    ):
        self._registry = registry
        self._runner = runner
        self._store = store
        self._output = output
        self._max_parallel = max(1, max_parallel)
        self._poll_interval = poll_interval
        self._excerpt_lines = excerpt_lines
        self._show_progress = show_progress

    @property
    def store(self) -> StatusStore:
        return self._store

    def _partition(self, request: DeploymentRequest) -> tuple[list[ServiceDescriptor], list[str]]:
        known: list[ServiceDescriptor] = []
        unknown: list[str] = []
        for name in sorted(request.services):
            service = self._registry.get(name)
            if service is None:
                unknown.append(name)
            elif service not in known:
                known.append(service)
        return known, unknown

    def _record_unknown(self, names: list[str]) -> None:
        if not names:
            return
        message = "not in the service registry"
        self._output.print_error(
            f"Unknown service(s): {', '.join(names)} (available: {', '.join(self._registry.names())})"
        )
        logger.error("Unknown services requested", services=",".join(names))
        for name in names:
            record = TaskRecord(service=name).advance(
                TaskStatus.FAILED,
                error_kind="unknown_service",
                message=message,
                log_tail=(f"{name}: {message}",),
            )
            self._store.put(record)

    def _render_progress(self) -> None:
        if self._show_progress:
            self._output.print_table(progress_table(self._store.records()))

    def _join(self, futures: dict[Future, ServiceDescriptor]) -> None:
        """Wait for every worker, printing progress each poll interval."""
        pending = set(futures)
        while pending:
            done, pending = wait(pending, timeout=self._poll_interval, return_when=FIRST_EXCEPTION)
            for future in done:
                service = futures[future]
                error = future.exception()
                if error is not None:
                    # runners do not raise; keep the run going if one ever does
                    logger.error("Task runner crashed", service=service.name, error=str(error))
                    self._force_failed(service.name, f"{type(error).__name__}: {error}")
            if pending:
                self._render_progress()

        if not self._store.all_terminal():
            for record in self._store.records():
                if not record.is_terminal:
                    logger.error("Worker left no final status", service=record.service, status=record.status.value)
                    self._force_failed(record.service, f"Worker stopped while {record.status.label.lower()}")

    def _force_failed(self, service: str, message: str) -> None:
        current = self._store.get(service) or TaskRecord(service=service)
        if current.is_terminal:
            return
        self._store.put(current.advance(TaskStatus.FAILED, error_kind="internal", message=message))

    def run_all(self, request: DeploymentRequest) -> RunSummary:
        """Deploy every requested service concurrently and report the outcome."""
        start = time.monotonic()
        self._store.clear()

        known, unknown = self._partition(request)
        self._record_unknown(unknown)

        if known:
            workers = min(len(known), self._max_parallel)
            self._output.print(
                f"[bold]Deploying {len(known)} service(s) from '{request.branch}' "
                f"with {workers} parallel worker(s)[/bold]"
            )
            if request.force_rebuild:
                self._output.print_warning("Force rebuild requested - images are rebuilt without cache")

            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="deploy") as pool:
                futures = {
                    pool.submit(self._runner.run, service, request): service
                    for service in known
                }
                self._join(futures)

        summary = RunSummary(
            records=self._store.records(),
            branch=request.branch,
            duration=time.monotonic() - start,
        )
        self.report(summary)
        return summary

    def report(self, summary: RunSummary) -> None:
        """Print the final table, tally, fallback notices and failure logs."""
        self._output.print_table(summary_table(summary.records))

        style = "green" if summary.all_succeeded else "red"
        self._output.print(f"[{style}]{summary.tally}[/{style}] [dim]in {summary.duration:.1f}s[/dim]")

        for record in summary.fallbacks:
            self._output.print_warning(
                f"{record.service} was deployed from {record.origin.value}"
                f" ({record.actual_branch or 'unknown branch'}) instead of '{summary.branch}'"
            )

        failed = [r for r in summary.records if r.status != TaskStatus.SUCCESS]
        if failed:
            self._output.print("\n[bold]Logs for failed/unhealthy services:[/bold]")
        for record in failed:
            self._output.print(f"\n--- {record.service} ({record.status.value}) ---")
            lines = list(record.log_tail[-self._excerpt_lines:])
            self._output.print_lines(lines or ["No logs available"])


def build_orchestrator(
    config: DeployCtlConfig,
    configuration: Configuration,
    registry: ServiceRegistry,
    output: OutputFormatter,
    runtime: ContainerRuntime | None = None,
    strict: bool | None = None,
    max_parallel: int | None = None,
    poll_interval: float | None = None,
    health_timeout: float | None = None,
    health_interval: float | None = None,
) -> Orchestrator:
    """Wire the pipeline components from configuration; explicit arguments win."""
    runtime = runtime or ContainerRuntime(config.docker)
    orchestration = config.orchestrator
    store = StatusStore(config.paths.get_state_dir())

    resolver = SourceResolver(
        config.paths.get_services_dir(),
        cloner=SubprocessGitCloner(timeout=orchestration.clone_timeout),
    )
    runner = TaskRunner(
        store=store,
        resolver=resolver,
        builder=Builder(runtime),
        deployer=Deployer(runtime, config.paths.get_deploy_path()),
        monitor=HealthMonitor(runtime, config.health),
        configuration=configuration,
        strict=orchestration.strict if strict is None else strict,
        log_tail_lines=orchestration.log_tail_lines,
        health_timeout=health_timeout,
        health_interval=health_interval,
    )
    return Orchestrator(
        registry=registry,
        runner=runner,
        store=store,
        output=output,
        max_parallel=max_parallel or orchestration.max_parallel,
        poll_interval=poll_interval or orchestration.poll_interval,
        excerpt_lines=orchestration.excerpt_lines,
        show_progress=not output.quiet,
    )
