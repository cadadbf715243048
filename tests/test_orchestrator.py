"""Tests for the parallel deployment orchestrator."""

import threading
from io import StringIO

import pytest
from docker.errors import BuildError as DockerBuildError
from rich.console import Console

from deployctl.config import DeployCtlConfig, HealthConfig
from deployctl.core.output import OutputFormatter
from deployctl.deploy.builder import Builder
from deployctl.deploy.deployer import Deployer
from deployctl.deploy.health import HealthMonitor
from deployctl.deploy.models import DeploymentRequest, SourceOrigin, TaskRecord, TaskStatus
from deployctl.deploy.orchestrator import Orchestrator, build_orchestrator
from deployctl.deploy.resolver import SourceResolver
from deployctl.deploy.runner import TaskRunner
from deployctl.deploy.state import StatusStore


@pytest.fixture
def buffer() -> StringIO:
    return StringIO()


@pytest.fixture
def make_orchestrator(tmp_path, registry, mock_runtime, configuration, make_cloner, make_health_client, buffer):
    """Wire a real pipeline around fake git, docker and HTTP."""

    def factory(cloner=None, unhealthy_ports=None, strict=False, max_parallel=6):
        store = StatusStore(tmp_path / "state")
        runner = TaskRunner(
            store=store,
            resolver=SourceResolver(tmp_path / "services", cloner=cloner or make_cloner()),
            builder=Builder(mock_runtime),
            deployer=Deployer(mock_runtime),
            monitor=HealthMonitor(
                mock_runtime,
                HealthConfig(timeout=2, interval=1),
                sleep=lambda s: None,
                client=make_health_client(unhealthy_ports),
            ),
            configuration=configuration,
            strict=strict,
        )
        output = OutputFormatter(color=False, console=Console(file=buffer, width=200))
        return Orchestrator(
            registry=registry,
            runner=runner,
            store=store,
            output=output,
            max_parallel=max_parallel,
            poll_interval=0.01,
        )

    return factory


class TestOrchestrator:
    """Tests for Orchestrator.run_all."""

    def test_all_services_succeed(self, make_orchestrator, registry, buffer):
        orchestrator = make_orchestrator()
        summary = orchestrator.run_all(DeploymentRequest.create(registry.names()))

        assert summary.exit_code == 0
        assert len(summary.records) == 6
        assert all(r.status == TaskStatus.SUCCESS for r in summary.records)
        assert all(r.origin == SourceOrigin.SSH for r in summary.records)
        assert summary.tally == "6 Success / 0 Failed / 0 Unhealthy"

        output = buffer.getvalue()
        assert "Final Deployment Summary" in output
        assert "6 Success / 0 Failed / 0 Unhealthy" in output
        assert "Logs for failed/unhealthy services" not in output

    def test_missing_branch_falls_back_to_main(self, make_orchestrator, make_cloner, buffer):
        cloner = make_cloner(reject=lambda url, ref: "user-service" in url and ref == "feature-x")
        orchestrator = make_orchestrator(cloner=cloner)
        summary = orchestrator.run_all(
            DeploymentRequest.create(["auth-service", "user-service"], branch="feature-x")
        )

        records = {r.service: r for r in summary.records}
        assert records["auth-service"].origin == SourceOrigin.SSH
        assert records["auth-service"].actual_branch == "feature-x"
        assert records["user-service"].origin == SourceOrigin.MAIN_FALLBACK
        assert records["user-service"].actual_branch == "main"
        assert summary.exit_code == 0
        assert "user-service was deployed from main_fallback (main)" in buffer.getvalue()

    def test_unreachable_repo_ends_unhealthy(self, make_orchestrator, make_cloner, buffer):
        # chat-service's placeholder answers its health check with 503
        cloner = make_cloner(reject=lambda url, ref: "chat-service" in url)
        orchestrator = make_orchestrator(cloner=cloner, unhealthy_ports={3002})
        summary = orchestrator.run_all(DeploymentRequest.create(["auth-service", "chat-service"]))

        records = {r.service: r for r in summary.records}
        assert records["chat-service"].origin == SourceOrigin.SYNTHESIZED_STUB
        assert records["chat-service"].status == TaskStatus.UNHEALTHY
        assert records["auth-service"].status == TaskStatus.SUCCESS
        assert summary.exit_code == 1
        assert summary.tally == "1 Success / 0 Failed / 1 Unhealthy"

        output = buffer.getvalue()
        assert "--- chat-service (unhealthy) ---" in output
        assert "Container letzgo-chat-service: running" in output

    def test_build_failure_is_isolated(self, make_orchestrator, mock_runtime, buffer):
        def build(path, tag, nocache=False, on_line=lambda line: None):
            if tag.startswith("letzgo-chat-service"):
                on_line("npm ERR! code ELIFECYCLE")
                raise DockerBuildError("returned a non-zero code: 1", iter([]))
            on_line("Successfully built feedface")
            return "sha256:feedface"

        mock_runtime.build.side_effect = build
        orchestrator = make_orchestrator()
        summary = orchestrator.run_all(DeploymentRequest.create(["auth-service", "chat-service"]))

        records = {r.service: r for r in summary.records}
        assert records["chat-service"].status == TaskStatus.FAILED
        assert records["chat-service"].error_kind == "build"
        assert records["auth-service"].status == TaskStatus.SUCCESS
        assert summary.tally == "1 Success / 1 Failed / 0 Unhealthy"
        assert summary.exit_code == 1

        output = buffer.getvalue()
        assert "--- chat-service (failed) ---" in output
        assert "npm ERR! code ELIFECYCLE" in output
        assert "--- auth-service" not in output

    def test_strict_mode_fails_fallbacks(self, make_orchestrator, make_cloner):
        cloner = make_cloner(reject=lambda url, ref: "user-service" in url and ref == "feature-x")
        orchestrator = make_orchestrator(cloner=cloner, strict=True)
        summary = orchestrator.run_all(
            DeploymentRequest.create(["auth-service", "user-service"], branch="feature-x")
        )

        records = {r.service: r for r in summary.records}
        assert records["user-service"].status == TaskStatus.FAILED
        assert records["user-service"].error_kind == "resolve"
        assert records["auth-service"].status == TaskStatus.SUCCESS
        assert summary.exit_code == 1

    def test_unknown_service_gets_no_worker(self, make_orchestrator, make_cloner, mock_runtime):
        cloner = make_cloner()
        orchestrator = make_orchestrator(cloner=cloner)
        summary = orchestrator.run_all(DeploymentRequest.create(["auth-service", "billing-service"]))

        records = {r.service: r for r in summary.records}
        assert records["billing-service"].status == TaskStatus.FAILED
        assert records["billing-service"].error_kind == "unknown_service"
        assert records["auth-service"].status == TaskStatus.SUCCESS
        assert all("billing-service" not in url for url, _ in cloner.calls)
        assert summary.exit_code == 1

    def test_services_run_concurrently(self, make_orchestrator, mock_runtime):
        # each build waits for the other; a sequential run would break the barrier
        barrier = threading.Barrier(2, timeout=5)

        def build(path, tag, nocache=False, on_line=lambda line: None):
            barrier.wait()
            return "sha256:feedface"

        mock_runtime.build.side_effect = build
        orchestrator = make_orchestrator()
        summary = orchestrator.run_all(DeploymentRequest.create(["auth-service", "user-service"]))
        assert summary.exit_code == 0

    def test_worker_cap(self, make_orchestrator, mock_runtime, registry):
        active = 0
        peak = 0
        lock = threading.Lock()

        def build(path, tag, nocache=False, on_line=lambda line: None):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            threading.Event().wait(0.05)
            with lock:
                active -= 1
            return "sha256:feedface"

        mock_runtime.build.side_effect = build
        orchestrator = make_orchestrator(max_parallel=2)
        summary = orchestrator.run_all(DeploymentRequest.create(registry.names()))
        assert summary.exit_code == 0
        assert peak <= 2

    def test_previous_run_records_cleared(self, make_orchestrator):
        orchestrator = make_orchestrator()
        orchestrator.run_all(DeploymentRequest.create(["auth-service", "user-service"]))
        summary = orchestrator.run_all(DeploymentRequest.create(["chat-service"]))

        assert [r.service for r in summary.records] == ["chat-service"]
        assert [r.service for r in orchestrator.store.load_persisted()] == ["chat-service"]

    def test_short_names_resolve(self, make_orchestrator):
        summary = make_orchestrator().run_all(DeploymentRequest.create(["auth"]))
        assert [r.service for r in summary.records] == ["auth-service"]
        assert summary.exit_code == 0

    def test_worker_without_final_status_is_failed(self, tmp_path, registry, buffer):
        store = StatusStore(tmp_path / "state")

        class StalledRunner:
            def run(self, service, request):
                record = TaskRecord(service=service.name).advance(TaskStatus.BUILDING)
                store.put(record)
                return record

        orchestrator = Orchestrator(
            registry=registry,
            runner=StalledRunner(),
            store=store,
            output=OutputFormatter(color=False, console=Console(file=buffer, width=200)),
            poll_interval=0.01,
        )
        summary = orchestrator.run_all(DeploymentRequest.create(["auth-service"]))

        record = summary.records[0]
        assert record.status == TaskStatus.FAILED
        assert record.error_kind == "internal"
        assert record.message == "Worker stopped while building"
        assert summary.exit_code == 1


class TestBuildOrchestrator:
    """Tests for wiring the orchestrator from configuration."""

    def test_defaults_from_config(self, tmp_path, configuration, registry, mock_runtime):
        config = DeployCtlConfig(paths={"deploy_path": str(tmp_path), "state_dir": str(tmp_path / "state")})
        output = OutputFormatter(color=False, console=Console(file=StringIO()))
        orchestrator = build_orchestrator(config, configuration, registry, output, runtime=mock_runtime)

        assert orchestrator._max_parallel == 6
        assert orchestrator._poll_interval == 2.0
        assert orchestrator.store.state_dir == tmp_path / "state"
        assert orchestrator._runner._strict is False

    def test_overrides(self, tmp_path, configuration, registry, mock_runtime):
        config = DeployCtlConfig(
            paths={"state_dir": str(tmp_path)},
            orchestrator={"strict": True},
        )
        output = OutputFormatter(color=False, console=Console(file=StringIO()))
        orchestrator = build_orchestrator(
            config,
            configuration,
            registry,
            output,
            runtime=mock_runtime,
            max_parallel=2,
            poll_interval=0.5,
            health_timeout=30,
        )

        assert orchestrator._max_parallel == 2
        assert orchestrator._poll_interval == 0.5
        assert orchestrator._runner._strict is True
        assert orchestrator._runner._health_timeout == 30
