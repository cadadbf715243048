"""Health monitor: poll a service until it answers or the deadline passes."""

import math
import time
from dataclasses import dataclass, field
from typing import Callable

import httpx
from docker.errors import DockerException

from deployctl.config import HealthConfig
from deployctl.core.exceptions import RuntimeUnavailableError
from deployctl.core.logging import get_logger
from deployctl.deploy.runtime import ContainerRuntime
from deployctl.registry import ServiceDescriptor

logger = get_logger(__name__)

LineSink = Callable[[str], None]
AttemptHook = Callable[[int, int], None]


def _discard(line: str) -> None:
    pass


@dataclass
class ProbeResult:
    """Result of a single health probe."""

    healthy: bool
    message: str


@dataclass
class HealthResult:
    """Outcome of awaiting a healthy service."""

    healthy: bool
    attempts: int
    message: str
    diagnostics: list[str] = field(default_factory=list)


def attempts_for(timeout: float, interval: float) -> int:
    """Number of probes that fit in ``timeout`` at ``interval`` spacing (100s/5s -> 20)."""
    if interval <= 0:
        raise ValueError("interval must be positive")
    return max(1, math.ceil(timeout / interval))


def check_http(url: str, timeout: float = 3.0, client: httpx.Client | None = None) -> ProbeResult:
    """Single bounded HTTP health probe."""
    try:
        if client is None:
            response = httpx.get(url, timeout=timeout, follow_redirects=False)
        else:
            response = client.get(url, timeout=timeout)
    except httpx.TimeoutException:
        return ProbeResult(False, "timed out")
    except httpx.RequestError as e:
        # nothing listening yet is expected right after a replace
        return ProbeResult(False, f"no response ({type(e).__name__})")

    healthy = 200 <= response.status_code < 400
    return ProbeResult(healthy, f"HTTP {response.status_code}")


class HealthMonitor:
    """Polls a service's health endpoint.

    ``Checking`` loops on itself once per interval until the endpoint
    answers (healthy) or the attempts run out (unhealthy). On unhealthy the
    container state and recent logs are captured for diagnosis.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        config: HealthConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        client: httpx.Client | None = None,
    ):
        self._runtime = runtime
        self._config = config or HealthConfig()
        self._sleep = sleep
        self._client = client

    @property
    def config(self) -> HealthConfig:
        return self._config

    def url_for(self, service: ServiceDescriptor) -> str:
        return f"http://{self._config.host}:{service.port}{service.health_path}"

    def probe(self, service: ServiceDescriptor) -> ProbeResult:
        """Issue one probe using the configured method."""
        if self._config.probe == "exec":
            try:
                ok = self._runtime.exec_probe(
                    service.container_name, service.port, service.health_path, self._config.probe_timeout
                )
            except (DockerException, RuntimeUnavailableError) as e:
                return ProbeResult(False, f"exec probe failed: {e}")
            return ProbeResult(ok, "exec probe ok" if ok else "exec probe failed")
        return check_http(self.url_for(service), self._config.probe_timeout, self._client)

    def await_healthy(
        self,
        service: ServiceDescriptor,
        timeout: float | None = None,
        interval: float | None = None,
        log: LineSink = _discard,
        on_attempt: AttemptHook | None = None,
    ) -> HealthResult:
        """Poll until healthy or out of attempts.

        Args:
            service: Service to check
            timeout: Overall budget in seconds (config default if None)
            interval: Seconds between probes (config default if None)
            log: Sink for progress lines
            on_attempt: Called with (attempt, max_attempts) before each probe

        Returns:
            HealthResult; never raises for an unhealthy service
        """
        timeout = self._config.timeout if timeout is None else timeout
        interval = self._config.interval if interval is None else interval
        max_attempts = attempts_for(timeout, interval)

        log(f"Waiting for {service.name} to be healthy ({max_attempts} attempts, every {interval:g}s)")
        last = ProbeResult(False, "not checked")
        for attempt in range(1, max_attempts + 1):
            if on_attempt:
                on_attempt(attempt, max_attempts)
            last = self.probe(service)
            if last.healthy:
                log(f"{service.name} is healthy ({last.message}, attempt {attempt}/{max_attempts})")
                return HealthResult(True, attempt, last.message)
            if attempt < max_attempts:
                log(f"Attempt {attempt}/{max_attempts}: {last.message}; retrying in {interval:g}s")
                self._sleep(interval)

        message = f"not healthy after {max_attempts} attempts ({last.message})"
        log(f"{service.name} {message}")
        logger.warning("Service unhealthy", service=service.name, attempts=max_attempts)
        diagnostics = self.diagnostics(service)
        return HealthResult(False, max_attempts, message, diagnostics)

    def diagnostics(self, service: ServiceDescriptor) -> list[str]:
        """Best-effort container state and recent logs."""
        name = service.container_name
        lines: list[str] = []
        try:
            state = self._runtime.status(name)
            lines.append(f"Container {name}: {state or 'not found'}")
        except (DockerException, RuntimeUnavailableError) as e:
            lines.append(f"Container {name}: state unavailable ({e})")
            return lines

        if self._config.log_lines:
            try:
                logs = self._runtime.logs(name, tail=self._config.log_lines)
            except (DockerException, RuntimeUnavailableError) as e:
                lines.append(f"Container logs unavailable: {e}")
            else:
                lines.append(f"Recent logs ({len(logs)} lines):")
                if logs:
                    lines.extend(f"  {line}" for line in logs)
                else:
                    lines.append("  No logs available")
        return lines
