"""Container runtime access through the Docker SDK."""

from pathlib import Path
from typing import Callable

import docker
from docker.errors import BuildError as DockerBuildError, DockerException, NotFound

from deployctl.config import DockerConfig
from deployctl.core.exceptions import RuntimeUnavailableError
from deployctl.core.logging import get_logger
from deployctl.deploy.models import ContainerHandle

logger = get_logger(__name__)

LineSink = Callable[[str], None]


def _discard(line: str) -> None:
    pass


class ContainerRuntime:
    """Thin wrapper over the docker client.

    Methods raise ``docker.errors`` exceptions; the builder and deployer
    translate them into stage errors.
    """

    def __init__(self, config: DockerConfig | None = None, client: docker.DockerClient | None = None):
        self._config = config or DockerConfig()
        self._client = client

    @property
    def config(self) -> DockerConfig:
        return self._config

    @property
    def client(self) -> docker.DockerClient:
        """Get or create the docker client."""
        if self._client is None:
            try:
                self._client = docker.from_env(timeout=self._config.timeout)
            except DockerException as e:
                raise RuntimeUnavailableError(f"Docker is not available: {e}")
            logger.debug("Created docker client", timeout=self._config.timeout)
        return self._client

    def available(self) -> bool:
        """Check that the docker daemon answers."""
        try:
            return bool(self.client.ping())
        except (DockerException, RuntimeUnavailableError):
            return False

    def network_exists(self, name: str) -> bool:
        try:
            self.client.networks.get(name)
            return True
        except NotFound:
            return False

    def status(self, name: str) -> str | None:
        """Container state (``running``, ``exited``...), or None if absent."""
        try:
            container = self.client.containers.get(name)
            container.reload()
            return container.status
        except NotFound:
            return None

    def is_running(self, name: str) -> bool:
        return self.status(name) == "running"

    def build(
        self,
        path: Path,
        tag: str,
        nocache: bool = False,
        on_line: LineSink = _discard,
    ) -> str:
        """Build an image, streaming output lines to ``on_line``.

        Returns:
            The image id

        Raises:
            docker.errors.BuildError: if the daemon reports a build error
        """
        build_log: list[dict] = []
        stream = self.client.api.build(
            path=str(path),
            tag=tag,
            nocache=nocache,
            rm=True,
            forcerm=True,
            pull=nocache,
            decode=True,
        )
        for chunk in stream:
            build_log.append(chunk)
            if "stream" in chunk:
                text = chunk["stream"].rstrip()
                if text:
                    on_line(text)
            elif "status" in chunk:
                on_line(chunk["status"])
            if "error" in chunk:
                on_line(chunk["error"].rstrip())
                raise DockerBuildError(chunk["error"], iter(build_log))

        image = self.client.images.get(tag)
        return image.id

    def remove(self, name: str, stop_timeout: int | None = None) -> bool:
        """Stop and remove a container by name.

        Returns:
            True if a container existed
        """
        try:
            container = self.client.containers.get(name)
        except NotFound:
            return False
        if container.status == "running":
            container.stop(timeout=stop_timeout if stop_timeout is not None else self._config.stop_timeout)
        try:
            container.remove(force=True)
        except NotFound:
            # removed concurrently, e.g. by --rm
            pass
        return True

    def run(
        self,
        image: str,
        name: str,
        port: int,
        environment: dict[str, str],
        volumes: dict[str, dict[str, str]] | None = None,
        labels: dict[str, str] | None = None,
    ) -> ContainerHandle:
        """Start a detached container on the configured network."""
        container = self.client.containers.run(
            image,
            detach=True,
            name=name,
            network=self._config.network,
            ports={f"{port}/tcp": port},
            environment=environment,
            volumes=volumes or {},
            labels=labels or {},
            restart_policy={"Name": self._config.restart_policy},
        )
        return ContainerHandle(id=container.id, name=name)

    def logs(self, name: str, tail: int = 10) -> list[str]:
        """Most recent log lines of a container."""
        try:
            container = self.client.containers.get(name)
        except NotFound:
            return []
        raw = container.logs(tail=tail, stdout=True, stderr=True)
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)
        return text.splitlines()

    def exec_probe(self, name: str, port: int, path: str, timeout: float = 3.0) -> bool:
        """Run a health request from inside the container."""
        try:
            container = self.client.containers.get(name)
        except NotFound:
            return False
        if container.status != "running":
            return False
        url = f"http://localhost:{port}{path}"
        result = container.exec_run(["curl", "-fs", "--max-time", str(int(max(timeout, 1))), url])
        return result.exit_code == 0
