"""Host prerequisite checks run before any worker starts."""

from docker.errors import DockerException

from deployctl.core.exceptions import PreflightError, RuntimeUnavailableError
from deployctl.core.logging import get_logger
from deployctl.deploy.runtime import ContainerRuntime

logger = get_logger(__name__)


def check_prerequisites(runtime: ContainerRuntime) -> list[str]:
    """Collect every unmet prerequisite.

    Checks that the docker daemon answers, the shared network exists and the
    infrastructure containers (databases, cache) are running.
    """
    config = runtime.config
    if not runtime.available():
        return ["docker daemon is not reachable"]

    problems: list[str] = []
    try:
        if not runtime.network_exists(config.network):
            problems.append(f"network '{config.network}' not found (deploy the infrastructure first)")
        for name in config.required_containers:
            if not runtime.is_running(name):
                problems.append(f"required container '{name}' is not running")
    except (DockerException, RuntimeUnavailableError) as e:
        problems.append(f"docker query failed: {e}")
    return problems


def ensure_prerequisites(runtime: ContainerRuntime) -> None:
    """Raise PreflightError listing every unmet prerequisite."""
    problems = check_prerequisites(runtime)
    if problems:
        raise PreflightError(problems)
    logger.info("All prerequisites met")
