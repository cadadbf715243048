"""Container deployer: replace the running instance of a service."""

from pathlib import Path
from typing import Callable

from docker.errors import DockerException
from requests.exceptions import RequestException

from deployctl.config import Configuration
from deployctl.core.exceptions import DeployError, RuntimeUnavailableError
from deployctl.core.logging import get_logger
from deployctl.deploy.models import ContainerHandle, ImageRef
from deployctl.deploy.runtime import ContainerRuntime
from deployctl.registry import ServiceDescriptor

logger = get_logger(__name__)

LineSink = Callable[[str], None]

BIND_ALL = "0.0.0.0"


def _discard(line: str) -> None:
    pass


def container_env(service: ServiceDescriptor, configuration: Configuration) -> dict[str, str]:
    """Environment passed to every service container.

    Every shared dependency is configured for every service, whether the
    service uses it or not.
    """
    c = configuration
    return {
        "NODE_ENV": c.node_env,
        "PORT": str(service.port),
        "HOST": BIND_ALL,
        "POSTGRES_HOST": c.postgres_host,
        "POSTGRES_PORT": str(c.postgres_port),
        "POSTGRES_USERNAME": c.postgres_username,
        "POSTGRES_PASSWORD": c.postgres_password,
        "POSTGRES_DATABASE": c.postgres_database,
        "POSTGRES_URL": c.postgres_url,
        "MONGODB_HOST": c.mongodb_host,
        "MONGODB_PORT": str(c.mongodb_port),
        "MONGODB_USERNAME": c.mongodb_username,
        "MONGODB_PASSWORD": c.mongodb_password,
        "MONGODB_DATABASE": c.mongodb_database,
        "MONGODB_URL": c.mongodb_url,
        "MONGODB_URI": c.resolved_mongodb_uri,
        "REDIS_HOST": c.redis_host,
        "REDIS_PORT": str(c.redis_port),
        "REDIS_PASSWORD": c.redis_password,
        "REDIS_URL": c.redis_url,
        "RABBITMQ_HOST": c.rabbitmq_host,
        "RABBITMQ_PORT": str(c.rabbitmq_port),
        "RABBITMQ_USERNAME": c.rabbitmq_username,
        "RABBITMQ_PASSWORD": c.rabbitmq_password,
        "RABBITMQ_URL": c.rabbitmq_url,
        "JWT_SECRET": c.jwt_secret,
        "SERVICE_API_KEY": c.service_api_key,
        "DOMAIN_NAME": c.domain_name,
        "API_DOMAIN": c.api_domain,
    }


class Deployer:
    """Stops and removes any previous container, then starts the new one.

    This is a replace, not a rolling upgrade: the service is absent for a
    short window between the two.
    """

    def __init__(self, runtime: ContainerRuntime, deploy_path: str | Path | None = None):
        self._runtime = runtime
        self._deploy_path = Path(deploy_path) if deploy_path else None

    def _volumes(self) -> dict[str, dict[str, str]]:
        if self._deploy_path is None or not self._runtime.config.mount_volumes:
            return {}
        return {
            str(self._deploy_path / "logs"): {"bind": "/app/logs", "mode": "rw"},
            str(self._deploy_path / "uploads"): {"bind": "/app/uploads", "mode": "rw"},
        }

    def deploy(
        self,
        service: ServiceDescriptor,
        image: ImageRef,
        env: dict[str, str],
        log: LineSink = _discard,
    ) -> ContainerHandle:
        """Replace the service's container.

        Raises:
            DeployError: the runtime refused to stop, remove or start it
        """
        name = service.container_name
        try:
            if self._runtime.remove(name):
                log(f"Stopped and removed previous container {name}")
                logger.info("Removed previous container", service=service.name, container=name)

            log(f"Starting container {name} on port {service.port}")
            handle = self._runtime.run(
                image.tag,
                name=name,
                port=service.port,
                environment=env,
                volumes=self._volumes(),
                labels={"deployctl.service": service.name},
            )
        except RuntimeUnavailableError as e:
            raise DeployError(str(e), service=service.name)
        except DockerException as e:
            raise DeployError(f"Container runtime refused {name}: {e}", service=service.name)
        except RequestException as e:
            raise DeployError(f"Lost connection to docker while starting {name}: {e}", service=service.name)

        log(f"Container {name} started ({handle.id[:12]})")
        return handle
