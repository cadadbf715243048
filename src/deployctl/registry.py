"""Service Registry: the fixed table of deployable services."""

from dataclasses import dataclass
from typing import Iterator

from deployctl.config import RegistryConfig
from deployctl.core.utils import split_services

# name -> port, in deployment order
DEFAULT_SERVICES: dict[str, int] = {
    "auth-service": 3000,
    "user-service": 3001,
    "chat-service": 3002,
    "event-service": 3003,
    "shared-service": 3004,
    "splitz-service": 3005,
}


@dataclass(frozen=True)
class ServiceDescriptor:
    """A deployable service."""

    name: str
    port: int
    repo: str
    default_branch: str = "main"
    health_path: str = "/health"
    container_prefix: str = "letzgo"

    def __post_init__(self) -> None:
        if not 1 <= self.port <= 65535:
            raise ValueError(f"Invalid port for {self.name}: {self.port}")
        if not self.health_path.startswith("/"):
            raise ValueError(f"health_path must start with '/': {self.health_path}")

    @property
    def container_name(self) -> str:
        return f"{self.container_prefix}-{self.name}"

    @property
    def image_tag(self) -> str:
        return f"{self.container_prefix}-{self.name}:latest"

    @property
    def ssh_url(self) -> str:
        return self.repo

    @property
    def https_url(self) -> str:
        """Unauthenticated clone URL derived from the repository locator.

        ``git@host:owner/name.git`` becomes ``https://host/owner/name.git``;
        anything else is returned unchanged.
        """
        if self.repo.startswith("git@") and ":" in self.repo:
            host, path = self.repo[len("git@"):].split(":", 1)
            return f"https://{host}/{path}"
        if self.repo.startswith("ssh://git@"):
            return "https://" + self.repo[len("ssh://git@"):]
        return self.repo

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "port": self.port,
            "repo": self.repo,
            "default_branch": self.default_branch,
            "health_path": self.health_path,
            "container": self.container_name,
        }


class ServiceRegistry:
    """Immutable name -> ServiceDescriptor mapping."""

    def __init__(self, services: list[ServiceDescriptor]):
        self._services: dict[str, ServiceDescriptor] = {}
        for service in services:
            if service.name in self._services:
                raise ValueError(f"Duplicate service in registry: {service.name}")
            self._services[service.name] = service

    def __contains__(self, name: object) -> bool:
        return name in self._services

    def __iter__(self) -> Iterator[ServiceDescriptor]:
        return iter(self._services.values())

    def __len__(self) -> int:
        return len(self._services)

    def names(self) -> list[str]:
        return list(self._services)

    def get(self, name: str) -> ServiceDescriptor | None:
        """Look up a service, accepting the short form (``auth`` for ``auth-service``)."""
        if name in self._services:
            return self._services[name]
        return self._services.get(f"{name}-service")

    def canonical(self, name: str) -> str:
        """Registry name for ``name``, or ``name`` itself when unknown."""
        service = self.get(name)
        return service.name if service else name

    def select(self, selection: str) -> list[str]:
        """Expand a CLI selection (``all`` or ``a,b``) into service names.

        Unknown names are kept so the caller can report them.
        """
        if not selection or selection.strip().lower() == "all":
            return self.names()
        names: list[str] = []
        for name in split_services(selection):
            canonical = self.canonical(name)
            if canonical not in names:
                names.append(canonical)
        return names


def build_registry(config: RegistryConfig | None = None, container_prefix: str = "letzgo") -> ServiceRegistry:
    """Build the registry from configuration, falling back to the built-in table."""
    config = config or RegistryConfig()

    def repo_for(name: str) -> str:
        return f"git@{config.host}:{config.owner}/{name}.git"

    if config.services is None:
        services = [
            ServiceDescriptor(
                name=name,
                port=port,
                repo=repo_for(name),
                default_branch=config.default_branch,
                container_prefix=container_prefix,
            )
            for name, port in DEFAULT_SERVICES.items()
        ]
    else:
        services = [
            ServiceDescriptor(
                name=entry.name,
                port=entry.port,
                repo=entry.repo or repo_for(entry.name),
                default_branch=entry.default_branch or config.default_branch,
                health_path=entry.health_path,
                container_prefix=container_prefix,
            )
            for entry in config.services
        ]
    return ServiceRegistry(services)
