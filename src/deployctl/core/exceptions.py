"""Custom exceptions for deployctl."""

from typing import Any


class DeployCtlError(Exception):
    """Base exception for all deployctl errors."""

    # Short tag recorded on a failed TaskRecord
    kind = "internal"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ConfigError(DeployCtlError):
    """Configuration-related errors."""

    kind = "config"


class ValidationError(DeployCtlError):
    """Input validation errors."""

    pass


class UnknownServiceError(DeployCtlError):
    """Requested service is not in the registry."""

    kind = "unknown_service"

    def __init__(self, names: list[str], known: list[str] | None = None):
        super().__init__(
            f"Unknown service(s): {', '.join(names)}",
            {"known": ", ".join(known)} if known else None,
        )
        self.names = names


class PreflightError(DeployCtlError):
    """Host prerequisites are not met."""

    kind = "preflight"

    def __init__(self, problems: list[str]):
        super().__init__("Prerequisites not met: " + "; ".join(problems))
        self.problems = problems


class RuntimeUnavailableError(DeployCtlError):
    """Docker daemon cannot be reached."""

    kind = "runtime"


class InvalidTransitionError(DeployCtlError):
    """Illegal task status transition."""

    pass


class StageError(DeployCtlError):
    """Error raised by one pipeline stage; fatal to one service only."""

    def __init__(
        self,
        message: str,
        service: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.service = service


class ResolveError(StageError):
    """Source could not be obtained, not even as a placeholder."""

    kind = "resolve"


class BuildError(StageError):
    """Image build failed after the source was obtained."""

    kind = "build"


class DeployError(StageError):
    """Container runtime refused to start or replace the container."""

    kind = "deploy"
