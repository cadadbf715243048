"""Deployment data models."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

from deployctl.core.exceptions import InvalidTransitionError
from deployctl.core.utils import utc_now


class TaskStatus(str, Enum):
    """Per-service pipeline status."""

    PENDING = "pending"
    RESOLVING = "resolving"
    BUILDING = "building"
    DEPLOYING = "deploying"
    HEALTH_CHECKING = "health_checking"
    SUCCESS = "success"
    FAILED = "failed"
    UNHEALTHY = "unhealthy"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


TERMINAL_STATUSES = frozenset({TaskStatus.SUCCESS, TaskStatus.FAILED, TaskStatus.UNHEALTHY})

# Pipeline order; a record only ever moves forward through it
_ORDER = [
    TaskStatus.PENDING,
    TaskStatus.RESOLVING,
    TaskStatus.BUILDING,
    TaskStatus.DEPLOYING,
    TaskStatus.HEALTH_CHECKING,
]


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Check whether ``current -> target`` is a legal move."""
    if current.is_terminal:
        return False
    if target == TaskStatus.FAILED:
        return True
    if current == TaskStatus.HEALTH_CHECKING:
        return target in (TaskStatus.HEALTH_CHECKING, TaskStatus.SUCCESS, TaskStatus.UNHEALTHY)
    if target.is_terminal:
        return False
    return _ORDER.index(target) > _ORDER.index(current)


class SourceOrigin(str, Enum):
    """Where a service's source tree came from."""

    SSH = "ssh"
    HTTPS = "https"
    MAIN_FALLBACK = "main_fallback"
    SYNTHESIZED_STUB = "synthesized_stub"

    @property
    def is_fallback(self) -> bool:
        return self in (SourceOrigin.MAIN_FALLBACK, SourceOrigin.SYNTHESIZED_STUB)


@dataclass(frozen=True)
class DeploymentRequest:
    """What the caller asked for; never mutated after creation."""

    services: frozenset[str]
    branch: str = "main"
    force_rebuild: bool = False

    @classmethod
    def create(cls, services: Iterable[str], branch: str = "main", force_rebuild: bool = False) -> "DeploymentRequest":
        return cls(services=frozenset(services), branch=branch or "main", force_rebuild=force_rebuild)


@dataclass(frozen=True)
class ResolvedSource:
    """A working source tree for one service."""

    service: str
    source_path: Path
    actual_branch: str
    origin: SourceOrigin

    @property
    def is_fallback(self) -> bool:
        return self.origin.is_fallback


@dataclass(frozen=True)
class ImageRef:
    """A built image."""

    tag: str
    image_id: str | None = None


@dataclass(frozen=True)
class ContainerHandle:
    """A started container."""

    id: str
    name: str


@dataclass(frozen=True)
class TaskRecord:
    """Status of one service's pipeline.

    Records are immutable; every change produces a new record which the
    owning runner stores with a single replace.
    """

    service: str
    status: TaskStatus = TaskStatus.PENDING
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    log_tail: tuple[str, ...] = ()
    origin: SourceOrigin | None = None
    actual_branch: str | None = None
    error_kind: str | None = None
    message: str = ""
    attempts: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or utc_now()
        return max((end - self.started_at).total_seconds(), 0.0)

    def advance(self, status: TaskStatus, **changes: Any) -> "TaskRecord":
        """Return a copy in ``status``; terminal statuses stamp ``finished_at``.

        Raises:
            InvalidTransitionError: if the move is not allowed
        """
        if not can_transition(self.status, status):
            raise InvalidTransitionError(
                f"Illegal transition for {self.service}: {self.status.value} -> {status.value}"
            )
        if status.is_terminal and "finished_at" not in changes:
            changes["finished_at"] = utc_now()
        return replace(self, status=status, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "service": self.service,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "origin": self.origin.value if self.origin else None,
            "actual_branch": self.actual_branch,
            "error_kind": self.error_kind,
            "message": self.message,
            "attempts": self.attempts,
            "log_tail": list(self.log_tail),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskRecord":
        """Create from dictionary."""
        return cls(
            service=data["service"],
            status=TaskStatus(data.get("status", "pending")),
            started_at=datetime.fromisoformat(data["started_at"]) if data.get("started_at") else utc_now(),
            finished_at=datetime.fromisoformat(data["finished_at"]) if data.get("finished_at") else None,
            log_tail=tuple(data.get("log_tail") or ()),
            origin=SourceOrigin(data["origin"]) if data.get("origin") else None,
            actual_branch=data.get("actual_branch"),
            error_kind=data.get("error_kind"),
            message=data.get("message", ""),
            attempts=data.get("attempts", 0),
        )


@dataclass
class RunSummary:
    """Final result of one orchestrated run."""

    records: list[TaskRecord] = field(default_factory=list)
    branch: str = "main"
    duration: float = 0.0

    def __post_init__(self) -> None:
        self.records = sorted(self.records, key=lambda r: r.service)

    def _with(self, status: TaskStatus) -> list[TaskRecord]:
        return [r for r in self.records if r.status == status]

    @property
    def succeeded(self) -> list[TaskRecord]:
        return self._with(TaskStatus.SUCCESS)

    @property
    def failed(self) -> list[TaskRecord]:
        return self._with(TaskStatus.FAILED)

    @property
    def unhealthy(self) -> list[TaskRecord]:
        return self._with(TaskStatus.UNHEALTHY)

    @property
    def fallbacks(self) -> list[TaskRecord]:
        return [r for r in self.records if r.origin is not None and r.origin.is_fallback]

    @property
    def all_succeeded(self) -> bool:
        return bool(self.records) and len(self.succeeded) == len(self.records)

    @property
    def exit_code(self) -> int:
        return 0 if self.all_succeeded else 1

    @property
    def tally(self) -> str:
        return (
            f"{len(self.succeeded)} Success / {len(self.failed)} Failed / "
            f"{len(self.unhealthy)} Unhealthy"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "branch": self.branch,
            "duration": round(self.duration, 2),
            "success": len(self.succeeded),
            "failed": len(self.failed),
            "unhealthy": len(self.unhealthy),
            "exit_code": self.exit_code,
            "records": [r.to_dict() for r in self.records],
        }
