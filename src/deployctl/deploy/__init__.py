"""Parallel service deployment pipeline."""

from deployctl.deploy.models import (
    ContainerHandle,
    DeploymentRequest,
    ImageRef,
    ResolvedSource,
    RunSummary,
    SourceOrigin,
    TaskRecord,
    TaskStatus,
)
from deployctl.deploy.state import StatusStore

__all__ = [
    "ContainerHandle",
    "DeploymentRequest",
    "ImageRef",
    "ResolvedSource",
    "RunSummary",
    "SourceOrigin",
    "StatusStore",
    "TaskRecord",
    "TaskStatus",
]
