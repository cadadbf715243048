"""Progress display for parallel deployments."""

from datetime import datetime
from typing import Iterable

from rich.markup import escape
from rich.table import Table

from deployctl.core.output import format_duration
from deployctl.deploy.models import TaskRecord, TaskStatus

STATUS_ICONS = {
    TaskStatus.PENDING: "[dim]○[/dim]",
    TaskStatus.RESOLVING: "[yellow]●[/yellow]",
    TaskStatus.BUILDING: "[yellow]●[/yellow]",
    TaskStatus.DEPLOYING: "[yellow]●[/yellow]",
    TaskStatus.HEALTH_CHECKING: "[cyan]●[/cyan]",
    TaskStatus.SUCCESS: "[green]✓[/green]",
    TaskStatus.FAILED: "[red]✗[/red]",
    TaskStatus.UNHEALTHY: "[yellow]⚠[/yellow]",
}

STATUS_STYLES = {
    TaskStatus.SUCCESS: "green",
    TaskStatus.FAILED: "red",
    TaskStatus.UNHEALTHY: "yellow",
}


def status_cell(record: TaskRecord) -> str:
    """Icon plus label, with the health attempt counter while polling."""
    label = record.status.label
    if record.status == TaskStatus.HEALTH_CHECKING and record.attempts:
        label = f"{label} ({record.attempts})"
    elif record.status == TaskStatus.FAILED and record.error_kind:
        label = f"{label} ({record.error_kind})"
    style = STATUS_STYLES.get(record.status)
    if style:
        label = f"[{style}]{label}[/{style}]"
    return f"{STATUS_ICONS[record.status]} {label}"


def progress_table(records: Iterable[TaskRecord], title: str | None = None) -> Table:
    """Table of current task statuses, one row per service."""
    records = sorted(records, key=lambda r: r.service)
    done = sum(1 for r in records if r.is_terminal)
    if title is None:
        title = f"Deployment progress {datetime.now():%H:%M:%S} - {done}/{len(records)} completed"

    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Service", style="cyan")
    table.add_column("Status")
    table.add_column("Source")
    table.add_column("Elapsed", justify="right")

    for record in records:
        source = ""
        if record.origin is not None:
            source = record.origin.value
            if record.actual_branch:
                source = f"{source} ({record.actual_branch})"
            if record.origin.is_fallback:
                source = f"[yellow]{source}[/yellow]"
        table.add_row(
            record.service,
            status_cell(record),
            source,
            format_duration(record.duration_seconds),
        )
    return table


def summary_table(records: Iterable[TaskRecord]) -> Table:
    """Final per-service report ordered by service name."""
    table = Table(title="Final Deployment Summary", show_header=True, header_style="bold cyan")
    table.add_column("Service", style="cyan")
    table.add_column("Status")
    table.add_column("Source")
    table.add_column("Duration", justify="right")
    table.add_column("Detail")

    for record in sorted(records, key=lambda r: r.service):
        source = record.origin.value if record.origin else "-"
        if record.origin is not None and record.origin.is_fallback:
            source = f"[yellow]{source}[/yellow]"
        table.add_row(
            record.service,
            status_cell(record),
            source,
            format_duration(record.duration_seconds),
            "" if record.status == TaskStatus.SUCCESS else escape(record.message),
        )
    return table
