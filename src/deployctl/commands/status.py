"""Status and report commands."""

import click

from deployctl.core.context import pass_context, DeployCtlContext
from deployctl.core.exceptions import RuntimeUnavailableError, UnknownServiceError
from deployctl.core.output import OutputFormat, format_duration
from deployctl.core.progress import summary_table
from deployctl.deploy.health import HealthMonitor


@click.command("status")
@click.argument("services", default="all")
@pass_context
def status(ctx: DeployCtlContext, services: str) -> None:
    """Show container state and a single health probe per service.

    \b
    Examples:
        deployctl status
        deployctl status auth,chat
        deployctl -o json status
    """
    registry = ctx.registry
    names = registry.select(services)
    unknown = [name for name in names if name not in registry]
    if unknown:
        raise UnknownServiceError(unknown, registry.names())

    runtime = ctx.runtime
    if not runtime.available():
        raise RuntimeUnavailableError("Docker daemon is not reachable")

    monitor = HealthMonitor(runtime, ctx.config.health)
    rows = []
    for name in names:
        service = registry.get(name)
        state = runtime.status(service.container_name) or "not found"
        if state == "running":
            probe = monitor.probe(service)
            health = "healthy" if probe.healthy else f"unhealthy ({probe.message})"
        else:
            health = "-"
        rows.append(
            {
                "service": service.name,
                "container": service.container_name,
                "state": state,
                "health": health,
                "url": monitor.url_for(service),
            }
        )

    ctx.output.print_data(rows, title="Service Status")


@click.command("report")
@pass_context
def report(ctx: DeployCtlContext) -> None:
    """Show the records left by the last deployment run."""
    records = ctx.status_store().load_persisted()
    if not records:
        ctx.output.print_info("No deployment records found")
        return

    if ctx.output_format == OutputFormat.TABLE:
        ctx.output.print_table(summary_table(records))
        return

    ctx.output.print_data(
        [
            {
                "service": record.service,
                "status": record.status.value,
                "origin": record.origin.value if record.origin else None,
                "branch": record.actual_branch,
                "error_kind": record.error_kind,
                "message": record.message,
                "duration": format_duration(record.duration_seconds),
                "finished_at": record.finished_at.isoformat() if record.finished_at else None,
            }
            for record in records
        ]
    )
