"""Services command."""

import click

from deployctl.core.context import pass_context, DeployCtlContext


@click.command("services")
@pass_context
def services(ctx: DeployCtlContext) -> None:
    """List the services in the registry."""
    data = [
        {
            "name": service.name,
            "port": service.port,
            "container": service.container_name,
            "repo": service.repo,
            "default_branch": service.default_branch,
            "health": service.health_path,
        }
        for service in ctx.registry
    ]
    ctx.output.print_data(
        data,
        headers=["name", "port", "container", "repo", "default_branch", "health"],
        title="Services",
    )
