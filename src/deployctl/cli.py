"""Main CLI entry point for deployctl."""

import sys
from typing import Any

import click
from rich.console import Console

from deployctl import __version__
from deployctl.config import load_config
from deployctl.core.context import DeployCtlContext
from deployctl.core.output import OutputFormat
from deployctl.core.exceptions import DeployCtlError, ConfigError


CONTEXT_SETTINGS = {
    "help_option_names": ["-h", "--help"],
    "max_content_width": 120,
}


class OutputFormatType(click.ParamType):
    """Custom Click parameter type for output format."""

    name = "format"

    def convert(
        self,
        value: Any,
        param: click.Parameter | None,
        ctx: click.Context | None,
    ) -> OutputFormat:
        if isinstance(value, OutputFormat):
            return value
        try:
            return OutputFormat(value.lower())
        except ValueError:
            self.fail(
                f"Invalid format '{value}'. Choose from: table, json, yaml, raw",
                param,
                ctx,
            )


OUTPUT_FORMAT = OutputFormatType()


def print_version(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    console = Console()
    console.print(f"deployctl version {__version__}")
    ctx.exit()


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "-o",
    "--output",
    "output_format",
    type=OUTPUT_FORMAT,
    metavar="FORMAT",
    help="Output format: table, json, yaml, raw",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="Increase verbosity (-v for info, -vv for debug)",
)
@click.option(
    "-q",
    "--quiet",
    is_flag=True,
    help="Suppress non-essential output",
)
@click.option(
    "--no-color",
    is_flag=True,
    help="Disable colored output",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    metavar="FILE",
    envvar="DEPLOYCTL_CONFIG",
    help="Path to config file",
)
@click.option(
    "--version",
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit",
)
@click.pass_context
def cli(
    ctx: click.Context,
    output_format: OutputFormat | None,
    verbose: int,
    quiet: bool,
    no_color: bool,
    config_file: str | None,
) -> None:
    """DeployCtl - parallel microservice deployments on a single docker host.

    Clones, builds, replaces and health-checks every selected service
    concurrently, then prints a per-service summary.

    \b
    Examples:
        deployctl deploy all
        deployctl deploy auth,chat develop --force-rebuild
        deployctl status
        deployctl report

    \b
    Configuration:
        ~/.deployctl/config.yaml    User configuration
        ./deployctl.yaml            Project configuration
        DEPLOYCTL_*                 Environment variables
    """
    try:
        config = load_config(config_file)

        ctx.obj = DeployCtlContext(
            config=config,
            output_format=output_format,
            verbose=verbose,
            quiet=quiet,
            color=not no_color,
        )

    except ConfigError as e:
        console = Console(stderr=True)
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)


def register_commands() -> None:
    """Register all commands."""
    from deployctl.commands.deploy import deploy
    from deployctl.commands.services import services
    from deployctl.commands.status import report, status

    cli.add_command(deploy)
    cli.add_command(services)
    cli.add_command(status)
    cli.add_command(report)


# Register commands
register_commands()


@cli.command()
@click.pass_context
def config(ctx: click.Context) -> None:
    """Show current configuration."""
    deployctl_ctx: DeployCtlContext = ctx.obj
    settings = deployctl_ctx.config
    config_data = {
        "output_format": deployctl_ctx.output_format.value,
        "verbose": deployctl_ctx.verbose,
        "deploy_path": str(settings.paths.get_deploy_path()),
        "env_file": str(settings.paths.get_env_file()),
        "state_dir": str(settings.paths.get_state_dir()),
        "docker": {
            "network": settings.docker.network,
            "container_prefix": settings.docker.container_prefix,
            "required_containers": settings.docker.required_containers,
        },
        "health": {
            "timeout": settings.health.timeout,
            "interval": settings.health.interval,
            "probe": settings.health.probe,
        },
        "orchestrator": {
            "max_parallel": settings.orchestrator.max_parallel,
            "poll_interval": settings.orchestrator.poll_interval,
            "strict": settings.orchestrator.strict,
        },
        "services": deployctl_ctx.registry.names(),
    }
    deployctl_ctx.output.print_data(config_data, title="Current Configuration")


def main() -> None:
    """Main entry point."""
    try:
        cli(standalone_mode=True)
    except DeployCtlError as e:
        console = Console(stderr=True)
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console = Console(stderr=True)
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
