"""Deploy command."""

import sys
from pathlib import Path

import click

from deployctl.config import load_environment
from deployctl.core.context import pass_context, DeployCtlContext
from deployctl.core.exceptions import ValidationError
from deployctl.core.output import OutputFormat
from deployctl.core.utils import parse_duration
from deployctl.deploy.models import DeploymentRequest
from deployctl.deploy.orchestrator import build_orchestrator
from deployctl.deploy.preflight import ensure_prerequisites


def _seconds(value: str | None, option: str) -> float | None:
    if value is None:
        return None
    try:
        seconds = parse_duration(value).total_seconds()
    except ValueError as e:
        raise ValidationError(f"Invalid {option}: {e}")
    if seconds <= 0:
        raise ValidationError(f"{option} must be positive")
    return seconds


@click.command("deploy")
@click.argument("services", default="all")
@click.argument("branch", default="main")
@click.option("--force-rebuild", is_flag=True, help="Rebuild images without the build cache")
@click.option("--strict", is_flag=True, help="Fail services that fall back to main or a placeholder")
@click.option("--max-parallel", type=click.IntRange(min=1), help="Maximum concurrent deployments")
@click.option("--poll-interval", metavar="DURATION", help="Progress refresh interval (e.g. 2s)")
@click.option("--health-timeout", metavar="DURATION", help="Health check budget per service (e.g. 100s, 2m)")
@click.option("--health-interval", metavar="DURATION", help="Delay between health probes (e.g. 5s)")
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="DEPLOYCTL_ENV_FILE",
    help="Shared environment file (default: <deploy_path>/.env)",
)
@click.option("--skip-preflight", is_flag=True, help="Skip docker network and infrastructure checks")
@pass_context
def deploy(
    ctx: DeployCtlContext,
    services: str,
    branch: str,
    force_rebuild: bool,
    strict: bool,
    max_parallel: int | None,
    poll_interval: str | None,
    health_timeout: str | None,
    health_interval: str | None,
    env_file: Path | None,
    skip_preflight: bool,
) -> None:
    """Deploy services in parallel.

    SERVICES is a comma separated list of service names or "all".
    BRANCH is the git branch to deploy (default: main). Services whose
    branch cannot be fetched fall back to their default branch, then to a
    placeholder that reports unhealthy.

    \b
    Examples:
        deployctl deploy all
        deployctl deploy auth-service,user-service develop
        deployctl deploy chat --force-rebuild
        deployctl deploy all release/1.4 --strict --health-timeout 3m
    """
    poll_seconds = _seconds(poll_interval, "--poll-interval")
    timeout_seconds = _seconds(health_timeout, "--health-timeout")
    interval_seconds = _seconds(health_interval, "--health-interval")

    # Fail fast on configuration before any worker starts
    env_path = env_file or ctx.config.paths.get_env_file()
    configuration = load_environment(env_path)
    ctx.logger.debug("Loaded environment", path=str(env_path))

    names = ctx.registry.select(services)
    if not names:
        raise ValidationError("No services selected")

    # Unknown names never touch docker; the orchestrator reports them
    known = [name for name in names if ctx.registry.get(name)]
    if known and not skip_preflight:
        ensure_prerequisites(ctx.runtime)
        ctx.output.print_success("Prerequisites met")

    orchestrator = build_orchestrator(
        ctx.config,
        configuration,
        ctx.registry,
        ctx.output,
        runtime=ctx.runtime,
        strict=strict or None,  # None keeps orchestrator.strict from config
        max_parallel=max_parallel,
        poll_interval=poll_seconds,
        health_timeout=timeout_seconds,
        health_interval=interval_seconds,
    )
    request = DeploymentRequest.create(names, branch=branch, force_rebuild=force_rebuild)
    summary = orchestrator.run_all(request)

    if ctx.output_format in (OutputFormat.JSON, OutputFormat.YAML):
        ctx.output.print_data(summary.to_dict())

    if summary.exit_code != 0:
        sys.exit(summary.exit_code)
