"""Click context object for sharing state across commands."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from deployctl.config import DeployCtlConfig, get_default_config
from deployctl.core.output import OutputFormat, OutputFormatter
from deployctl.core.logging import LogLevel, setup_logging, StructuredLogger

if TYPE_CHECKING:
    from deployctl.deploy.runtime import ContainerRuntime
    from deployctl.deploy.state import StatusStore
    from deployctl.registry import ServiceRegistry


class DeployCtlContext:
    """Shared context object for deployctl commands.

    This object is passed through Click's context mechanism and provides
    access to configuration, the service registry and the container runtime.
    """

    def __init__(
        self,
        config: DeployCtlConfig | None = None,
        output_format: OutputFormat | None = None,
        verbose: int = 0,
        quiet: bool = False,
        color: bool = True,
    ):
        self._config = config or get_default_config()

        # Output settings (CLI overrides config)
        self._output_format = output_format or self._config.global_settings.output_format
        self._verbose = verbose
        self._quiet = quiet
        self._color = color and self._config.global_settings.color != "never"

        if verbose >= 2:
            log_level = LogLevel.DEBUG
        elif verbose >= 1:
            log_level = LogLevel.INFO
        elif quiet:
            log_level = LogLevel.ERROR
        else:
            log_level = self._config.global_settings.verbosity

        setup_logging(log_level, rich_output=self._color)
        self._logger = StructuredLogger("context")

        self._output = OutputFormatter(
            format=self._output_format,
            color=self._color,
            quiet=quiet,
        )

        # Lazy-loaded
        self._runtime: ContainerRuntime | None = None
        self._registry: ServiceRegistry | None = None

    @property
    def config(self) -> DeployCtlConfig:
        """Get the loaded configuration."""
        return self._config

    @property
    def output(self) -> OutputFormatter:
        """Get the output formatter."""
        return self._output

    @property
    def output_format(self) -> OutputFormat:
        return self._output_format

    @property
    def verbose(self) -> int:
        return self._verbose

    @property
    def quiet(self) -> bool:
        return self._quiet

    @property
    def color(self) -> bool:
        return self._color

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def registry(self) -> "ServiceRegistry":
        """Get or build the service registry."""
        if self._registry is None:
            from deployctl.registry import build_registry

            self._registry = build_registry(self._config.registry, self._config.docker.container_prefix)
        return self._registry

    @property
    def runtime(self) -> "ContainerRuntime":
        """Get or create the container runtime."""
        if self._runtime is None:
            from deployctl.deploy.runtime import ContainerRuntime

            self._runtime = ContainerRuntime(self._config.docker)
        return self._runtime

    def status_store(self) -> "StatusStore":
        """Status store backed by the configured state directory."""
        from deployctl.deploy.state import StatusStore

        return StatusStore(self._config.paths.get_state_dir())


# Click decorator for passing context
pass_context = click.make_pass_decorator(DeployCtlContext, ensure=True)
