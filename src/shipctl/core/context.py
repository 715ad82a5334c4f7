"""Click context object for sharing state across commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import click
from rich.markup import escape

from shipctl.config import ShipCtlConfig, ProfileConfig, get_default_config
from shipctl.core.output import OutputFormat, OutputFormatter
from shipctl.core.logging import LogLevel, setup_logging, StructuredLogger

if TYPE_CHECKING:
    from shipctl.clients.ssh import SSHExecutor
    from shipctl.deploy.orchestrator import DeploymentOrchestrator


class ShipCtlContext:
    """Shared context object for shipctl commands.

    This object is passed through Click's context mechanism and provides
    access to configuration, the SSH executor and the orchestrator.
    """

    def __init__(
        self,
        config: ShipCtlConfig | None = None,
        profile: str | None = None,
        output_format: OutputFormat | None = None,
        verbose: int = 0,
        quiet: bool = False,
        dry_run: bool = False,
        color: bool = True,
    ):
        self._config = config or get_default_config()
        self._profile_name = profile or "default"

        # CLI overrides config
        self._output_format = output_format or self._config.global_settings.output_format
        self._verbose = verbose
        self._quiet = quiet
        self._dry_run = dry_run or self._config.global_settings.dry_run
        self._color = color

        if verbose >= 3:
            log_level = LogLevel.DEBUG
        elif verbose >= 1:
            log_level = LogLevel.INFO
        elif quiet:
            log_level = LogLevel.ERROR
        else:
            log_level = self._config.global_settings.verbosity

        setup_logging(log_level, rich_output=color)
        self._logger = StructuredLogger("context")

        self._output = OutputFormatter(
            format=self._output_format,
            color=color,
            quiet=quiet,
        )

        # Lazy-loaded
        self._executor: SSHExecutor | None = None
        self._orchestrator: DeploymentOrchestrator | None = None

    @property
    def config(self) -> ShipCtlConfig:
        """Get the loaded configuration."""
        return self._config

    @property
    def profile(self) -> ProfileConfig:
        """Get the current profile configuration."""
        return self._config.get_profile(self._profile_name)

    @property
    def profile_name(self) -> str:
        """Get the current profile name."""
        return self._profile_name

    @property
    def output(self) -> OutputFormatter:
        """Get the output formatter."""
        return self._output

    @property
    def output_format(self) -> OutputFormat:
        """Get the output format."""
        return self._output_format

    @property
    def dry_run(self) -> bool:
        """Check if dry-run mode is enabled."""
        return self._dry_run

    @property
    def verbose(self) -> int:
        """Get verbosity level."""
        return self._verbose

    @property
    def quiet(self) -> bool:
        """Check if quiet mode is enabled."""
        return self._quiet

    @property
    def logger(self) -> StructuredLogger:
        """Get the context logger."""
        return self._logger

    @property
    def executor(self) -> "SSHExecutor":
        """Get or create the SSH executor."""
        if self._executor is None:
            from shipctl.clients.ssh import SSHExecutor

            self._executor = SSHExecutor()
        return self._executor

    @property
    def orchestrator(self) -> "DeploymentOrchestrator":
        """Get or create the orchestrator for the current profile."""
        if self._orchestrator is None:
            from shipctl.clients.transfer import SFTPTransfer
            from shipctl.deploy.orchestrator import DeploymentOrchestrator

            self._orchestrator = DeploymentOrchestrator(
                executor=self.executor,
                transfer=SFTPTransfer(self.executor),
                policy=self.profile.build_policy(),
            )
        return self._orchestrator

    def close(self) -> None:
        """Close any open SSH sessions."""
        if self._executor is not None:
            self._executor.close()

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask for user confirmation.

        In dry-run mode, always returns True without prompting.
        """
        if self._dry_run:
            self._output.print(f"[dim]{escape(f'[dry-run] Would prompt: {message}')}[/dim]")
            return True
        if not self._config.global_settings.confirm_destructive:
            return True
        return self._output.confirm(message, default)

    def log_dry_run(self, action: str, details: dict[str, Any] | None = None) -> None:
        """Log a dry-run action."""
        if self._dry_run:
            msg = f"[dry-run] {action}"
            if details:
                detail_str = ", ".join(f"{k}={v}" for k, v in details.items())
                msg = f"{msg} ({detail_str})"
            self._output.print(f"[dim]{escape(msg)}[/dim]")


pass_context = click.make_pass_decorator(ShipCtlContext, ensure=True)
