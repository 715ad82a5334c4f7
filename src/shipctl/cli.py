"""Main CLI entry point for shipctl."""

import sys
from typing import Any

import click
from rich.console import Console

from shipctl import __version__
from shipctl.config import load_config
from shipctl.core.context import ShipCtlContext
from shipctl.core.output import OutputFormat
from shipctl.core.exceptions import ShipCtlError, ConfigError


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
    console.print(f"shipctl version {__version__}")
    ctx.exit()


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "-p",
    "--profile",
    metavar="NAME",
    envvar="SHIPCTL_PROFILE",
    help="Configuration profile to use",
)
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
    help="Increase verbosity (-v for info, -vvv for debug)",
)
@click.option(
    "-q",
    "--quiet",
    is_flag=True,
    help="Suppress non-essential output",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would happen without making changes",
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
    envvar="SHIPCTL_CONFIG",
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
    profile: str | None,
    output_format: OutputFormat | None,
    verbose: int,
    quiet: bool,
    dry_run: bool,
    no_color: bool,
    config_file: str | None,
) -> None:
    """ShipCtl - deploy a Java artifact to a remote host over SSH.

    Stops the running instance, backs up the previous artifact, uploads
    the new one, starts it and waits for its port to listen.

    \b
    Examples:
        shipctl deploy run target/demo.jar
        shipctl -p production deploy run target/demo.jar --port 8070
        shipctl deploy logs demo.jar -n 50

    \b
    Configuration:
        ~/.shipctl/config.yaml   User configuration
        ./shipctl.yaml           Project configuration
        SHIPCTL_*                Environment variables
    """
    try:
        config = load_config(config_file, profile)

        ctx.obj = ShipCtlContext(
            config=config,
            profile=profile,
            output_format=output_format,
            verbose=verbose,
            quiet=quiet,
            dry_run=dry_run,
            color=not no_color,
        )
        ctx.call_on_close(ctx.obj.close)

        if dry_run and not quiet:
            ctx.obj.output.print_warning("Dry-run mode enabled - no changes will be made")

    except ConfigError as e:
        console = Console(stderr=True)
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)


def register_commands() -> None:
    """Register all command groups."""
    from shipctl.commands.deploy import deploy

    cli.add_command(deploy)


register_commands()


@cli.command()
@click.pass_context
def config(ctx: click.Context) -> None:
    """Show current configuration (secrets masked)."""
    shipctl_ctx: ShipCtlContext = ctx.obj
    profile = shipctl_ctx.profile
    target = profile.target
    config_data = {
        "profile": shipctl_ctx.profile_name,
        "output_format": shipctl_ctx.output_format.value,
        "dry_run": shipctl_ctx.dry_run,
        "verbose": shipctl_ctx.verbose,
        "target": {
            "host": target.get_host(),
            "port": target.get_port(),
            "user": target.get_user(),
            "key_file": target.get_key_file(),
            "has_password": bool(target.get_password()),
            "deploy_dir": target.get_deploy_dir(),
            "backup_dir": target.backup_dir,
            "log_file": target.log_file,
            "listen_port": target.get_listen_port(),
            "strict_host_key_checking": target.strict_host_key_checking,
        },
        "runtime": profile.runtime.model_dump(),
        "stop": profile.stop.model_dump(),
        "verify": profile.verify.model_dump(),
        "backup": profile.backup.model_dump(),
        "command_timeout": profile.command_timeout,
    }
    shipctl_ctx.output.print_data(config_data, title="Current Configuration")


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except ShipCtlError as e:
        console = Console(stderr=True)
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console = Console(stderr=True)
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
