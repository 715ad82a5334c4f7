"""Deploy command group."""

import sys
from typing import Any

import click
from rich.markup import escape

from shipctl.core.context import pass_context, ShipCtlContext
from shipctl.core.exceptions import ShipCtlError, VerificationTimeout
from shipctl.core.output import OutputFormat, format_duration
from shipctl.deploy import Artifact, DeploymentRun, DeploymentTarget


@click.group()
@pass_context
def deploy(ctx: ShipCtlContext) -> None:
    """Deployment operations - run, stop, verify, logs, backups.

    \b
    Examples:
        shipctl deploy run target/demo.jar
        shipctl deploy stop demo.jar
        shipctl deploy verify demo.jar
        shipctl deploy logs demo.jar -n 100
        shipctl deploy backups demo.jar
    """
    pass


def _fail(ctx: ShipCtlContext, message: str) -> None:
    ctx.output.print_error(message)
    sys.exit(1)


def _target_for(
    ctx: ShipCtlContext,
    artifact_name: str,
    host: str | None = None,
    port: int | None = None,
) -> DeploymentTarget:
    return ctx.profile.build_target(artifact_name, host=host, listen_port=port)


def _summary(run: DeploymentRun) -> dict[str, Any]:
    duration = run.duration_seconds
    return {
        "id": run.id,
        "host": run.target.host,
        "artifact": run.artifact.remote_file_name,
        "port": run.target.listen_port,
        "stage": run.stage.value,
        "outcome": run.outcome.value,
        "stopped_pids": ", ".join(str(p) for p in run.stopped_pids) or "-",
        "backup": run.backup_path or "-",
        "rotated_log": run.rotated_log_path or "-",
        "verify_attempts": run.verify_attempts,
        "duration": format_duration(duration) if duration is not None else "-",
    }


@deploy.command("run")
@click.argument("artifact_path", type=click.Path(dir_okay=False))
@click.option("--name", default=None, help="Remote file name (defaults to the local file name)")
@click.option("--host", default=None, help="Override the target host")
@click.option("--port", type=int, default=None, help="Override the listen port to verify")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation")
@pass_context
def run_deployment(
    ctx: ShipCtlContext,
    artifact_path: str,
    name: str | None,
    host: str | None,
    port: int | None,
    yes: bool,
) -> None:
    """Deploy an artifact: stop, backup, upload, start, verify.

    \b
    Examples:
        shipctl deploy run target/demo.jar
        shipctl deploy run build/app-1.2.jar --name app.jar --port 8070 -y
    """
    try:
        artifact = Artifact.from_path(artifact_path, name)
        target = _target_for(ctx, artifact.remote_file_name, host, port)
    except ShipCtlError as e:
        _fail(ctx, str(e))
        return

    if not yes and not ctx.confirm(
        f"Deploy {artifact.remote_file_name} to {target.user_host} (port {target.listen_port})?"
    ):
        ctx.output.print_info("Cancelled")
        return

    run = ctx.orchestrator.run(target, artifact, dry_run=ctx.dry_run)

    if ctx.output_format in (OutputFormat.JSON, OutputFormat.YAML):
        ctx.output.print_data(run.to_dict())
    else:
        ctx.output.print_data(_summary(run), title=f"Deployment {run.id}")
        if run.dry_run:
            for event in run.events:
                if event.event_type == "dry_run":
                    ctx.log_dry_run(event.message)

    if run.succeeded:
        ctx.output.print_success(
            f"Deployed {artifact.remote_file_name} to {target.host}, port {target.listen_port} listening"
        )
        return

    if run.log_tail and ctx.output_format not in (OutputFormat.JSON, OutputFormat.YAML):
        ctx.output.print_panel(
            escape("\n".join(run.log_tail)),
            title=f"Last {len(run.log_tail)} lines of {target.log_file}",
            style="red",
        )
    _fail(ctx, f"{run.failure_kind} during {run.failed_step}: {run.failure_reason}")


@deploy.command("stop")
@click.argument("artifact_name")
@click.option("--host", default=None, help="Override the target host")
@click.option("--port", type=int, default=None, help="Override the listen port")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation")
@pass_context
def stop(
    ctx: ShipCtlContext,
    artifact_name: str,
    host: str | None,
    port: int | None,
    yes: bool,
) -> None:
    """Stop the running instance of a deployed artifact.

    \b
    Examples:
        shipctl deploy stop demo.jar
    """
    try:
        target = _target_for(ctx, artifact_name, host, port)

        if ctx.dry_run:
            ctx.log_dry_run("stop process", {"host": target.host, "port": target.listen_port})
            return

        if not yes and not ctx.confirm(f"Stop {artifact_name} on {target.host}?"):
            ctx.output.print_info("Cancelled")
            return

        orchestrator = ctx.orchestrator
        run = orchestrator.new_run(target, Artifact.remote(artifact_name))
        pids = orchestrator.stop_old_process(run)

    except ShipCtlError as e:
        _fail(ctx, f"Stop failed: {e}")
        return

    if pids:
        ctx.output.print_success(f"Stopped {', '.join(str(p) for p in pids)} on {target.host}")
    else:
        ctx.output.print_info(f"No running process found on {target.host}:{target.listen_port}")


@deploy.command("verify")
@click.argument("artifact_name")
@click.option("--host", default=None, help="Override the target host")
@click.option("--port", type=int, default=None, help="Override the listen port")
@click.option("--attempts", type=click.IntRange(min=1), default=None, help="Maximum polls")
@click.option("--interval", type=float, default=None, help="Seconds between polls")
@pass_context
def verify(
    ctx: ShipCtlContext,
    artifact_name: str,
    host: str | None,
    port: int | None,
    attempts: int | None,
    interval: float | None,
) -> None:
    """Wait for the application port to be listening.

    \b
    Examples:
        shipctl deploy verify demo.jar
        shipctl deploy verify demo.jar --port 8070 --attempts 60
    """
    try:
        target = _target_for(ctx, artifact_name, host, port)
        artifact = Artifact.remote(artifact_name)
    except ShipCtlError as e:
        _fail(ctx, str(e))
        return

    orchestrator = ctx.orchestrator
    changes: dict[str, Any] = {}
    if attempts is not None:
        changes["verify_attempts"] = attempts
    if interval is not None:
        changes["verify_interval"] = interval
    if changes:
        orchestrator = orchestrator.with_policy(**changes)

    run = orchestrator.new_run(target, artifact, dry_run=ctx.dry_run)
    try:
        polls = orchestrator.verify_listening(run)
    except VerificationTimeout as e:
        if e.log_tail:
            ctx.output.print_panel(escape("\n".join(e.log_tail)), title=target.log_file, style="red")
        _fail(ctx, e.message)
        return
    except ShipCtlError as e:
        _fail(ctx, f"Verify failed: {e}")
        return

    if ctx.dry_run:
        ctx.log_dry_run("verify port", {"host": target.host, "port": target.listen_port})
        return
    ctx.output.print_success(
        f"Port {target.listen_port} on {target.host} listening (after {polls} poll(s))"
    )


@deploy.command("logs")
@click.argument("artifact_name")
@click.option("--host", default=None, help="Override the target host")
@click.option("-n", "--lines", type=click.IntRange(min=1), default=20, help="Number of lines")
@pass_context
def logs(ctx: ShipCtlContext, artifact_name: str, host: str | None, lines: int) -> None:
    """Show the tail of the application log.

    \b
    Examples:
        shipctl deploy logs demo.jar
        shipctl deploy logs demo.jar -n 200
    """
    try:
        target = _target_for(ctx, artifact_name, host)
        tail = ctx.orchestrator.tail_log(target, lines)
    except ShipCtlError as e:
        _fail(ctx, f"Failed to read log: {e}")
        return

    if not tail:
        ctx.output.print_info(f"No log output at {target.log_file}")
        return

    for line in tail:
        click.echo(line)


@deploy.command("backups")
@click.argument("artifact_name")
@click.option("--host", default=None, help="Override the target host")
@pass_context
def backups(ctx: ShipCtlContext, artifact_name: str, host: str | None) -> None:
    """List backups of a deployed artifact, newest first.

    \b
    Examples:
        shipctl deploy backups demo.jar
    """
    try:
        target = _target_for(ctx, artifact_name, host)
        paths = ctx.orchestrator.list_backups(target, artifact_name)
    except ShipCtlError as e:
        _fail(ctx, f"Failed to list backups: {e}")
        return

    if not paths:
        ctx.output.print_info(f"No backups in {target.backup_dir}")
        return

    rows = [
        {"path": path, "timestamp": path.rsplit(".", 1)[-1]}
        for path in paths
    ]
    ctx.output.print_data(rows, headers=["path", "timestamp"], title="Backups")
