"""Deployment orchestrator: stop, backup, upload, start, verify."""

import posixpath
import re
import time
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable

from shipctl.clients.base import ArtifactTransfer, CommandExecutor, CommandResult
from shipctl.core.exceptions import DeploymentError, ShipCtlError, VerificationTimeout
from shipctl.core.logging import StructuredLogger
from shipctl.deploy import commands
from shipctl.deploy.models import (
    Artifact,
    DeploymentOutcome,
    DeploymentRun,
    DeploymentStage,
    DeploymentTarget,
    DeployPolicy,
)
from shipctl.deploy.retry import poll_until

logger = StructuredLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

# Attempts to confirm exit after SIGKILL
KILL_CONFIRM_ATTEMPTS = 5


class DeploymentOrchestrator:
    """Runs the deployment stages in order against one target.

    Each stage is a public method taking the run it belongs to, so a
    single stage can be executed on its own. Stages block until their
    remote commands finish; the first failure aborts the run.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        transfer: ArtifactTransfer,
        policy: DeployPolicy | None = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._executor = executor
        self._transfer = transfer
        self._policy = policy or DeployPolicy()
        self._clock = clock
        self._sleep = sleep

    @property
    def policy(self) -> DeployPolicy:
        return self._policy

    def with_policy(self, **changes: Any) -> "DeploymentOrchestrator":
        """Copy of this orchestrator with some policy fields replaced."""
        return DeploymentOrchestrator(
            executor=self._executor,
            transfer=self._transfer,
            policy=replace(self._policy, **changes),
            clock=self._clock,
            sleep=self._sleep,
        )

    def new_run(
        self,
        target: DeploymentTarget,
        artifact: Artifact,
        dry_run: bool = False,
    ) -> DeploymentRun:
        """Create a pending run without executing anything."""
        return DeploymentRun(target=target, artifact=artifact, dry_run=dry_run)

    def run(
        self,
        target: DeploymentTarget,
        artifact: Artifact,
        dry_run: bool = False,
    ) -> DeploymentRun:
        """Execute the full deployment.

        Args:
            target: Host and layout to deploy to
            artifact: Locally built artifact
            dry_run: Record the planned actions without touching the host

        Returns:
            The finished DeploymentRun; ``outcome`` tells success from failure
        """
        run = self.new_run(target, artifact, dry_run=dry_run)
        run.started_at = self._clock()
        stamp = run.started_at.strftime(TIMESTAMP_FORMAT)
        log = logger.bind(run=run.id, host=target.host, artifact=artifact.remote_file_name)

        self._event(run, "started", f"Deploying {artifact.remote_file_name} to {target.user_host}")
        log.info("Deployment started")

        steps: list[tuple[str, Callable[[], object], DeploymentStage]] = [
            ("ensure_directories", lambda: self.ensure_directories(run), DeploymentStage.DIRECTORIES_ENSURED),
            ("stop_old_process", lambda: self.stop_old_process(run), DeploymentStage.OLD_PROCESS_STOPPED),
            ("backup_previous", lambda: self.backup_previous(run, stamp), DeploymentStage.BACKED_UP),
            ("upload_artifact", lambda: self.upload_artifact(run, stamp), DeploymentStage.ARTIFACT_UPLOADED),
            ("start_process", lambda: self.start_process(run), DeploymentStage.PROCESS_STARTED),
            ("verify_listening", lambda: self.verify_listening(run), DeploymentStage.VERIFIED),
        ]

        step_name = ""
        try:
            for step_name, action, reached in steps:
                log.info("Running stage", stage=step_name)
                action()
                run.stage = reached

            run.outcome = DeploymentOutcome.SUCCEEDED
            self._event(run, "completed", "Deployment completed successfully")
            log.info("Deployment succeeded")

        except ShipCtlError as e:
            run.stage = DeploymentStage.FAILED
            run.outcome = DeploymentOutcome.FAILED
            run.failed_step = step_name
            run.failure_kind = type(e).__name__
            run.failure_reason = e.message
            if isinstance(e, VerificationTimeout):
                run.log_tail = list(e.log_tail)
            self._event(run, "failed", f"{step_name} failed: {e.message}", {"kind": run.failure_kind})
            log.error("Deployment failed", stage=step_name, kind=run.failure_kind, error=e.message)

        finally:
            run.completed_at = self._clock()

        return run

    # Stages

    def ensure_directories(self, run: DeploymentRun) -> None:
        """Create the deploy, backup and log directories."""
        target = run.target
        dirs: list[str] = []
        for path in (target.deploy_dir, target.backup_dir, posixpath.dirname(target.log_file)):
            if path and path not in dirs:
                dirs.append(path)

        if run.dry_run:
            self._event(run, "dry_run", f"Would create directories: {', '.join(dirs)}")
            return

        self._exec(target, commands.make_dirs(*dirs))
        self._event(run, "directories_ensured", "Directories ready", {"dirs": dirs})

    def stop_old_process(self, run: DeploymentRun) -> list[int]:
        """Stop whatever serves the listen port, escalating to SIGKILL.

        Returns:
            PIDs that were signalled; empty on a first deployment
        """
        target = run.target
        if run.dry_run:
            self._event(run, "dry_run", f"Would stop the process listening on port {target.listen_port}")
            return []

        pids = self.find_running_pids(target, run.artifact.remote_file_name)
        if not pids:
            self._ensure_port_free(target)
            self._event(run, "no_process", "No running process found")
            logger.info("No running process to stop", host=target.host, port=target.listen_port)
            return []

        logger.info("Stopping process", host=target.host, pids=pids)
        for pid in pids:
            self._exec(target, commands.signal_process(pid, "TERM"), check=False)

        result = poll_until(
            lambda: not self._alive(target, pids),
            max_attempts=max(self._policy.grace_period, 0) + 1,
            interval=1.0,
            sleep=self._sleep,
        )

        if not result.succeeded:
            survivors = self._alive(target, pids)
            logger.warning("Process ignored SIGTERM, sending SIGKILL", host=target.host, pids=survivors)
            self._event(run, "force_kill", f"Sending SIGKILL to {survivors}")
            for pid in survivors:
                self._exec(target, commands.signal_process(pid, "KILL"), check=False)

            killed = poll_until(
                lambda: not self._alive(target, survivors),
                max_attempts=KILL_CONFIRM_ATTEMPTS,
                interval=1.0,
                sleep=self._sleep,
            )
            if not killed.succeeded:
                raise DeploymentError(
                    f"Process {self._alive(target, survivors)} still running after SIGKILL",
                    stage="stop_old_process",
                )

        self._exec(target, commands.remove_files(target.pid_file))
        self._ensure_port_free(target)
        run.stopped_pids = pids
        self._event(run, "stopped", f"Stopped process {pids}")
        return pids

    def backup_previous(self, run: DeploymentRun, stamp: str | None = None) -> str | None:
        """Copy the currently deployed artifact to the backup directory.

        Returns:
            Path of the backup, or None when nothing was deployed yet
        """
        target = run.target
        name = run.artifact.remote_file_name
        stamp = stamp or self._clock().strftime(TIMESTAMP_FORMAT)
        current = target.remote_path(name)
        backup_path = f"{target.backup_dir}/{name}.{stamp}"

        if run.dry_run:
            self._event(run, "dry_run", f"Would back up {current} to {backup_path}")
            return None

        if not self._exists(target, current):
            self._event(run, "backup_skipped", "No previous artifact")
            return None

        self._exec(target, commands.copy_file(current, backup_path))
        run.backup_path = backup_path
        self._event(run, "backed_up", f"Backed up previous artifact to {backup_path}")
        logger.info("Backed up previous artifact", host=target.host, path=backup_path)

        if self._policy.keep_backups > 0:
            self.prune_backups(target, name, self._policy.keep_backups)

        return backup_path

    def upload_artifact(self, run: DeploymentRun, stamp: str | None = None) -> str:
        """Rotate the old log and upload the new artifact.

        Returns:
            Remote path of the uploaded artifact
        """
        target = run.target
        stamp = stamp or self._clock().strftime(TIMESTAMP_FORMAT)
        rotated = f"{target.log_file}.{stamp}"
        destination = target.remote_path(run.artifact.remote_file_name)

        if run.dry_run:
            self._event(run, "dry_run", f"Would upload {run.artifact.local_path} to {destination}")
            return destination

        if self._exists(target, target.log_file):
            self._exec(target, commands.move_file(target.log_file, rotated))
            run.rotated_log_path = rotated
            self._event(run, "log_rotated", f"Rotated log to {rotated}")

        remote_path = self._transfer.upload(target, run.artifact)
        run.remote_artifact_path = remote_path
        self._event(run, "uploaded", f"Uploaded artifact to {remote_path}")
        return remote_path

    def start_process(self, run: DeploymentRun) -> None:
        """Launch the artifact in the background; does not wait for it."""
        target = run.target
        argv = commands.java_command(
            target.remote_path(run.artifact.remote_file_name), self._policy.runtime
        )
        command = commands.start_detached(target.deploy_dir, argv, target.log_file, target.pid_file)

        if run.dry_run:
            self._event(run, "dry_run", f"Would run: {command}")
            return

        self._exec(target, command)
        self._event(run, "started_process", "Process launched", {"log_file": target.log_file})
        logger.info("Process launched", host=target.host, log=target.log_file)

    def verify_listening(self, run: DeploymentRun) -> int:
        """Poll until the listen port is accepting connections.

        Returns:
            Number of polls it took

        Raises:
            VerificationTimeout: If the port never listens within the budget
        """
        target = run.target
        attempts = self._policy.verify_attempts

        if run.dry_run:
            self._event(run, "dry_run", f"Would poll port {target.listen_port} up to {attempts} times")
            return 0

        result = poll_until(
            lambda: self.is_listening(target),
            max_attempts=attempts,
            interval=self._policy.verify_interval,
            sleep=self._sleep,
        )
        run.verify_attempts = result.attempts

        if not result.succeeded:
            tail = self.tail_log(target, self._policy.log_tail_lines)
            run.log_tail = tail
            raise VerificationTimeout(
                f"Port {target.listen_port} on {target.host} not listening after {attempts} attempts",
                attempts=attempts,
                log_tail=tail,
            )

        self._event(run, "verified", f"Port {target.listen_port} listening after {result.attempts} attempt(s)")
        logger.info("Port listening", host=target.host, port=target.listen_port, attempts=result.attempts)
        return result.attempts

    # Queries

    def find_running_pids(self, target: DeploymentTarget, artifact_name: str) -> list[int]:
        """Locate the running instance: port owner, then PID file, then name match."""
        result = self._exec(target, commands.pids_on_port(target.listen_port), check=False)
        if result.exit_code in (0, 1):
            pids = _parse_pids(result.stdout)
        else:
            # lsof missing or not permitted; ask ss for the socket owner instead
            logger.warning(
                "Port owner lookup failed, trying ss",
                host=target.host,
                exit_code=result.exit_code,
                error=result.stderr.strip(),
            )
            result = self._exec(target, commands.port_owners(target.listen_port), check=False)
            pids = [int(pid) for pid in dict.fromkeys(re.findall(r"pid=(\d+)", result.stdout))]
        if pids:
            return pids

        if self._exists(target, target.pid_file):
            result = self._exec(target, commands.read_pid_file(target.pid_file), check=False)
            pids = self._alive(target, _parse_pids(result.stdout))
            if pids:
                return pids

        if self._policy.match_process_name:
            result = self._exec(target, commands.pids_by_name(artifact_name), check=False)
            return _parse_pids(result.stdout)

        return []

    def is_listening(self, target: DeploymentTarget) -> bool:
        result = self._exec(target, commands.port_listening(target.listen_port), check=False)
        return any(f":{target.listen_port}" in line for line in result.lines)

    def tail_log(self, target: DeploymentTarget, lines: int) -> list[str]:
        """Last ``lines`` lines of the application log; empty if unreadable."""
        result = self._exec(target, commands.tail_file(target.log_file, lines), check=False)
        if not result.ok:
            return []
        return result.stdout.splitlines()[-lines:]

    def list_backups(self, target: DeploymentTarget, artifact_name: str) -> list[str]:
        """Backup paths for ``artifact_name``, newest first."""
        result = self._exec(target, commands.list_dir(target.backup_dir), check=False)
        if not result.ok:
            return []
        pattern = re.compile(rf"^{re.escape(artifact_name)}\.\d{{14}}$")
        names = sorted((n for n in result.lines if pattern.match(n)), reverse=True)
        return [f"{target.backup_dir}/{n}" for n in names]

    def prune_backups(self, target: DeploymentTarget, artifact_name: str, keep: int) -> list[str]:
        """Delete all but the newest ``keep`` backups.

        Returns:
            Paths that were removed
        """
        stale = self.list_backups(target, artifact_name)[keep:]
        if stale:
            self._exec(target, commands.remove_files(*stale))
            logger.info("Pruned old backups", host=target.host, count=len(stale))
        return stale

    # Helpers

    def _exec(self, target: DeploymentTarget, command: str, check: bool = True) -> CommandResult:
        return self._executor.execute(
            target, command, check=check, timeout=self._policy.command_timeout
        )

    def _exists(self, target: DeploymentTarget, path: str) -> bool:
        return self._exec(target, commands.file_exists(path), check=False).ok

    def _ensure_port_free(self, target: DeploymentTarget) -> None:
        """Raise if something still listens on the port the new process needs."""
        if self.is_listening(target):
            raise DeploymentError(
                f"Port {target.listen_port} on {target.host} is still in use by a process "
                "that could not be identified or stopped",
                stage="stop_old_process",
            )

    def _alive(self, target: DeploymentTarget, pids: list[int]) -> list[int]:
        return [
            pid
            for pid in pids
            if self._exec(target, commands.process_alive(pid), check=False).ok
        ]

    def _event(self, run: DeploymentRun, event_type: str, message: str, details: dict | None = None) -> None:
        run.add_event(event_type, message, details, timestamp=self._clock())


def _parse_pids(output: str) -> list[int]:
    pids: list[int] = []
    for token in output.split():
        if token.isdigit() and int(token) not in pids:
            pids.append(int(token))
    return pids
