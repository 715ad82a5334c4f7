"""Deployment data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any
import uuid

from shipctl.core.exceptions import ValidationError


class DeploymentStage(str, Enum):
    """Stages of a deployment run, in order."""

    IDLE = "idle"
    DIRECTORIES_ENSURED = "directories_ensured"
    OLD_PROCESS_STOPPED = "old_process_stopped"
    BACKED_UP = "backed_up"
    ARTIFACT_UPLOADED = "artifact_uploaded"
    PROCESS_STARTED = "process_started"
    VERIFIED = "verified"
    FAILED = "failed"


class DeploymentOutcome(str, Enum):
    """Overall outcome of a deployment run."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class SSHAuth:
    """Resolved SSH credentials. Never rendered in output."""

    key_file: str | None = None
    password: str | None = None
    passphrase: str | None = None

    def __repr__(self) -> str:
        return f"SSHAuth(key_file={self.key_file!r}, password={'***' if self.password else None})"


@dataclass(frozen=True)
class DeploymentTarget:
    """Remote host and filesystem layout for one deployment."""

    host: str
    user: str
    deploy_dir: str
    backup_dir: str
    log_file: str
    pid_file: str
    listen_port: int
    port: int = 22
    auth: SSHAuth = field(default_factory=SSHAuth)
    strict_host_key_checking: bool = True
    connect_timeout: int = 10

    @property
    def user_host(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"

    def remote_path(self, file_name: str) -> str:
        """Path of a file inside the deploy directory."""
        return f"{self.deploy_dir}/{file_name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "deploy_dir": self.deploy_dir,
            "backup_dir": self.backup_dir,
            "log_file": self.log_file,
            "pid_file": self.pid_file,
            "listen_port": self.listen_port,
        }


@dataclass(frozen=True)
class Artifact:
    """A locally built, deployable application file."""

    local_path: str
    remote_file_name: str

    @classmethod
    def from_path(cls, path: str | Path, remote_file_name: str | None = None) -> "Artifact":
        """Create an artifact from a local file.

        Raises:
            ValidationError: If the file does not exist or the name is unusable
        """
        local = Path(path)
        if not local.is_file():
            raise ValidationError(f"Artifact not found: {path}")

        name = remote_file_name or local.name
        if "/" in name or name in (".", ".."):
            raise ValidationError(f"Invalid remote file name: {name}")

        return cls(local_path=str(local), remote_file_name=name)

    @classmethod
    def remote(cls, name: str) -> "Artifact":
        """Reference an already deployed artifact by its remote file name."""
        if not name or "/" in name or name in (".", ".."):
            raise ValidationError(f"Invalid remote file name: {name}")
        return cls(local_path="", remote_file_name=name)


@dataclass(frozen=True)
class RuntimeOptions:
    """Fixed JVM launch configuration of the started process."""

    java_bin: str = "java"
    min_heap: str = "512m"
    max_heap: str = "1024m"
    gc: str = "G1GC"
    active_profile: str | None = "prod"
    jvm_options: tuple[str, ...] = ()
    app_args: tuple[str, ...] = ()


@dataclass(frozen=True)
class DeployPolicy:
    """Timeouts, retry budgets and retention for a run."""

    runtime: RuntimeOptions = field(default_factory=RuntimeOptions)
    grace_period: int = 10
    match_process_name: bool = False
    verify_attempts: int = 30
    verify_interval: float = 1.0
    log_tail_lines: int = 20
    keep_backups: int = 0
    command_timeout: float | None = 60


@dataclass
class DeploymentEvent:
    """Deployment event for audit trail."""

    timestamp: datetime
    event_type: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class DeploymentRun:
    """One invocation of the deployment workflow. Never persisted."""

    target: DeploymentTarget
    artifact: Artifact
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    started_at: datetime | None = None
    completed_at: datetime | None = None
    stage: DeploymentStage = DeploymentStage.IDLE
    outcome: DeploymentOutcome = DeploymentOutcome.PENDING
    failure_kind: str | None = None
    failure_reason: str | None = None
    failed_step: str | None = None
    dry_run: bool = False

    # Stage results
    stopped_pids: list[int] = field(default_factory=list)
    backup_path: str | None = None
    rotated_log_path: str | None = None
    remote_artifact_path: str | None = None
    verify_attempts: int = 0
    log_tail: list[str] = field(default_factory=list)

    events: list[DeploymentEvent] = field(default_factory=list)

    def add_event(
        self,
        event_type: str,
        message: str,
        details: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> None:
        """Add an event to the run history."""
        self.events.append(
            DeploymentEvent(
                timestamp=timestamp or datetime.now(),
                event_type=event_type,
                message=message,
                details=details or {},
            )
        )

    @property
    def succeeded(self) -> bool:
        return self.outcome == DeploymentOutcome.SUCCEEDED

    @property
    def duration_seconds(self) -> float | None:
        """Get run duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "host": self.target.host,
            "artifact": self.artifact.remote_file_name,
            "listen_port": self.target.listen_port,
            "stage": self.stage.value,
            "outcome": self.outcome.value,
            "failure_kind": self.failure_kind,
            "failure_reason": self.failure_reason,
            "failed_step": self.failed_step,
            "dry_run": self.dry_run,
            "stopped_pids": self.stopped_pids,
            "backup_path": self.backup_path,
            "rotated_log_path": self.rotated_log_path,
            "remote_artifact_path": self.remote_artifact_path,
            "verify_attempts": self.verify_attempts,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "log_tail": self.log_tail,
            "events": [e.to_dict() for e in self.events],
        }
