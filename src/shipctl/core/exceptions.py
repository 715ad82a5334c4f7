"""Custom exceptions for shipctl."""

from typing import Any


class ShipCtlError(Exception):
    """Base exception for all shipctl errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ConfigError(ShipCtlError):
    """Configuration-related errors."""

    pass


class ValidationError(ShipCtlError):
    """Input validation errors."""

    pass


class RemoteConnectionError(ShipCtlError):
    """SSH channel could not be established (unreachable, auth, host key)."""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.host = host


class RemoteCommandError(ShipCtlError):
    """Remote command exited non-zero where success was required."""

    def __init__(
        self,
        message: str,
        command: str | None = None,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class CommandTimeout(ShipCtlError):
    """Remote command exceeded its timeout."""

    def __init__(
        self,
        message: str,
        timeout_seconds: float | None = None,
        command: str | None = None,
    ):
        super().__init__(message)
        self.timeout_seconds = timeout_seconds
        self.command = command


class TransferError(ShipCtlError):
    """Artifact upload errors."""

    def __init__(
        self,
        message: str,
        remote_path: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.remote_path = remote_path


class DeploymentError(ShipCtlError):
    """Deployment orchestration errors."""

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.stage = stage


class VerificationTimeout(DeploymentError):
    """The new process never reached the listening state."""

    def __init__(
        self,
        message: str,
        attempts: int,
        log_tail: list[str] | None = None,
    ):
        self.attempts = attempts
        self.log_tail = log_tail or []
        super().__init__(
            message,
            stage="verify_listening",
            details={"log_tail": "\n".join(self.log_tail)} if self.log_tail else None,
        )
