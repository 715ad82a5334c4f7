"""Interfaces for talking to the deployment target."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shipctl.deploy.models import Artifact, DeploymentTarget


@dataclass
class CommandResult:
    """Result of one remote command."""

    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def lines(self) -> list[str]:
        """Non-empty stdout lines."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]


class CommandExecutor(ABC):
    """Runs shell commands on a target host."""

    @abstractmethod
    def execute(
        self,
        target: DeploymentTarget,
        command: str,
        check: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run ``command`` on ``target``.

        Args:
            target: Host to run on
            command: Shell command line
            check: Raise RemoteCommandError on a non-zero exit
            timeout: Seconds before the command is abandoned

        Raises:
            RemoteConnectionError: If the channel cannot be established
            RemoteCommandError: If check is set and the exit code is non-zero
            CommandTimeout: If the command exceeds ``timeout``
        """

    def close(self) -> None:
        """Release any open connections."""


class ArtifactTransfer(ABC):
    """Copies a local artifact onto a target host."""

    @abstractmethod
    def upload(self, target: DeploymentTarget, artifact: Artifact) -> str:
        """Upload ``artifact`` into the target's deploy directory.

        Returns:
            Remote path of the uploaded file

        Raises:
            TransferError: On network, disk space or permission failures
        """
