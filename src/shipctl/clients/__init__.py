"""Clients for the deployment target host."""

from shipctl.clients.base import ArtifactTransfer, CommandExecutor, CommandResult
from shipctl.clients.ssh import SSHExecutor
from shipctl.clients.transfer import SFTPTransfer

__all__ = [
    "ArtifactTransfer",
    "CommandExecutor",
    "CommandResult",
    "SFTPTransfer",
    "SSHExecutor",
]
