"""Core utilities and shared components for shipctl."""

# Note: Import context lazily to avoid circular imports
# Use: from shipctl.core.context import ShipCtlContext, pass_context
from shipctl.core.exceptions import (
    ShipCtlError,
    ConfigError,
    ValidationError,
    RemoteConnectionError,
    RemoteCommandError,
    CommandTimeout,
    TransferError,
    DeploymentError,
    VerificationTimeout,
)
from shipctl.core.output import OutputFormatter

__all__ = [
    "ShipCtlError",
    "ConfigError",
    "ValidationError",
    "RemoteConnectionError",
    "RemoteCommandError",
    "CommandTimeout",
    "TransferError",
    "DeploymentError",
    "VerificationTimeout",
    "OutputFormatter",
]
