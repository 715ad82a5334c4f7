"""Deployment orchestration module."""

from shipctl.deploy.models import (
    Artifact,
    DeploymentOutcome,
    DeploymentRun,
    DeploymentStage,
    DeploymentTarget,
    DeployPolicy,
    RuntimeOptions,
    SSHAuth,
)
from shipctl.deploy.orchestrator import DeploymentOrchestrator

__all__ = [
    "Artifact",
    "DeploymentOrchestrator",
    "DeploymentOutcome",
    "DeploymentRun",
    "DeploymentStage",
    "DeploymentTarget",
    "DeployPolicy",
    "RuntimeOptions",
    "SSHAuth",
]
