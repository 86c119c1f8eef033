"""Deployment context."""

from .context import DeploymentWorkingDirectory, RunningDeployment, get_base_exception

__all__ = ["DeploymentWorkingDirectory", "RunningDeployment", "get_base_exception"]
