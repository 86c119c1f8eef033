"""Capability interfaces for installation steps."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..deployment import RunningDeployment


class InstallConvention(ABC):
    """One unit of deployment work, run in pipeline order."""

    @abstractmethod
    def install(self, deployment: "RunningDeployment") -> None:
        ...

    @property
    def name(self) -> str:
        return type(self).__name__


class RollbackConvention(ABC):
    """Explicitly scheduled recovery work that runs only after a failed install."""

    @abstractmethod
    def rollback(self, deployment: "RunningDeployment") -> None:
        ...

    @property
    def name(self) -> str:
        return type(self).__name__
