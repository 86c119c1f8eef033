"""Runs installation conventions in order against one deployment."""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from ..deployment import RunningDeployment
from ..errors import DeploymentCancelledException
from ..utils.logging import get_logger
from .base import InstallConvention, RollbackConvention

logger = get_logger(__name__)


class ConventionProcessor:
    """
    Executes conventions strictly in list order.

    The first unrecovered failure is recorded on the deployment (see
    :meth:`RunningDeployment.error`) and re-raised; later conventions never
    run. Installed conventions are not undone. If rollback conventions were
    scheduled they run after a failure, and their own failures are logged
    without replacing the original error.
    """

    def __init__(
        self,
        deployment: RunningDeployment,
        conventions: Sequence[InstallConvention],
        rollback_conventions: Optional[Iterable[RollbackConvention]] = None,
    ) -> None:
        self.deployment = deployment
        self.conventions: List[InstallConvention] = list(conventions)
        self.rollback_conventions: List[RollbackConvention] = list(rollback_conventions or [])

    def run(self) -> None:
        total = len(self.conventions)
        try:
            for index, convention in enumerate(self.conventions, 1):
                if self.deployment.is_cancelled:
                    raise DeploymentCancelledException(
                        f"Deployment was cancelled before {convention.name} could run"
                    )
                logger.debug("Convention %d/%d: %s", index, total, convention.name)
                convention.install(self.deployment)
        except Exception as exc:
            self.deployment.error(exc)
            logger.error("Deployment failed: %s", exc)
            self._run_rollback_conventions()
            raise

    def _run_rollback_conventions(self) -> None:
        for convention in self.rollback_conventions:
            logger.info("Running rollback convention %s", convention.name)
            try:
                convention.rollback(self.deployment)
            except Exception as exc:
                logger.error("Rollback convention %s failed: %s", convention.name, exc)


def run(
    deployment: RunningDeployment,
    conventions: Sequence[InstallConvention],
    rollback_conventions: Optional[Iterable[RollbackConvention]] = None,
) -> None:
    """Run ``conventions`` against ``deployment``."""
    ConventionProcessor(deployment, conventions, rollback_conventions).run()
