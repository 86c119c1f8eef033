"""Package extraction and variable contribution conventions."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional, Union

from ..deployment import DeploymentWorkingDirectory, RunningDeployment
from ..errors import ExtractionException
from ..packages import GenericPackageExtractor
from ..utils.logging import get_logger
from .base import InstallConvention

logger = get_logger(__name__)


class ExtractPackageToStagingDirectoryConvention(InstallConvention):
    """Extract the deployment's package into a fresh directory under ``staging_root``."""

    def __init__(self, extractor: GenericPackageExtractor, staging_root: Union[str, Path]) -> None:
        self.extractor = extractor
        self.staging_root = Path(staging_root)

    def install(self, deployment: RunningDeployment) -> None:
        package = deployment.package_file_path
        if not package:
            logger.info("No package to extract")
            return
        if not Path(package).is_file():
            raise ExtractionException(f"Package file {package} could not be found")

        target = self._next_directory(Path(package))
        self.extractor.extract(package, str(target))

        deployment.staging_directory = str(target)
        deployment.current_directory_provider = DeploymentWorkingDirectory.STAGING
        logger.info("Package extracted to %s", target)

    def _next_directory(self, package: Path) -> Path:
        stem = package.name.split(".")[0] or "package"
        self.staging_root.mkdir(parents=True, exist_ok=True)
        candidate = self.staging_root / stem
        counter = 1
        while candidate.exists():
            candidate = self.staging_root / f"{stem}_{counter}"
            counter += 1
        return candidate


class ContributeVariablesConvention(InstallConvention):
    """Write fixed values into the deployment variables."""

    def __init__(self, values: Mapping[str, Optional[str]]) -> None:
        self.values = dict(values)

    def install(self, deployment: RunningDeployment) -> None:
        for name, value in self.values.items():
            deployment.variables.set(name, value)
        if self.values:
            logger.debug("Contributed %d variables", len(self.values))
