"""Installation conventions and the pipeline that runs them."""

from .base import InstallConvention, RollbackConvention
from .extract import ContributeVariablesConvention, ExtractPackageToStagingDirectoryConvention
from .processor import ConventionProcessor, run

__all__ = [
    "InstallConvention",
    "RollbackConvention",
    "ContributeVariablesConvention",
    "ExtractPackageToStagingDirectoryConvention",
    "ConventionProcessor",
    "run",
]
