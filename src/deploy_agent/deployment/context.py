"""The running deployment shared by every convention of one run."""

from __future__ import annotations

import threading
import traceback
from enum import Enum
from typing import Optional

from ..variables import SpecialVariables, VariableDictionary


class DeploymentWorkingDirectory(Enum):
    """Which directory conventions should treat as current."""
    STAGING = "staging"
    CUSTOM = "custom"


def get_base_exception(exc: BaseException) -> BaseException:
    """Follow the explicit ``__cause__`` chain to the innermost exception."""
    seen = set()
    while exc.__cause__ is not None and id(exc) not in seen:
        seen.add(id(exc))
        exc = exc.__cause__
    return exc


class RunningDeployment:
    """
    Deployment context passed by reference through the convention pipeline.

    Directory paths live in the variable dictionary so that values set by one
    convention (or by a subprocess service message) are visible to the next.
    """

    def __init__(
        self,
        package_file_path: Optional[str],
        variables: VariableDictionary,
        cancellation: Optional[threading.Event] = None,
    ) -> None:
        self._package_file_path = package_file_path
        self._variables = variables
        self.cancellation = cancellation or threading.Event()
        self.current_directory_provider = DeploymentWorkingDirectory.STAGING

    @property
    def package_file_path(self) -> Optional[str]:
        return self._package_file_path

    @property
    def variables(self) -> VariableDictionary:
        return self._variables

    @property
    def staging_directory(self) -> Optional[str]:
        """The directory the package was extracted to."""
        return self._variables.get(SpecialVariables.ORIGINAL_PACKAGE_DIRECTORY_PATH)

    @staging_directory.setter
    def staging_directory(self, value: str) -> None:
        self._variables.set(SpecialVariables.ORIGINAL_PACKAGE_DIRECTORY_PATH, value)

    @property
    def custom_directory(self) -> Optional[str]:
        """The user selected installation directory, or the staging directory when none was chosen."""
        custom = self._variables.get(SpecialVariables.Package.CUSTOM_INSTALLATION_DIRECTORY)
        if custom is None or not custom.strip():
            return self.staging_directory
        return custom

    @property
    def current_directory(self) -> Optional[str]:
        if self.current_directory_provider == DeploymentWorkingDirectory.STAGING:
            return self.staging_directory
        return self.custom_directory

    @property
    def last_error(self) -> Optional[str]:
        return self._variables.get(SpecialVariables.LAST_ERROR_MESSAGE)

    @property
    def is_cancelled(self) -> bool:
        return self.cancellation.is_set()

    def error(self, exc: BaseException) -> None:
        """Record ``exc`` as the last error: its message, and the trace of its base exception."""
        base = get_base_exception(exc)
        detail = "".join(traceback.format_exception(type(base), base, base.__traceback__))
        self._variables.set(SpecialVariables.LAST_ERROR, detail.rstrip())
        self._variables.set(SpecialVariables.LAST_ERROR_MESSAGE, str(exc))
