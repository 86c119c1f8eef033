"""Select an extractor for a package by its kind."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple

from ..errors import UnsupportedPackageKindException
from ..processes import (
    CommandLineRunner,
    ConsoleCommandOutput,
    ServiceMessageCommandOutput,
    SplitCommandOutput,
)
from ..processes.command_output import MessageForwarder
from ..utils.logging import get_logger
from ..variables import SpecialVariables, VariableDictionary
from .extractors import (
    JarExtractor,
    NupkgExtractor,
    PackageExtractor,
    TarPackageExtractor,
    ZipPackageExtractor,
)

if TYPE_CHECKING:
    from ..config import AppConfig

logger = get_logger(__name__)


def normalize_kind(kind: str) -> str:
    """Turn ``zip``, ``.ZIP`` or ``app.zip`` style discriminators into ``.zip``."""
    kind = kind.strip().lower()
    if kind and not kind.startswith("."):
        return "." + kind
    return kind


class GenericPackageExtractor:
    """
    Read-only table of extractors in priority order.

    ``get_extractor`` returns the first extractor that handles the kind and
    never falls back to a default.
    """

    def __init__(self, extractors: Iterable[PackageExtractor]) -> None:
        self._extractors: Tuple[PackageExtractor, ...] = tuple(extractors)

    @property
    def extractors(self) -> Tuple[PackageExtractor, ...]:
        return self._extractors

    @property
    def supported_kinds(self) -> List[str]:
        kinds: List[str] = []
        for extractor in self._extractors:
            kinds.extend(k for k in extractor.extensions if k not in kinds)
        return kinds

    def get_extractor(self, kind: str) -> PackageExtractor:
        normalized = normalize_kind(kind)
        for extractor in self._extractors:
            if extractor.handles(normalized):
                return extractor
        # 文件名：按最长扩展名匹配（如 .tar.gz 优先于 .gz）
        for extension in sorted(self.supported_kinds, key=len, reverse=True):
            if normalized.endswith(extension):
                return self.get_extractor(extension)
        raise UnsupportedPackageKindException(kind, self.supported_kinds)

    def extract(self, package_path: str, directory: str) -> int:
        extractor = self.get_extractor(Path(package_path).name)
        logger.info(
            "Extracting package %s to %s using %s",
            package_path,
            directory,
            type(extractor).__name__,
        )
        count = extractor.extract(package_path, directory)
        logger.info("Extracted %d files", count)
        return count


def create_standard_extractor() -> GenericPackageExtractor:
    """In-process extractors only."""
    return GenericPackageExtractor(
        [
            NupkgExtractor(),
            ZipPackageExtractor(),
            TarPackageExtractor(),
        ]
    )


def create_java_extractor(
    variables: Optional[VariableDictionary] = None,
    config: Optional["AppConfig"] = None,
    forward: Optional[MessageForwarder] = None,
    cancellation: Optional[threading.Event] = None,
) -> GenericPackageExtractor:
    """
    Jar extractor wired through a split output.

    Tool output is echoed to the console while service messages it emits are
    applied to ``variables`` (a fresh dictionary when none is given) and
    handed to ``forward``.
    """
    variables = variables if variables is not None else VariableDictionary()
    output = SplitCommandOutput(
        ConsoleCommandOutput(),
        ServiceMessageCommandOutput(variables, forward=forward),
    )
    java_home = variables.get(SpecialVariables.Package.JAVA_HOME)
    jar_binary = None
    timeout = None
    poll_interval = 0.1
    if config is not None:
        java_home = java_home or config.packages.java_home
        jar_binary = config.packages.jar_binary
        timeout = config.process.timeout
        poll_interval = config.process.poll_interval

    return GenericPackageExtractor(
        [
            JarExtractor(
                CommandLineRunner(output, poll_interval=poll_interval),
                java_home=java_home,
                jar_binary=jar_binary,
                timeout=timeout,
                cancellation=cancellation,
            )
        ]
    )


def create_extractor(
    variables: Optional[VariableDictionary] = None,
    config: Optional["AppConfig"] = None,
    forward: Optional[MessageForwarder] = None,
    cancellation: Optional[threading.Event] = None,
) -> GenericPackageExtractor:
    """Every extractor: in-process formats first, then the jar tool."""
    java = create_java_extractor(variables, config, forward, cancellation)
    return GenericPackageExtractor([*create_standard_extractor().extractors, *java.extractors])
