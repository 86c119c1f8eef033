"""Package extractors.

In-process extractors unpack with the standard library archive modules. The
jar extractor delegates to the JDK ``jar`` tool through a CommandLineRunner.
"""

from __future__ import annotations

import os
import tarfile
import threading
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import unquote

from ..errors import ExtractionException
from ..processes import CommandLineInvocation, CommandLineRunner
from ..utils.logging import get_logger

logger = get_logger(__name__)


def _safe_target(directory: Path, member: str) -> Path:
    target = (directory / member).resolve()
    root = directory.resolve()
    if target != root and root not in target.parents:
        raise ExtractionException(f"Archive entry '{member}' would be extracted outside {directory}")
    return target


class PackageExtractor(ABC):
    """Unpacks one family of archive formats."""

    extensions: Tuple[str, ...] = ()

    def handles(self, kind: str) -> bool:
        return kind.lower() in self.extensions

    @abstractmethod
    def extract(self, package_path: str, directory: str) -> int:
        """Extract ``package_path`` into ``directory``; returns the number of files written."""


class ZipPackageExtractor(PackageExtractor):
    extensions = (".zip",)

    def extract(self, package_path: str, directory: str) -> int:
        destination = Path(directory)
        destination.mkdir(parents=True, exist_ok=True)
        count = 0
        try:
            with zipfile.ZipFile(package_path) as archive:
                for info in archive.infolist():
                    if self._skip(info.filename):
                        continue
                    name = self._target_name(info.filename)
                    target = _safe_target(destination, name)
                    if info.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with archive.open(info) as source, target.open("wb") as sink:
                        while True:
                            block = source.read(64 * 1024)
                            if not block:
                                break
                            sink.write(block)
                    count += 1
        except (zipfile.BadZipFile, OSError) as exc:
            raise ExtractionException(f"Unable to extract {package_path}: {exc}") from exc
        return count

    def _skip(self, name: str) -> bool:
        return False

    def _target_name(self, name: str) -> str:
        return name


class NupkgExtractor(ZipPackageExtractor):
    """NuGet packages are zips carrying OPC metadata parts that are not deployed."""

    extensions = (".nupkg",)

    _METADATA_PREFIXES = ("_rels/", "package/services/metadata/")
    _METADATA_FILES = ("[content_types].xml",)

    def _skip(self, name: str) -> bool:
        lowered = name.lower()
        return lowered in self._METADATA_FILES or lowered.startswith(self._METADATA_PREFIXES)

    def _target_name(self, name: str) -> str:
        return unquote(name)


class TarPackageExtractor(PackageExtractor):
    extensions = (".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tbz")

    def extract(self, package_path: str, directory: str) -> int:
        destination = Path(directory)
        destination.mkdir(parents=True, exist_ok=True)
        count = 0
        try:
            with tarfile.open(package_path, "r:*") as archive:
                for member in archive.getmembers():
                    target = _safe_target(destination, member.name)
                    if member.isdir():
                        target.mkdir(parents=True, exist_ok=True)
                        continue
                    if not member.isfile():
                        # 跳过链接和设备文件
                        logger.debug("Skipping non-regular entry %s", member.name)
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    source = archive.extractfile(member)
                    if source is None:
                        continue
                    with source, target.open("wb") as sink:
                        while True:
                            block = source.read(64 * 1024)
                            if not block:
                                break
                            sink.write(block)
                    count += 1
        except (tarfile.TarError, OSError) as exc:
            raise ExtractionException(f"Unable to extract {package_path}: {exc}") from exc
        return count


class JarExtractor(PackageExtractor):
    """Extract Java archives with the JDK ``jar`` tool."""

    extensions = (".jar", ".war", ".ear", ".rar")

    def __init__(
        self,
        runner: CommandLineRunner,
        java_home: Optional[str] = None,
        jar_binary: Optional[str] = None,
        timeout: Optional[float] = None,
        cancellation: Optional[threading.Event] = None,
    ) -> None:
        self.runner = runner
        self.jar_binary = jar_binary or self._find_jar(java_home)
        self.timeout = timeout
        self.cancellation = cancellation

    @staticmethod
    def _find_jar(java_home: Optional[str]) -> str:
        executable = "jar.exe" if os.name == "nt" else "jar"
        if java_home:
            return str(Path(java_home) / "bin" / executable)
        return executable

    def extract(self, package_path: str, directory: str) -> int:
        destination = Path(directory)
        destination.mkdir(parents=True, exist_ok=True)
        archive = str(Path(package_path).resolve())

        logger.info("Extracting %s with %s", package_path, self.jar_binary)
        result = self.runner.execute(
            CommandLineInvocation(
                executable=self.jar_binary,
                arguments=["xf", archive],
                working_directory=str(destination),
            ),
            timeout=self.timeout,
            cancellation=self.cancellation,
        )
        if not result.ok:
            raise ExtractionException(
                f"Failed to extract {package_path} with '{result.command}' "
                f"(exit code {result.exit_code}"
                f"{', timed out' if result.timed_out else ''}"
                f"{', cancelled' if result.cancelled else ''})"
            )
        return sum(len(files) for _, _, files in os.walk(destination))
