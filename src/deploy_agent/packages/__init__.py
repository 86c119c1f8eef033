"""Package extraction."""

from .extractors import (
    JarExtractor,
    NupkgExtractor,
    PackageExtractor,
    TarPackageExtractor,
    ZipPackageExtractor,
)
from .generic import (
    GenericPackageExtractor,
    create_extractor,
    create_java_extractor,
    create_standard_extractor,
    normalize_kind,
)

__all__ = [
    "JarExtractor",
    "NupkgExtractor",
    "PackageExtractor",
    "TarPackageExtractor",
    "ZipPackageExtractor",
    "GenericPackageExtractor",
    "create_extractor",
    "create_java_extractor",
    "create_standard_extractor",
    "normalize_kind",
]
