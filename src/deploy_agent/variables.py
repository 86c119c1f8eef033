"""Deployment variable dictionary and well-known variable names."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union


class SpecialVariables:
    """Variable names shared with the orchestrating server."""

    ORIGINAL_PACKAGE_DIRECTORY_PATH = "OctopusOriginalPackageDirectoryPath"
    LAST_ERROR = "OctopusLastError"
    LAST_ERROR_MESSAGE = "OctopusLastErrorMessage"

    class Action:
        NAME = "Octopus.Action.Name"

    class Package:
        CUSTOM_INSTALLATION_DIRECTORY = "Octopus.Action.Package.CustomInstallationDirectory"
        JAVA_HOME = "Octopus.Action.Java.JavaHome"

    class Aws:
        STACK_NAME = "Octopus.Action.Aws.CloudFormationStackName"
        TEMPLATE = "Octopus.Action.Aws.CloudFormationTemplate"
        TEMPLATE_PARAMETERS = "Octopus.Action.Aws.CloudFormationTemplateParameters"
        IAM_CAPABILITIES = "Octopus.Action.Aws.IamCapabilities"
        WAIT_FOR_COMPLETION = "Octopus.Action.Aws.WaitForCompletion"
        REGION = "Octopus.Action.Aws.Region"


class VariableDictionary:
    """
    Ordered string -> string mapping with case-insensitive lookup.

    The first write of a key fixes its position and display casing; later
    writes (under any casing) replace only the value. Writes are guarded by a
    lock so a reader never observes a half-applied update.
    """

    def __init__(self, values: Optional[Mapping[str, Optional[str]]] = None) -> None:
        self._lock = threading.RLock()
        # lower-cased key -> (original key, value)
        self._items: Dict[str, Tuple[str, str]] = {}
        for name, value in (values or {}).items():
            self.set(name, value)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "VariableDictionary":
        """Load variables from a flat JSON object."""
        with Path(path).open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        if not isinstance(payload, dict):
            raise ValueError(f"Variables file {path} must contain a JSON object")
        return cls({str(k): None if v is None else str(v) for k, v in payload.items()})

    def set(self, name: str, value: Optional[str]) -> None:
        if not name:
            raise ValueError("Variable name must not be empty")
        key = name.lower()
        with self._lock:
            original = self._items[key][0] if key in self._items else name
            self._items[key] = (original, "" if value is None else str(value))

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            entry = self._items.get(name.lower())
        return entry[1] if entry is not None else default

    def get_flag(self, name: str, default: bool = False) -> bool:
        value = self.get(name)
        if value is None or not value.strip():
            return default
        return value.strip().lower() in ("true", "1", "yes", "on")

    def get_strings(self, name: str) -> List[str]:
        """Read a JSON list or a comma separated value as a list of strings."""
        value = (self.get(name) or "").strip()
        if not value:
            return []
        if value.startswith("["):
            return [str(item) for item in json.loads(value)]
        return [part.strip() for part in value.split(",") if part.strip()]

    def remove(self, name: str) -> None:
        with self._lock:
            self._items.pop(name.lower(), None)

    def names(self) -> List[str]:
        with self._lock:
            return [original for original, _ in self._items.values()]

    def to_dict(self) -> Dict[str, str]:
        with self._lock:
            return {original: value for original, value in self._items.values()}

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(name)
        return value

    def __setitem__(self, name: str, value: Optional[str]) -> None:
        self.set(name, value)

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        with self._lock:
            return name.lower() in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __repr__(self) -> str:
        return f"VariableDictionary({len(self)} variables)"
