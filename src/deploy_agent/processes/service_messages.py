"""Service messages embedded in process output.

A service message occupies a whole line of output::

    ##octopus[setVariable name='QXdzT3V0cHV0cw==' value='dmFsdWU=']

Single-quoted attribute values are base64 encoded UTF-8. Double-quoted values
are plain text with pipe escaping (``||``, ``|'``, ``|n``, ``|r``, ``|[``,
``|]``). Anything that does not parse as a complete message is console text.
"""

from __future__ import annotations

import base64
import binascii
import re
import sys
from dataclasses import dataclass, field
from typing import Dict, Optional, TextIO

from ..variables import VariableDictionary

MESSAGE_PREFIX = "##octopus["

_MESSAGE_RE = re.compile(r"^##octopus\[(?P<name>[A-Za-z][\w.-]*)(?P<attributes>(?:\s+[^\s=\]]+=(?:'[^']*'|\"(?:[^\"|]|\|.)*\"))*)\s*\]$")
_ATTRIBUTE_RE = re.compile(r"([^\s=\]]+)=(?:'([^']*)'|\"((?:[^\"|]|\|.)*)\")")

_ESCAPES = {"|": "|", "'": "'", "n": "\n", "r": "\r", "[": "[", "]": "]"}


class ServiceMessageNames:
    SET_VARIABLE = "setVariable"
    PROGRESS = "progress"


@dataclass(frozen=True)
class ServiceMessage:
    """A decoded service message."""
    name: str
    attributes: Dict[str, str] = field(default_factory=dict)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.attributes.get(key, default)

    def to_dict(self) -> Dict[str, object]:
        return {"name": self.name, "attributes": dict(self.attributes)}


def _unescape(value: str) -> str:
    out = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "|" and i + 1 < len(value):
            out.append(_ESCAPES.get(value[i + 1], value[i + 1]))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _decode_base64(value: str) -> str:
    return base64.b64decode(value.encode("ascii"), validate=True).decode("utf-8")


def parse_service_message(line: str) -> Optional[ServiceMessage]:
    """Return the message carried by ``line``, or ``None`` for console text."""
    text = line.strip()
    if not text.startswith(MESSAGE_PREFIX):
        return None
    match = _MESSAGE_RE.match(text)
    if not match:
        return None

    attributes: Dict[str, str] = {}
    for attribute in _ATTRIBUTE_RE.finditer(match.group("attributes")):
        key, encoded, escaped = attribute.groups()
        if encoded is None:
            attributes[key] = _unescape(escaped)
            continue
        try:
            attributes[key] = _decode_base64(encoded)
        except (binascii.Error, UnicodeDecodeError, ValueError):
            # 非法 base64：整行按普通文本处理
            return None
    return ServiceMessage(name=match.group("name"), attributes=attributes)


def format_service_message(name: str, /, **attributes: Optional[str]) -> str:
    """Encode a message line with base64 attribute values."""
    parts = [name]
    for key, value in attributes.items():
        encoded = base64.b64encode(("" if value is None else value).encode("utf-8")).decode("ascii")
        parts.append(f"{key}='{encoded}'")
    return f"{MESSAGE_PREFIX}{' '.join(parts)}]"


def write_service_message(name: str, /, stream: Optional[TextIO] = None, **attributes: Optional[str]) -> None:
    """Emit a message on the agent's own stdout for the orchestrating server."""
    stream = stream or sys.stdout
    stream.write(format_service_message(name, **attributes) + "\n")
    stream.flush()


def set_output_variable(
    name: str,
    value: Optional[str],
    variables: VariableDictionary,
    stream: Optional[TextIO] = None,
) -> None:
    """Record ``name`` locally and announce it to the orchestrating server."""
    value = "" if value is None else value
    variables.set(name, value)
    write_service_message(ServiceMessageNames.SET_VARIABLE, stream, name=name, value=value)
