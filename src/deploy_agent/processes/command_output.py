"""Sinks for subprocess output and the splitter that demultiplexes them."""

from __future__ import annotations

import logging
import sys
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, TextIO

from ..variables import VariableDictionary
from .service_messages import ServiceMessage, ServiceMessageNames, parse_service_message

logger = logging.getLogger(__name__)

MessageForwarder = Callable[[ServiceMessage], None]


class CommandOutput(ABC):
    """Receives the output of a spawned process, one line at a time."""

    @abstractmethod
    def write_info(self, line: str) -> None:
        ...

    @abstractmethod
    def write_error(self, line: str) -> None:
        ...

    @abstractmethod
    def write_service_message(self, message: ServiceMessage) -> None:
        ...


class ConsoleCommandOutput(CommandOutput):
    """Echo plain lines to the console; service messages are not console text."""

    def __init__(self, stdout: Optional[TextIO] = None, stderr: Optional[TextIO] = None) -> None:
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr

    def write_info(self, line: str) -> None:
        self.stdout.write(line + "\n")
        self.stdout.flush()

    def write_error(self, line: str) -> None:
        self.stderr.write(line + "\n")
        self.stderr.flush()

    def write_service_message(self, message: ServiceMessage) -> None:
        pass


class ServiceMessageCommandOutput(CommandOutput):
    """
    Apply service messages to the deployment variables.

    ``setVariable`` writes the named variable; every message is then handed
    to the optional forwarder (e.g. :class:`HttpMessageForwarder`).
    """

    def __init__(self, variables: VariableDictionary, forward: Optional[MessageForwarder] = None) -> None:
        self.variables = variables
        self.forward = forward

    def write_info(self, line: str) -> None:
        pass

    def write_error(self, line: str) -> None:
        pass

    def write_service_message(self, message: ServiceMessage) -> None:
        if message.name == ServiceMessageNames.SET_VARIABLE:
            name = message.get("name")
            if name:
                self.variables.set(name, message.get("value", ""))
                logger.debug("Variable %s set by process output", name)
            else:
                logger.warning("Ignoring setVariable message without a name")
        elif message.name == ServiceMessageNames.PROGRESS:
            logger.info(
                "Progress %s%% %s",
                message.get("percentage", "?"),
                message.get("message", ""),
            )
        else:
            logger.debug("Unhandled service message '%s'", message.name)

        if self.forward is not None:
            self.forward(message)


class SplitCommandOutput(CommandOutput):
    """
    Route each line to exactly one of two sinks.

    Lines that decode as service messages go to ``messages`` only; all other
    lines go to ``console`` verbatim. Raw chunks passed to :meth:`feed` are
    buffered until newline terminated, so partial writes are never split or
    merged. Call :meth:`flush` at end of stream to deliver a trailing
    unterminated line.
    """

    def __init__(self, console: CommandOutput, messages: CommandOutput) -> None:
        self.console = console
        self.messages = messages
        self._buffer = ""
        self._lock = threading.Lock()

    def feed(self, chunk: str) -> None:
        with self._lock:
            self._buffer += chunk
            *lines, self._buffer = self._buffer.split("\n")
            for line in lines:
                self.write_info(line.rstrip("\r"))

    def flush(self) -> None:
        with self._lock:
            remainder, self._buffer = self._buffer, ""
            if remainder:
                self.write_info(remainder.rstrip("\r"))

    def write_info(self, line: str) -> None:
        message = parse_service_message(line)
        if message is not None:
            self.messages.write_service_message(message)
        else:
            self.console.write_info(line)

    def write_error(self, line: str) -> None:
        message = parse_service_message(line)
        if message is not None:
            self.messages.write_service_message(message)
        else:
            self.console.write_error(line)

    def write_service_message(self, message: ServiceMessage) -> None:
        self.messages.write_service_message(message)


class CaptureCommandOutput(CommandOutput):
    """Keep everything in memory; used by tests and short tool invocations."""

    def __init__(self) -> None:
        self.infos: List[str] = []
        self.errors: List[str] = []
        self.service_messages: List[ServiceMessage] = []

    def write_info(self, line: str) -> None:
        self.infos.append(line)

    def write_error(self, line: str) -> None:
        self.errors.append(line)

    def write_service_message(self, message: ServiceMessage) -> None:
        self.service_messages.append(message)
