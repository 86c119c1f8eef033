"""Process execution and the service message protocol.

- CommandLineRunner: spawns a tool and streams its combined output
- SplitCommandOutput: routes each output line to the console or the message channel
- ServiceMessageCommandOutput: applies decoded messages to deployment variables
- HttpMessageForwarder / StdoutMessageForwarder: pass messages on to the server
"""

from .command_output import (
    CaptureCommandOutput,
    CommandOutput,
    ConsoleCommandOutput,
    ServiceMessageCommandOutput,
    SplitCommandOutput,
)
from .forwarder import HttpMessageForwarder, QueuedMessageForwarder, StdoutMessageForwarder
from .runner import CommandLineInvocation, CommandLineRunner, CommandResult
from .service_messages import (
    ServiceMessage,
    ServiceMessageNames,
    format_service_message,
    parse_service_message,
    set_output_variable,
    write_service_message,
)

__all__ = [
    "CaptureCommandOutput",
    "CommandOutput",
    "ConsoleCommandOutput",
    "ServiceMessageCommandOutput",
    "SplitCommandOutput",
    "HttpMessageForwarder",
    "QueuedMessageForwarder",
    "StdoutMessageForwarder",
    "CommandLineInvocation",
    "CommandLineRunner",
    "CommandResult",
    "ServiceMessage",
    "ServiceMessageNames",
    "format_service_message",
    "parse_service_message",
    "set_output_variable",
    "write_service_message",
]
