"""AWS CloudFormation orchestration.

- cloudformation: client factory, stack/event models and lookups
- stack_events: event logging, warning ledger and rollback classification
- waiter: the poll loop that drives a stack operation to a terminal state
- conventions: the orchestrator base class and the deploy convention
"""

from .cloudformation import (
    ClientFactory,
    StackArn,
    StackDescription,
    StackEvent,
    create_client_factory,
    describe_stack,
    get_last_stack_event,
    stack_exists,
)
from .conventions import (
    CloudFormationInstallationConventionBase,
    DeployAwsCloudFormationConvention,
    web_exception_message,
)
from .stack_events import StackEventLogger, WarningLedger
from .waiter import wait_for_stack_completion

__all__ = [
    "ClientFactory",
    "StackArn",
    "StackDescription",
    "StackEvent",
    "create_client_factory",
    "describe_stack",
    "get_last_stack_event",
    "stack_exists",
    "CloudFormationInstallationConventionBase",
    "DeployAwsCloudFormationConvention",
    "web_exception_message",
    "StackEventLogger",
    "WarningLedger",
    "wait_for_stack_completion",
]
