"""
CloudFormation client helpers.

Every helper takes a ``client_factory``: a zero-argument callable returning a
boto3 CloudFormation client. A stack that does not exist is reported as
``None``. Event lookups classify provider errors into :mod:`deploy_agent.errors`;
``describe_stack`` leaves that to the orchestrator's ``query_stack``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import (
    ErrorCode,
    PermissionException,
    UnknownException,
    format_coded_message,
)
from ..utils.logging import get_logger

if TYPE_CHECKING:
    from ..config import AwsConfig

logger = get_logger(__name__)

ClientFactory = Callable[[], Any]

ACCESS_DENIED_CODES = ("AccessDenied", "AccessDeniedException")
STACK_RESOURCE_TYPE = "AWS::CloudFormation::Stack"


@dataclass(frozen=True)
class StackArn:
    """Name or ARN identifying a stack."""
    value: str

    def __post_init__(self) -> None:
        if not self.value or not self.value.strip():
            raise ValueError("Stack name or ARN must not be empty")

    @property
    def name(self) -> str:
        # arn:aws:cloudformation:region:account:stack/<name>/<id>
        if self.value.startswith("arn:"):
            parts = self.value.split("/")
            if len(parts) >= 2:
                return parts[1]
        return self.value

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class StackEvent:
    """One entry of a stack's event history."""
    event_id: str
    stack_id: str
    stack_name: str
    logical_resource_id: str
    resource_type: str
    status: str
    reason: Optional[str] = None
    timestamp: Optional[datetime] = None
    physical_resource_id: Optional[str] = None

    @classmethod
    def from_response(cls, payload: Dict[str, Any]) -> "StackEvent":
        return cls(
            event_id=payload.get("EventId", ""),
            stack_id=payload.get("StackId", ""),
            stack_name=payload.get("StackName", ""),
            logical_resource_id=payload.get("LogicalResourceId", ""),
            resource_type=payload.get("ResourceType", ""),
            status=payload.get("ResourceStatus", ""),
            reason=payload.get("ResourceStatusReason"),
            timestamp=payload.get("Timestamp"),
            physical_resource_id=payload.get("PhysicalResourceId"),
        )

    def indicates_failure(self) -> bool:
        """Rollback-class or failed status."""
        return "ROLLBACK" in self.status or self.status.endswith("_FAILED")

    def is_in_progress(self) -> bool:
        return self.status.endswith("_IN_PROGRESS")

    def is_stack_event(self) -> bool:
        """True for events about the stack itself rather than one of its resources."""
        return (
            self.resource_type == STACK_RESOURCE_TYPE
            and self.logical_resource_id == self.stack_name
        )

    def is_terminal(self) -> bool:
        return self.is_stack_event() and not self.is_in_progress()

    def starts_operation(self) -> bool:
        """True for the stack-level event that opened a create, update or delete."""
        return (
            self.is_stack_event()
            and self.is_in_progress()
            and "ROLLBACK" not in self.status
            and "CLEANUP" not in self.status
        )

    def describe(self) -> str:
        text = f"{self.resource_type} {self.logical_resource_id} {self.status}"
        if self.reason:
            text += f": {self.reason}"
        return text


@dataclass(frozen=True)
class StackDescription:
    stack_id: str
    stack_name: str
    status: str
    status_reason: Optional[str] = None
    outputs: Dict[str, Optional[str]] = field(default_factory=dict)

    @classmethod
    def from_response(cls, payload: Dict[str, Any]) -> "StackDescription":
        outputs = {
            item["OutputKey"]: item.get("OutputValue")
            for item in payload.get("Outputs", []) or []
            if "OutputKey" in item
        }
        return cls(
            stack_id=payload.get("StackId", ""),
            stack_name=payload.get("StackName", ""),
            status=payload.get("StackStatus", ""),
            status_reason=payload.get("StackStatusReason"),
            outputs=outputs,
        )

    def is_in_progress(self) -> bool:
        return self.status.endswith("_IN_PROGRESS")


def create_client_factory(config: "AwsConfig") -> ClientFactory:
    """Build a factory for CloudFormation clients from configuration."""

    def create() -> Any:
        session = boto3.session.Session(
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            aws_session_token=config.session_token,
            region_name=config.region,
            profile_name=config.profile,
        )
        return session.client("cloudformation")

    return create


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def error_message(exc: Exception) -> str:
    if not isinstance(exc, ClientError):
        return str(exc)
    return exc.response.get("Error", {}).get("Message", str(exc))


def is_access_denied(exc: Exception) -> bool:
    return isinstance(exc, ClientError) and error_code(exc) in ACCESS_DENIED_CODES


def is_stack_missing(exc: Exception) -> bool:
    return isinstance(exc, ClientError) and error_code(exc) == "ValidationError" and "does not exist" in error_message(exc)


def is_no_updates(exc: Exception) -> bool:
    return isinstance(exc, ClientError) and error_code(exc) == "ValidationError" and "No updates are to be performed" in error_message(exc)


def describe_stack(client_factory: ClientFactory, stack: StackArn) -> Optional[StackDescription]:
    """Describe ``stack``; ``None`` when it does not exist. Other provider errors propagate raw."""
    try:
        response = client_factory().describe_stacks(StackName=stack.value)
    except ClientError as exc:
        if is_stack_missing(exc):
            return None
        raise
    stacks = response.get("Stacks", [])
    return StackDescription.from_response(stacks[0]) if stacks else None


def stack_exists(client_factory: ClientFactory, stack: StackArn) -> bool:
    description = describe_stack(client_factory, stack)
    return description is not None and description.status != "DELETE_COMPLETE"


def get_last_stack_event(
    client_factory: ClientFactory,
    stack: StackArn,
    predicate: Optional[Callable[[StackEvent], bool]] = None,
    stop_at: Optional[Callable[[StackEvent], bool]] = None,
) -> Optional[StackEvent]:
    """
    Newest event of ``stack`` matching ``predicate``.

    Events are read newest first. When ``stop_at`` is given the search ends
    at the first event it accepts, so older history is never considered.
    Returns ``None`` when the stack does not exist or no event matches.
    """
    try:
        paginator = client_factory().get_paginator("describe_stack_events")
        for page in paginator.paginate(StackName=stack.value):
            for payload in page.get("StackEvents", []):
                event = StackEvent.from_response(payload)
                if predicate is None or predicate(event):
                    return event
                if stop_at is not None and stop_at(event):
                    return None
    except (ClientError, BotoCoreError) as exc:
        if is_stack_missing(exc):
            return None
        if is_access_denied(exc):
            raise PermissionException(
                format_coded_message(
                    ErrorCode.EVENTS_PERMISSION,
                    "The AWS account used to perform the operation does not have the required "
                    "permissions to query the CloudFormation stack events.",
                    error_message(exc),
                ),
                ErrorCode.EVENTS_PERMISSION,
            ) from exc
        raise UnknownException(
            format_coded_message(
                ErrorCode.EVENTS_UNKNOWN,
                "An unrecognised exception was thrown while querying the CloudFormation stack events.",
                error_message(exc),
            ),
            ErrorCode.EVENTS_UNKNOWN,
        ) from exc
    return None
