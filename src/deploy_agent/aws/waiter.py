"""Poll a stack until its current operation finishes."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from ..errors import (
    DeploymentCancelledException,
    ErrorCode,
    StackTimeoutException,
    format_coded_message,
)
from ..utils.logging import get_logger
from .cloudformation import ClientFactory, StackArn, StackEvent, get_last_stack_event

logger = get_logger(__name__)

EventHandler = Callable[[Optional[StackEvent]], None]


def wait_for_stack_completion(
    client_factory: ClientFactory,
    stack: StackArn,
    handler: EventHandler,
    *,
    interval: float = 5.0,
    timeout: Optional[float] = None,
    cancellation: Optional[threading.Event] = None,
    event_filter: Optional[Callable[[StackEvent], bool]] = None,
    query: Optional[Callable[[], Optional[StackEvent]]] = None,
) -> Optional[StackEvent]:
    """
    Feed the newest stack-level event to ``handler`` on every tick.

    Stops when that event is no longer ``*_IN_PROGRESS`` or when no event is
    found, and returns the last event seen. ``handler`` may raise to abort
    the wait (see ``make_rollback_watcher``). ``query`` replaces the default
    lookup, which is wrapped by callers that want provider warnings logged.
    """
    event_filter = event_filter or (lambda event: event.is_stack_event())
    lookup = query or (lambda: get_last_stack_event(client_factory, stack, event_filter))
    cancellation = cancellation or threading.Event()
    deadline = time.monotonic() + timeout if timeout is not None else None

    while True:
        event = lookup()
        handler(event)
        if event is None or not event.is_in_progress():
            return event

        if deadline is not None and time.monotonic() >= deadline:
            raise StackTimeoutException(
                format_coded_message(
                    ErrorCode.WAIT_TIMEOUT,
                    f"Timed out after {timeout} seconds waiting for the CloudFormation stack "
                    f"{stack.name} to finish ({event.status}).",
                ),
                ErrorCode.WAIT_TIMEOUT,
            )

        # wait() 返回 True 表示被取消
        if cancellation.wait(interval):
            raise DeploymentCancelledException(
                f"Deployment was cancelled while waiting for the CloudFormation stack {stack.name}"
            )
