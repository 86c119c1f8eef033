"""Stack event logging, warning de-duplication and rollback classification."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterator, Optional, Set

from ..errors import ErrorCode, RollbackException, format_coded_message
from .cloudformation import StackEvent

logger = logging.getLogger(__name__)

EventFilter = Callable[[StackEvent], bool]
EventQuery = Callable[[EventFilter], Optional[StackEvent]]

_MISSING = object()


class WarningLedger:
    """Append-only set of warning codes already shown during one deployment."""

    def __init__(self) -> None:
        self._codes: Set[str] = set()
        self._lock = threading.Lock()

    def add(self, code: str) -> bool:
        """Record ``code``; True only the first time it is seen."""
        with self._lock:
            if code in self._codes:
                return False
            self._codes.add(code)
            return True

    def __contains__(self, code: object) -> bool:
        return code in self._codes

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._codes))

    def __len__(self) -> int:
        return len(self._codes)


class StackEventLogger:
    """
    Logs polled stack events and raises on rollback.

    Consecutive polls that return the same event are logged once so a long
    wait does not flood the log.
    """

    def __init__(self, ledger: Optional[WarningLedger] = None) -> None:
        self.ledger = ledger if ledger is not None else WarningLedger()
        self._last_logged: object = None

    def warn(self, code: str, message: str) -> bool:
        """Emit a warning once per ``code``; returns whether it was displayed."""
        if not self.ledger.add(code):
            logger.debug("Suppressed repeated warning %s", code)
            return False
        logger.warning("%s: %s", code, message)
        return True

    def log(self, event: Optional[StackEvent]) -> None:
        key = event.event_id if event is not None else _MISSING
        if key == self._last_logged:
            return
        self._last_logged = key
        if event is None:
            logger.info("No stack events found")
        else:
            logger.info("Current stack state: %s", event.describe())

    def log_rollback_error(
        self,
        event: Optional[StackEvent],
        query: EventQuery,
        expect_success: bool = True,
        missing_is_failure: bool = True,
        event_filter: Optional[EventFilter] = None,
    ) -> None:
        """
        Raise :class:`RollbackException` when ``event`` shows the operation failed.

        Nothing is raised unless ``expect_success`` is set. An absent event
        counts as failure only with ``missing_is_failure``. A present event is
        considered only when it passes ``event_filter`` and carries a
        rollback-class status; ``query`` then looks up the most recent
        resource failure of the current operation to explain it, falling
        back to ``event`` itself.
        """
        if not expect_success:
            return

        if event is None:
            if missing_is_failure:
                raise RollbackException(
                    format_coded_message(
                        ErrorCode.STACK_MISSING,
                        "The CloudFormation stack was not found or has no events, "
                        "so the deployment could not be confirmed.",
                    ),
                    ErrorCode.STACK_MISSING,
                )
            return

        if event_filter is not None and not event_filter(event):
            return
        if not event.indicates_failure():
            return

        failure = query(lambda candidate: candidate.status.endswith("_FAILED")) or event
        raise RollbackException(
            format_coded_message(
                ErrorCode.ROLLBACK_DETECTED,
                f"The CloudFormation stack reported {event.status}. "
                f"The resource {failure.logical_resource_id} ({failure.resource_type}) "
                f"reported {failure.status}: {failure.reason or 'no reason given'}",
            ),
            ErrorCode.ROLLBACK_DETECTED,
            resource=failure.logical_resource_id,
            reason=failure.reason,
        )
