"""
workflow_services.change_feed -- In-process subscribe-for-changes.

Responsibility:
    Lets dashboards react to committed workflow changes without polling.
    The gateway publishes one ``RequestChange`` after each committed
    create or transition.

Invariants enforced:
    - Only committed state is published.
    - A failing subscriber is logged and skipped; it never affects the
      commit or delivery to the other subscribers.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass
from typing import Callable

from workflow_kernel.domain.workflow import HistoryEntry, WorkflowRequest
from workflow_kernel.logging_config import get_logger

logger = get_logger("services.change_feed")

CHANGE_CREATED = "created"
CHANGE_TRANSITIONED = "transitioned"


@dataclass(frozen=True)
class RequestChange:
    """A committed change to one request."""

    change_type: str
    request: WorkflowRequest
    entry: HistoryEntry | None = None

    @property
    def kind(self) -> str:
        return self.request.kind


Subscriber = Callable[[RequestChange], None]


class ChangeFeed:
    """Thread-safe fan-out of ``RequestChange`` events."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._subscribers: dict[int, tuple[Subscriber, str | None]] = {}

    def subscribe(
        self, callback: Subscriber, kind: str | None = None,
    ) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it.

        With ``kind``, only changes to requests of that kind are delivered.
        """
        with self._lock:
            token = next(self._ids)
            self._subscribers[token] = (callback, kind)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def publish(self, change: RequestChange) -> int:
        """Deliver ``change``; returns how many subscribers received it."""
        with self._lock:
            targets = list(self._subscribers.items())

        delivered = 0
        for token, (callback, kind) in targets:
            if kind is not None and kind != change.kind:
                continue
            try:
                callback(change)
            except Exception:
                logger.warning(
                    "change_subscriber_failed",
                    extra={
                        "subscriber": token,
                        "request_id": str(change.request.request_id),
                        "change_type": change.change_type,
                    },
                    exc_info=True,
                )
                continue
            delivered += 1
        return delivered

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
