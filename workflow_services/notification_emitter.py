"""
workflow_services.notification_emitter -- Notification side effect.

Responsibility:
    Persists the notification drafted by a transition, in its own session
    and transaction, after the transition has committed.

Invariants enforced:
    - Best effort: a failed notification write is logged as
      ``notification_emit_failed`` and never undoes or fails the
      transition that produced it.
    - The emitter may use a different session factory (and database)
      from the request store.
"""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from workflow_kernel.db.engine import session_scope
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.workflow import NotificationDraft, NotificationRecord
from workflow_kernel.logging_config import get_logger
from workflow_kernel.services.notification_service import NotificationService

logger = get_logger("services.notification_emitter")


class NotificationEmitter:
    """Writes notification drafts to the notification store."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def emit(self, draft: NotificationDraft) -> NotificationRecord | None:
        """Append ``draft``.  Returns None (and logs) if the write failed."""
        try:
            with session_scope(self._session_factory) as session:
                return NotificationService(session, self._clock).append(draft)
        except Exception as exc:
            logger.warning(
                "notification_emit_failed",
                extra={
                    "related_request_id": str(draft.related_request_id),
                    "subject_id": draft.subject_id,
                    "notification_type": draft.type,
                    "error": str(exc),
                },
                exc_info=True,
            )
            return None
