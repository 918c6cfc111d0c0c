"""
workflow_kernel.services.notification_service -- Notification records.

Responsibility:
    Appends notification records and moves them through their own
    read/archive lifecycle, independent of the request they mention.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Failure modes:
    - NotificationNotFoundError for an unknown notification id.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.workflow import (
    NotificationDraft,
    NotificationRecord,
    ReadStatus,
)
from workflow_kernel.exceptions import NotificationNotFoundError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.notification import NotificationModel
from workflow_kernel.services.base import BaseService

logger = get_logger("services.notification_service")


class NotificationService(BaseService[NotificationModel]):
    """Append and update notification records.  Flush-only."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        super().__init__(session)
        self._clock = clock or SystemClock()

    def append(self, draft: NotificationDraft) -> NotificationRecord:
        model = NotificationModel.from_draft(
            draft,
            notification_id=uuid4(),
            created_at=self._clock.now(),
        )
        self._stage(model)
        logger.info(
            "notification_created",
            extra={
                "notification_id": str(model.notification_id),
                "subject_id": model.subject_id,
                "notification_type": model.type,
                "related_request_id": str(model.related_request_id),
            },
        )
        return model.to_dto()

    def mark_read(self, notification_id: UUID) -> NotificationRecord:
        """Mark as read.  Archived notifications stay archived."""
        model = self._load(notification_id)
        if model.read_status == ReadStatus.UNREAD.value:
            model.read_status = ReadStatus.READ.value
            self.session.flush()
        return model.to_dto()

    def archive(self, notification_id: UUID) -> NotificationRecord:
        model = self._load(notification_id)
        if model.read_status != ReadStatus.ARCHIVED.value:
            model.read_status = ReadStatus.ARCHIVED.value
            self.session.flush()
            logger.info(
                "notification_archived",
                extra={"notification_id": str(notification_id)},
            )
        return model.to_dto()

    def _load(self, notification_id: UUID) -> NotificationModel:
        model = self.session.execute(
            select(NotificationModel).where(
                NotificationModel.notification_id == notification_id
            )
        ).scalar_one_or_none()
        if model is None:
            raise NotificationNotFoundError(str(notification_id))
        return model
