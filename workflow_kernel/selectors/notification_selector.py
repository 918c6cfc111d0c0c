"""
workflow_kernel.selectors.notification_selector -- Notification reads.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from workflow_kernel.domain.workflow import NotificationRecord, ReadStatus
from workflow_kernel.exceptions import NotificationNotFoundError
from workflow_kernel.models.notification import NotificationModel
from workflow_kernel.selectors.base import BaseSelector


class NotificationSelector(BaseSelector[NotificationModel]):

    def get(self, notification_id: UUID) -> NotificationRecord:
        record = self._snapshot_or_none(
            select(NotificationModel).where(
                NotificationModel.notification_id == notification_id
            )
        )
        if record is None:
            raise NotificationNotFoundError(str(notification_id))
        return record

    def list_for_subject(
        self,
        subject_id: str,
        unread_only: bool = False,
        include_archived: bool = False,
    ) -> list[NotificationRecord]:
        """A subject's notifications, newest first.  Archived ones are
        hidden unless ``include_archived``."""
        stmt = select(NotificationModel).where(
            NotificationModel.subject_id == subject_id
        )
        if unread_only:
            stmt = stmt.where(NotificationModel.read_status == ReadStatus.UNREAD.value)
        elif not include_archived:
            stmt = stmt.where(
                NotificationModel.read_status != ReadStatus.ARCHIVED.value
            )
        stmt = stmt.order_by(NotificationModel.created_at.desc())
        return self._snapshots(stmt)

    def list_for_request(self, related_request_id: UUID) -> list[NotificationRecord]:
        stmt = (
            select(NotificationModel)
            .where(NotificationModel.related_request_id == related_request_id)
            .order_by(NotificationModel.created_at.asc())
        )
        return self._snapshots(stmt)

    def unread_count(self, subject_id: str) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(NotificationModel)
            .where(
                NotificationModel.subject_id == subject_id,
                NotificationModel.read_status == ReadStatus.UNREAD.value,
            )
        ).scalar_one()
