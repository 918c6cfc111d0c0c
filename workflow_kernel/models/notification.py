"""
Module: workflow_kernel.models.notification
Responsibility: ORM persistence for notification records.

Architecture position: Kernel > Models.  May import from db/ and exceptions.

Notifications reference a request by id only; there is no foreign key, so
the notification table may live in a different database from the requests.
Content is write-once; only ``read_status`` may change.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String, Text, event, inspect
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UTCDateTime, UUIDString
from workflow_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from workflow_kernel.domain.workflow import NotificationDraft, NotificationRecord


class NotificationModel(Base):
    """Persistent notification addressed to a subject."""

    __tablename__ = "workflow_notifications"

    __table_args__ = (
        CheckConstraint(
            "read_status IN ('unread', 'read', 'archived')",
            name="ck_workflow_notifications_read_status",
        ),
        Index(
            "ix_workflow_notifications_subject",
            "subject_id", "read_status", "created_at",
        ),
    )

    notification_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    subject_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    related_request_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    read_status: Mapped[str] = mapped_column(String(16), nullable=False, default="unread")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Notification {self.notification_id} {self.type} "
            f"to={self.subject_id} {self.read_status}>"
        )

    def to_dto(self) -> NotificationRecord:
        from workflow_kernel.domain.workflow import NotificationRecord as RecordDTO
        from workflow_kernel.domain.workflow import ReadStatus

        return RecordDTO(
            notification_id=self.notification_id,
            subject_id=self.subject_id,
            type=self.type,
            title=self.title,
            message=self.message,
            related_request_id=self.related_request_id,
            read_status=ReadStatus(self.read_status),
            created_at=self.created_at,
        )

    @classmethod
    def from_draft(
        cls,
        draft: NotificationDraft,
        notification_id: UUID,
        created_at: datetime,
    ) -> NotificationModel:
        return cls(
            notification_id=notification_id,
            subject_id=draft.subject_id,
            type=draft.type,
            title=draft.title,
            message=draft.message,
            related_request_id=draft.related_request_id,
            read_status="unread",
            created_at=created_at,
        )


_MUTABLE_COLUMNS = frozenset({"read_status"})


@event.listens_for(NotificationModel, "before_update")
def prevent_notification_content_update(mapper, connection, target):
    """Only read_status may change after insert."""
    state = inspect(target)
    for attr in state.attrs:
        if attr.key in _MUTABLE_COLUMNS:
            continue
        if attr.history.has_changes():
            raise ImmutabilityViolationError(
                entity_type="Notification",
                entity_id=str(target.notification_id),
                reason=f"Notification content is write-once -- cannot modify {attr.key}",
            )
