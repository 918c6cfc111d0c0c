"""
Module: workflow_kernel.models.request
Responsibility: ORM persistence for workflow requests and their history.

Architecture position: Kernel > Models.  May import from db/ and exceptions
only (domain DTOs are imported lazily inside to_dto/from_dto).

Invariants enforced:
    WF-1  -- Phase values limited by check constraint; the transition
             service enforces monotonicity.
    WF-2  -- current_approver_role IS NOT NULL iff phase = 'pending'
             (check constraint), so a request sits in exactly one worklist
             while pending and in none afterwards.
    WF-4  -- Optimistic concurrency: ``version`` is SQLAlchemy's
             version_id_col.  Every UPDATE is a compare-and-swap on it; a
             lost update raises StaleDataError, converted by the service to
             ConcurrentModificationError.
    WF-5  -- History is append-only: UNIQUE(request_id, seq) plus ORM
             listeners that reject UPDATE and DELETE.
    WF-6  -- Requests are retained: DELETE is rejected.

Failure modes:
    - IntegrityError on duplicate (request_id, seq) when two writers race
      past the version check on a backend without row locks.
    - ImmutabilityViolationError on history UPDATE/DELETE or request DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workflow_kernel.db.base import Base, TimestampedBase, UTCDateTime, UUIDString
from workflow_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from workflow_kernel.domain.workflow import HistoryEntry, WorkflowRequest


class WorkflowRequestModel(TimestampedBase):
    """Persistent workflow-bearing request.

    Contract:
        Status is stored as (phase, stage, current_approver_role) and only
        the transition service writes it.  Terminal phases never change.

    Guarantees:
        - request_id and kind are write-once.
        - version increments on every UPDATE (WF-4).
    """

    __tablename__ = "workflow_requests"

    __table_args__ = (
        CheckConstraint(
            "phase IN ('pending', 'approved', 'rejected')",
            name="ck_workflow_requests_valid_phase",
        ),
        CheckConstraint(
            "(phase = 'pending' AND current_approver_role IS NOT NULL) "
            "OR (phase <> 'pending' AND current_approver_role IS NULL)",
            name="ck_workflow_requests_role_iff_pending",
        ),
        CheckConstraint(
            "priority IN ('low', 'medium', 'high', 'urgent')",
            name="ck_workflow_requests_valid_priority",
        ),
        # Kind-specific namespace: a subject's requests of one kind
        Index("ix_workflow_requests_kind_subject", "kind", "subject_id"),
        # Worklist query
        Index(
            "ix_workflow_requests_worklist",
            "current_approver_role", "phase", "created_at",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(128), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    phase: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    stage: Mapped[str] = mapped_column(String(64), nullable=False)
    current_approver_role: Mapped[str | None] = mapped_column(String(64), nullable=True)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    history: Mapped[list[WorkflowHistoryEntryModel]] = relationship(
        "WorkflowHistoryEntryModel",
        back_populates="request",
        primaryjoin=(
            "WorkflowRequestModel.request_id == WorkflowHistoryEntryModel.request_id"
        ),
        order_by="WorkflowHistoryEntryModel.seq",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<WorkflowRequest {self.request_id} {self.kind} "
            f"{self.phase}@{self.stage} v{self.version}>"
        )

    @property
    def last_entry(self) -> WorkflowHistoryEntryModel | None:
        return self.history[-1] if self.history else None

    def to_dto(self) -> WorkflowRequest:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.workflow import (
            Phase,
            Priority,
            WorkflowRequest as WorkflowRequestDTO,
            WorkflowStatus,
        )

        return WorkflowRequestDTO(
            request_id=self.request_id,
            kind=self.kind,
            subject_id=self.subject_id,
            status=WorkflowStatus(
                phase=Phase(self.phase),
                stage=self.stage,
                current_approver_role=self.current_approver_role,
            ),
            payload=dict(self.payload or {}),
            priority=Priority(self.priority),
            history=tuple(entry.to_dto() for entry in self.history),
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: WorkflowRequest) -> WorkflowRequestModel:
        """Create ORM model from domain DTO (history is not copied)."""
        return cls(
            request_id=dto.request_id,
            kind=dto.kind,
            subject_id=dto.subject_id,
            payload=dict(dto.payload),
            phase=dto.phase.value,
            stage=dto.stage,
            current_approver_role=dto.current_approver_role,
            priority=dto.priority.value,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
        )


class WorkflowHistoryEntryModel(Base):
    """Persistent history entry. Append-only.

    Contract:
        Entries are immutable once created -- no UPDATE, no DELETE.

    Guarantees:
        - UNIQUE(request_id, seq): one entry per position in the trail.
        - UNIQUE(request_id, idempotency_key): a keyed transition is
          recorded at most once.
    """

    __tablename__ = "workflow_history_entries"

    __table_args__ = (
        UniqueConstraint(
            "request_id", "seq",
            name="uq_workflow_history_request_seq",
        ),
        UniqueConstraint(
            "request_id", "idempotency_key",
            name="uq_workflow_history_idempotency",
        ),
        CheckConstraint(
            "action IN ('approved', 'forwarded', 'rejected')",
            name="ck_workflow_history_valid_action",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_requests.request_id"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)
    role: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    actor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    request: Mapped[WorkflowRequestModel] = relationship(
        "WorkflowRequestModel",
        back_populates="history",
        foreign_keys=[request_id],
        primaryjoin=(
            "WorkflowHistoryEntryModel.request_id == WorkflowRequestModel.request_id"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowHistoryEntry {self.request_id}#{self.seq} "
            f"{self.role} {self.action}>"
        )

    def to_dto(self) -> HistoryEntry:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.workflow import HistoryAction
        from workflow_kernel.domain.workflow import HistoryEntry as HistoryEntryDTO

        return HistoryEntryDTO(
            seq=self.seq,
            role=self.role,
            actor_id=self.actor_id,
            actor_name=self.actor_name,
            action=HistoryAction(self.action),
            occurred_at=self.occurred_at,
            comment=self.comment,
            idempotency_key=self.idempotency_key,
        )

    @classmethod
    def from_dto(cls, request_id: UUID, dto: HistoryEntry) -> WorkflowHistoryEntryModel:
        """Create ORM model from domain DTO."""
        return cls(
            request_id=request_id,
            seq=dto.seq,
            role=dto.role,
            actor_id=dto.actor_id,
            actor_name=dto.actor_name,
            action=dto.action.value,
            comment=dto.comment,
            occurred_at=dto.occurred_at,
            idempotency_key=dto.idempotency_key,
        )


# =============================================================================
# ORM-Level Immutability
# =============================================================================


@event.listens_for(WorkflowHistoryEntryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    """Prevent updates to history entries."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowHistoryEntry",
        entity_id=f"{target.request_id}#{target.seq}",
        reason="History entries are append-only -- cannot modify",
    )


@event.listens_for(WorkflowHistoryEntryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    """Prevent deletion of history entries."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowHistoryEntry",
        entity_id=f"{target.request_id}#{target.seq}",
        reason="History entries are append-only -- cannot delete",
    )


@event.listens_for(WorkflowRequestModel, "before_delete")
def prevent_request_delete(mapper, connection, target):
    """Prevent deletion of workflow requests."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowRequest",
        entity_id=str(target.request_id),
        reason="Workflow requests are retained as audit records -- cannot delete",
    )
