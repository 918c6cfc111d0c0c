"""
Workflow domain types (``workflow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the approval workflow: the phase state machine,
the actions an approver can take, history entries, the request snapshot
handed to callers, and the outcome of a transition.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* WF-1: Phase is monotonic -- ``PHASE_TRANSITIONS`` allows only
  ``pending`` to move; ``approved`` and ``rejected`` are absorbing.
* WF-2: ``current_approver_role`` is set iff phase is ``pending``
  (checked in ``WorkflowStatus.__post_init__``).
* WF-3: Status is stored as ``(phase, stage)``; display strings are
  derived by ``workflow_engines.progress`` and never stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =========================================================================
# Phase Lifecycle (WF-1)
# =========================================================================


class Phase(str, Enum):
    """Request lifecycle phase."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


PHASE_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.PENDING: frozenset({Phase.PENDING, Phase.APPROVED, Phase.REJECTED}),
    Phase.APPROVED: frozenset(),
    Phase.REJECTED: frozenset(),
}

TERMINAL_PHASES: frozenset[Phase] = frozenset({Phase.APPROVED, Phase.REJECTED})

# Stage recorded once the last approver signs off.
FINAL_STAGE = "final"


def is_valid_phase_transition(current: Phase, target: Phase) -> bool:
    return target in PHASE_TRANSITIONS.get(current, frozenset())


class Action(str, Enum):
    """Commands an approver can issue.  Forwarding is an approve that
    resolves to another role."""

    APPROVE = "approve"
    REJECT = "reject"


class HistoryAction(str, Enum):
    """What a history entry records."""

    APPROVED = "approved"
    FORWARDED = "forwarded"
    REJECTED = "rejected"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RequestKind(str, Enum):
    """Workflow-bearing request kinds known to the system."""

    ACHIEVEMENT = "achievement"
    CERTIFICATE = "certificate"
    MAINTENANCE = "maintenance"
    LIBRARY_RESOURCE = "library_resource"
    LIBRARY_TIMING = "library_timing"


class ReadStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"
    ARCHIVED = "archived"


# =========================================================================
# Status and History
# =========================================================================


@dataclass(frozen=True)
class WorkflowStatus:
    """``(phase, stage)`` plus the role whose worklist holds the request.

    ``stage`` is a role name while pending, the rejecting role once
    rejected, and ``FINAL_STAGE`` once approved.
    """

    phase: Phase
    stage: str
    current_approver_role: str | None = None

    def __post_init__(self) -> None:
        pending = self.phase == Phase.PENDING
        if pending != (self.current_approver_role is not None):
            raise ValueError(
                f"current_approver_role must be set iff pending: "
                f"phase={self.phase.value} role={self.current_approver_role}"
            )

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @classmethod
    def pending_at(cls, role: str) -> WorkflowStatus:
        return cls(phase=Phase.PENDING, stage=role, current_approver_role=role)

    @classmethod
    def approved(cls) -> WorkflowStatus:
        return cls(phase=Phase.APPROVED, stage=FINAL_STAGE)

    @classmethod
    def rejected_by(cls, role: str) -> WorkflowStatus:
        return cls(phase=Phase.REJECTED, stage=role)


@dataclass(frozen=True)
class HistoryEntry:
    """One append-only record of an approver's action. Immutable."""

    seq: int
    role: str
    actor_id: str
    actor_name: str
    action: HistoryAction
    occurred_at: datetime
    comment: str | None = None
    idempotency_key: str | None = None


# =========================================================================
# Request Snapshot
# =========================================================================


@dataclass(frozen=True)
class WorkflowRequest:
    """Immutable snapshot of a workflow-bearing request.

    ``payload`` is opaque kind-specific data; only the category-routed
    template reads a field from it.
    """

    request_id: UUID
    kind: str
    subject_id: str
    status: WorkflowStatus
    payload: dict[str, Any] = field(default_factory=dict)
    priority: Priority = Priority.MEDIUM
    history: tuple[HistoryEntry, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 1

    @property
    def phase(self) -> Phase:
        return self.status.phase

    @property
    def stage(self) -> str:
        return self.status.stage

    @property
    def current_approver_role(self) -> str | None:
        return self.status.current_approver_role

    @property
    def title(self) -> str:
        """Best-effort display title from the payload."""
        for key in ("title", "resource_title", "document_type", "subject"):
            value = self.payload.get(key)
            if value:
                return str(value)
        return self.kind.replace("_", " ")


# =========================================================================
# Notifications and Outcomes
# =========================================================================


@dataclass(frozen=True)
class NotificationDraft:
    """Notification composed by the engine, not yet persisted."""

    subject_id: str
    type: str
    title: str
    message: str
    related_request_id: UUID


@dataclass(frozen=True)
class NotificationRecord:
    """Persisted notification. Lifecycle independent of the request."""

    notification_id: UUID
    subject_id: str
    type: str
    title: str
    message: str
    related_request_id: UUID
    read_status: ReadStatus
    created_at: datetime


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of a successful (or replayed) transition.

    ``entry`` and ``notification`` are None when ``replayed`` is True:
    an earlier call with the same idempotency key already applied the
    transition and notified the subject.
    """

    request: WorkflowRequest
    entry: HistoryEntry | None
    notification: NotificationDraft | None
    replayed: bool = False


@dataclass(frozen=True)
class WorkflowStats:
    """Counts over a worklist or a submitter's requests."""

    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    overdue: int = 0
