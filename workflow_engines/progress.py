"""
workflow_engines.progress -- Derived views over workflow state.

Responsibility:
    Everything that is computed from a request rather than stored on it:
    status codes and display text, the per-stage approval flow shown on
    dashboards, notification wording, overdue checks, and the replay of
    history used to audit stored status.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import workflow_kernel/domain/ types and exceptions.

Invariants enforced:
    - Display strings are never stored; they are recomputed here from
      ``(phase, stage)`` and the role display names.
    - ``replay_history`` rebuilds the status purely from the template,
      payload and history.  A stored status that disagrees with it means
      the audit trail and the request row have diverged.

Failure modes:
    - HistoryInconsistencyError from ``replay_history`` when the trail is
      not a legal walk of the template.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping, Sequence

from workflow_engines.routing import next_role, routed_stages
from workflow_kernel.domain.template import (
    TERMINAL,
    TemplateRegistry,
    WorkflowTemplate,
)
from workflow_kernel.domain.workflow import (
    HistoryAction,
    HistoryEntry,
    NotificationDraft,
    Phase,
    WorkflowRequest,
    WorkflowStatus,
)
from workflow_kernel.exceptions import HistoryInconsistencyError, InvalidRoutingError


def _display(role: str, role_names: Mapping[str, str]) -> str:
    return role_names.get(role) or role.replace("_", " ").title()


def _kind_label(kind: str) -> str:
    return kind.replace("_", " ")


# =========================================================================
# Status text
# =========================================================================


def status_code(status: WorkflowStatus | WorkflowRequest) -> str:
    """Machine-friendly status, e.g. ``pending_at_hod`` or ``rejected_by_hod``."""
    if isinstance(status, WorkflowRequest):
        status = status.status
    if status.phase == Phase.PENDING:
        return f"pending_at_{status.stage}"
    if status.phase == Phase.REJECTED:
        return f"rejected_by_{status.stage}"
    return "approved"


def describe_status(
    status: WorkflowStatus | WorkflowRequest,
    role_names: Mapping[str, str],
) -> str:
    """Human text, e.g. ``Pending at HOD``, ``Approved``, ``Rejected by HOD``."""
    if isinstance(status, WorkflowRequest):
        status = status.status
    if status.phase == Phase.PENDING:
        return f"Pending at {_display(status.stage, role_names)}"
    if status.phase == Phase.REJECTED:
        return f"Rejected by {_display(status.stage, role_names)}"
    return "Approved"


# =========================================================================
# Approval flow
# =========================================================================


class StepState(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING = "pending"
    WAITING = "waiting"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class FlowStep:
    """One stage of the approval flow as shown to the requester."""

    role: str
    role_name: str
    state: StepState
    actor_name: str | None = None
    occurred_at: datetime | None = None
    comment: str | None = None


def approval_flow(
    template: WorkflowTemplate,
    request: WorkflowRequest,
    role_names: Mapping[str, str],
) -> tuple[FlowStep, ...]:
    """Per-stage progress for ``request``.

    Stages before the current one are ``approved``; the current stage is
    ``pending`` (or ``rejected``); later stages are ``waiting`` while the
    request is pending and ``skipped`` once it has been rejected.
    """
    stages = routed_stages(template, request.payload)
    acted = {entry.role: entry for entry in request.history}

    if request.phase == Phase.APPROVED:
        cut = len(stages)
    elif request.stage in stages:
        cut = stages.index(request.stage)
    else:
        cut = len(acted)

    steps: list[FlowStep] = []
    for index, role in enumerate(stages):
        entry = acted.get(role)
        if index < cut:
            state = StepState.APPROVED
        elif index == cut:
            state = (
                StepState.REJECTED
                if request.phase == Phase.REJECTED
                else StepState.PENDING
            )
        elif request.phase == Phase.REJECTED:
            state = StepState.SKIPPED
        else:
            state = StepState.WAITING
        steps.append(
            FlowStep(
                role=role,
                role_name=_display(role, role_names),
                state=state,
                actor_name=entry.actor_name if entry else None,
                occurred_at=entry.occurred_at if entry else None,
                comment=entry.comment if entry else None,
            )
        )
    return tuple(steps)


# =========================================================================
# Notifications
# =========================================================================


def compose_notification(
    request: WorkflowRequest,
    entry: HistoryEntry,
    registry: TemplateRegistry,
) -> NotificationDraft:
    """Notification for the requester after ``entry`` was applied.

    ``request`` is the post-transition snapshot, so for a forward its
    ``current_approver_role`` is the role the request moved to.
    """
    kind = _kind_label(request.kind)
    actor = registry.display_name(entry.role)
    title_text = request.title

    if entry.action == HistoryAction.FORWARDED:
        forwarded_to = registry.display_name(request.current_approver_role or "")
        title = f"{kind.title()} Request Forwarded"
        message = (
            f'Your {kind} request "{title_text}" has been approved by '
            f"{actor} and forwarded to {forwarded_to}."
        )
    elif entry.action == HistoryAction.APPROVED:
        title = f"{kind.title()} Request Approved"
        message = f'Your {kind} request "{title_text}" has been approved by {actor}.'
    else:
        title = f"{kind.title()} Request Rejected"
        message = f'Your {kind} request "{title_text}" has been rejected by {actor}'
        message += f": {entry.comment}" if entry.comment else "."

    return NotificationDraft(
        subject_id=request.subject_id,
        type=f"{request.kind}_{entry.action.value}",
        title=title,
        message=message,
        related_request_id=request.request_id,
    )


# =========================================================================
# Overdue
# =========================================================================


def overdue_cutoff(template: WorkflowTemplate, now: datetime) -> datetime | None:
    """Requests that entered their current stage before this are overdue."""
    if template.max_response_hours is None:
        return None
    return now - timedelta(hours=template.max_response_hours)


def is_overdue(
    template: WorkflowTemplate,
    request: WorkflowRequest,
    now: datetime,
) -> bool:
    """Pending longer than the template's response window at the current stage."""
    cutoff = overdue_cutoff(template, now)
    if cutoff is None or request.phase != Phase.PENDING:
        return False
    entered = request.updated_at or request.created_at
    return entered is not None and entered < cutoff


# =========================================================================
# Replay
# =========================================================================


def replay_history(
    template: WorkflowTemplate,
    payload: Mapping[str, Any],
    history: Sequence[HistoryEntry],
    request_id: str = "<replay>",
) -> WorkflowStatus:
    """Recompute the status ``history`` leads to from the template's start.

    Raises:
        HistoryInconsistencyError: if an entry is out of sequence, acts
            out of turn, follows a terminal entry, or records the wrong
            action for where routing says the request went.
    """
    status = WorkflowStatus.pending_at(template.first_role)
    previous_at: datetime | None = None

    for position, entry in enumerate(history, start=1):
        if entry.seq != position:
            raise HistoryInconsistencyError(
                request_id, f"seq {position}", f"seq {entry.seq}",
            )
        if previous_at is not None and entry.occurred_at < previous_at:
            raise HistoryInconsistencyError(
                request_id,
                f"occurred_at >= {previous_at.isoformat()}",
                entry.occurred_at.isoformat(),
            )
        previous_at = entry.occurred_at

        if status.is_terminal:
            raise HistoryInconsistencyError(
                request_id, status_code(status), f"entry #{entry.seq} after close",
            )
        if entry.role != status.current_approver_role:
            raise HistoryInconsistencyError(
                request_id,
                f"action by {status.current_approver_role}",
                f"action by {entry.role}",
            )

        if entry.action == HistoryAction.REJECTED:
            status = WorkflowStatus.rejected_by(entry.role)
            continue

        try:
            target = next_role(template, payload, entry.role)
        except InvalidRoutingError as exc:
            raise HistoryInconsistencyError(
                request_id, "routable role", exc.reason,
            ) from exc

        if target is TERMINAL:
            expected_action = HistoryAction.APPROVED
            status = WorkflowStatus.approved()
        else:
            expected_action = HistoryAction.FORWARDED
            status = WorkflowStatus.pending_at(target)
        if entry.action != expected_action:
            raise HistoryInconsistencyError(
                request_id, expected_action.value, entry.action.value,
            )

    return status
