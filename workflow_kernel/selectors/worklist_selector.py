"""
workflow_kernel.selectors.worklist_selector -- Worklist Query.

Responsibility:
    Answers "what can this role act on right now", plus the supporting
    dashboard queries: a submitter's outgoing requests, counts, and
    overdue requests.

Architecture position:
    Kernel > Selectors.  Read-only.

Invariants enforced:
    - Worklist consistency: a pending request appears in exactly the
      worklist of its ``current_approver_role``.  This follows from the
      transition service writing phase and role in one row update; the
      selector filters on both so a terminal row can never leak in.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.template import TemplateRegistry
from workflow_kernel.domain.workflow import Phase, WorkflowRequest, WorkflowStats
from workflow_kernel.models.request import (
    WorkflowHistoryEntryModel,
    WorkflowRequestModel,
)
from workflow_kernel.selectors.base import BaseSelector


class WorklistSelector(BaseSelector[WorkflowRequestModel]):
    """Role worklists and dashboard counts.

    ``registry`` and ``clock`` are only needed for the overdue queries;
    without a registry nothing is ever overdue.
    """

    def __init__(
        self,
        session: Session,
        registry: TemplateRegistry | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(session)
        self._registry = registry
        self._clock = clock or SystemClock()

    def list_actionable(
        self,
        role: str,
        kind: str | None = None,
        limit: int | None = None,
    ) -> list[WorkflowRequest]:
        """Pending requests waiting on ``role``, newest first."""
        stmt = select(WorkflowRequestModel).where(
            WorkflowRequestModel.phase == Phase.PENDING.value,
            WorkflowRequestModel.current_approver_role == role,
        )
        if kind is not None:
            stmt = stmt.where(WorkflowRequestModel.kind == kind)
        stmt = stmt.order_by(WorkflowRequestModel.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return self._snapshots(stmt)

    def list_submitted(
        self,
        subject_id: str,
        kind: str | None = None,
        phase: Phase | str | None = None,
    ) -> list[WorkflowRequest]:
        """Requests filed by ``subject_id`` (outgoing requests), newest first."""
        stmt = select(WorkflowRequestModel).where(
            WorkflowRequestModel.subject_id == subject_id
        )
        if kind is not None:
            stmt = stmt.where(WorkflowRequestModel.kind == kind)
        if phase is not None:
            stmt = stmt.where(WorkflowRequestModel.phase == Phase(phase).value)
        stmt = stmt.order_by(WorkflowRequestModel.created_at.desc())
        return self._snapshots(stmt)

    def list_overdue(self, role: str | None = None) -> list[WorkflowRequest]:
        """Pending requests that have waited at their stage past the
        template's ``max_response_hours``, oldest first."""
        conditions = self._overdue_conditions()
        if not conditions:
            return []
        stmt = select(WorkflowRequestModel).where(
            WorkflowRequestModel.phase == Phase.PENDING.value,
            or_(*conditions),
        )
        if role is not None:
            stmt = stmt.where(WorkflowRequestModel.current_approver_role == role)
        stmt = stmt.order_by(WorkflowRequestModel.updated_at.asc())
        return self._snapshots(stmt)

    def stats(
        self,
        role: str | None = None,
        subject_id: str | None = None,
    ) -> WorkflowStats:
        """Counts by phase, plus overdue.

        With ``role``: requests the role currently holds or has acted on.
        With ``subject_id``: requests the subject filed.  Both narrow
        together; neither counts everything.
        """
        filters = []
        if role is not None:
            acted = select(WorkflowHistoryEntryModel.request_id).where(
                WorkflowHistoryEntryModel.role == role
            )
            filters.append(
                or_(
                    WorkflowRequestModel.current_approver_role == role,
                    WorkflowRequestModel.request_id.in_(acted),
                )
            )
        if subject_id is not None:
            filters.append(WorkflowRequestModel.subject_id == subject_id)

        rows = self.session.execute(
            select(WorkflowRequestModel.phase, func.count())
            .where(*filters)
            .group_by(WorkflowRequestModel.phase)
        ).all()
        counts = {phase: count for phase, count in rows}

        overdue = 0
        conditions = self._overdue_conditions()
        if conditions:
            overdue_filters = list(filters)
            if role is not None:
                # Only the current holder's requests count as overdue.
                overdue_filters.append(
                    WorkflowRequestModel.current_approver_role == role
                )
            overdue = self.session.execute(
                select(func.count())
                .select_from(WorkflowRequestModel)
                .where(
                    WorkflowRequestModel.phase == Phase.PENDING.value,
                    or_(*conditions),
                    *overdue_filters,
                )
            ).scalar_one()

        return WorkflowStats(
            total=sum(counts.values()),
            pending=counts.get(Phase.PENDING.value, 0),
            approved=counts.get(Phase.APPROVED.value, 0),
            rejected=counts.get(Phase.REJECTED.value, 0),
            overdue=overdue,
        )

    def _overdue_conditions(self) -> list:
        """One ``kind = k AND updated_at < cutoff(k)`` clause per timed kind."""
        if self._registry is None:
            return []
        now = self._clock.now()
        conditions = []
        for kind in self._registry.kinds():
            hours = self._registry.get(kind).max_response_hours
            if hours is None:
                continue
            conditions.append(
                (WorkflowRequestModel.kind == kind)
                & (WorkflowRequestModel.updated_at < now - timedelta(hours=hours))
            )
        return conditions
