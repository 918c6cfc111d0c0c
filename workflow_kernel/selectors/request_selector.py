"""
workflow_kernel.selectors.request_selector -- Request read paths.

Lookups by id and by subject.  ``get_for_subject`` reads within the
kind-specific namespace ``(kind, subject_id)`` the request was filed under.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from workflow_kernel.domain.workflow import HistoryEntry, WorkflowRequest
from workflow_kernel.exceptions import RequestNotFoundError
from workflow_kernel.models.request import WorkflowRequestModel
from workflow_kernel.selectors.base import BaseSelector


class RequestSelector(BaseSelector[WorkflowRequestModel]):
    """Read-only access to single requests and a subject's requests."""

    def get(self, request_id: UUID) -> WorkflowRequest:
        """Raises RequestNotFoundError if absent."""
        request = self.find(request_id)
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return request

    def find(self, request_id: UUID) -> WorkflowRequest | None:
        return self._snapshot_or_none(
            select(WorkflowRequestModel).where(
                WorkflowRequestModel.request_id == request_id
            )
        )

    def get_for_subject(
        self, kind: str, subject_id: str, request_id: UUID,
    ) -> WorkflowRequest:
        """Fetch a request through its ``(kind, subject_id)`` namespace.

        A request filed under a different kind or subject is reported as
        not found.
        """
        model = self.session.execute(
            select(WorkflowRequestModel).where(
                WorkflowRequestModel.kind == kind,
                WorkflowRequestModel.subject_id == subject_id,
                WorkflowRequestModel.request_id == request_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model.to_dto()

    def list_for_subject(
        self, subject_id: str, kind: str | None = None,
    ) -> list[WorkflowRequest]:
        """A subject's requests, newest first."""
        stmt = select(WorkflowRequestModel).where(
            WorkflowRequestModel.subject_id == subject_id
        )
        if kind is not None:
            stmt = stmt.where(WorkflowRequestModel.kind == kind)
        stmt = stmt.order_by(WorkflowRequestModel.created_at.desc())
        return self._snapshots(stmt)

    def history(self, request_id: UUID) -> tuple[HistoryEntry, ...]:
        return self.get(request_id).history
