"""
workflow_kernel.services.request_service -- Request creation.

Responsibility:
    Creates workflow-bearing requests and seeds their workflow state from
    the kind's template: pending at the template's first role.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - A new request is always ``pending`` with ``stage`` and
      ``current_approver_role`` equal to the template's first role.
    - Creation appends no history entry; history records approver
      actions only.

Failure modes:
    - UnknownRequestKindError if the kind has no template.
    - InvalidPayloadError if the payload is not a JSON object, the
      subject id is blank, or the priority is unknown.
"""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.template import TemplateRegistry
from workflow_kernel.domain.workflow import Phase, Priority, WorkflowRequest
from workflow_kernel.exceptions import InvalidPayloadError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.request import WorkflowRequestModel
from workflow_kernel.services.base import BaseService

logger = get_logger("services.request_service")


class RequestService(BaseService[WorkflowRequestModel]):
    """Creates requests.  Flush-only; the caller commits."""

    def __init__(
        self,
        session: Session,
        registry: TemplateRegistry,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(session)
        self._registry = registry
        self._clock = clock or SystemClock()

    def create_request(
        self,
        kind: str,
        subject_id: str,
        payload: dict[str, Any],
        priority: Priority | str = Priority.MEDIUM,
    ) -> WorkflowRequest:
        """Create a request pending at the first stage of its template.

        Args:
            kind: Request kind; selects the template.
            subject_id: The person the request is about or submitted by.
            payload: Kind-specific JSON object.
            priority: ``low | medium | high | urgent``.

        Returns:
            The new request as a frozen DTO (version 1, empty history).
        """
        template = self._registry.get(kind)

        if not isinstance(payload, dict):
            raise InvalidPayloadError(
                kind, f"payload must be a JSON object, got {type(payload).__name__}"
            )
        if not subject_id or not str(subject_id).strip():
            raise InvalidPayloadError(kind, "subject_id is required")
        try:
            priority = Priority(priority)
        except ValueError:
            raise InvalidPayloadError(kind, f"unknown priority {priority!r}") from None

        now = self._clock.now()
        first_role = template.first_role
        model = WorkflowRequestModel(
            request_id=uuid4(),
            kind=kind,
            subject_id=str(subject_id),
            payload=dict(payload),
            phase=Phase.PENDING.value,
            stage=first_role,
            current_approver_role=first_role,
            priority=priority.value,
            created_at=now,
            updated_at=now,
        )
        self._stage(model)

        logger.info(
            "workflow_request_created",
            extra={
                "request_id": str(model.request_id),
                "kind": kind,
                "subject_id": model.subject_id,
                "first_role": first_role,
                "priority": priority.value,
            },
        )
        return model.to_dto()
