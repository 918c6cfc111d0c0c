"""
workflow_kernel.services.transition_service -- The transition engine.

Responsibility:
    Applies an approver's approve/reject to a request: validates the
    actor against the current stage, asks the routing resolver where an
    approval goes next, writes the new status and one history entry, and
    composes the notification for the requester.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.  Routing
    and notification wording are injected (``NextRoleResolver``,
    ``NotificationComposer``) so the kernel never imports engines.

Invariants enforced:
    WF-1  -- Phase monotonic: only pending requests transition.
    WF-2  -- current_approver_role set iff pending, written in the same
             row update as phase, so worklists never overlap or drop.
    WF-4  -- Linearizable per request: the row is read FOR UPDATE (where
             supported) and written with a version compare-and-swap.
    WF-5  -- Exactly one history entry per status change, flushed with the
             status update in the caller's transaction.
    WF-7  -- History timestamps never go backwards: ``occurred_at`` is
             clamped to the previous entry's time.

Failure modes:
    - RequestNotFoundError, StaleOrTerminalError, WrongApproverError,
      RejectionReasonRequiredError, InvalidActionError, InvalidRoutingError:
      raised before anything is written.
    - ConcurrentModificationError: another transaction changed the request
      after it was read (StaleDataError or a duplicate history seq).
    - PersistenceUnavailableError: store I/O failed; retryable.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.template import (
    TERMINAL,
    NextRoleResolver,
    NotificationComposer,
    TemplateRegistry,
)
from workflow_kernel.domain.workflow import (
    TERMINAL_PHASES,
    Action,
    HistoryAction,
    Phase,
    TransitionOutcome,
    WorkflowStatus,
    is_valid_phase_transition,
)
from workflow_kernel.exceptions import (
    ConcurrentModificationError,
    IdempotencyKeyReusedError,
    InvalidActionError,
    PersistenceUnavailableError,
    RejectionReasonRequiredError,
    RequestNotFoundError,
    RoutingError,
    StaleOrTerminalError,
    TransitionError,
    WrongApproverError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.request import (
    WorkflowHistoryEntryModel,
    WorkflowRequestModel,
)
from workflow_kernel.services.base import BaseService

logger = get_logger("services.transition_service")


class TransitionService(BaseService[WorkflowRequestModel]):
    """Approve/reject a request on behalf of its current approver.

    Contract:
        ``transition`` either flushes exactly one status update plus one
        history entry, or raises without writing anything.  The caller
        commits.

    Non-goals:
        - Does NOT persist the notification; it returns a draft that the
          notification emitter writes after commit.
        - Does NOT retry.
    """

    def __init__(
        self,
        session: Session,
        registry: TemplateRegistry,
        resolver: NextRoleResolver,
        clock: Clock | None = None,
        composer: NotificationComposer | None = None,
    ) -> None:
        super().__init__(session)
        self._registry = registry
        self._resolver = resolver
        self._clock = clock or SystemClock()
        self._composer = composer

    def transition(
        self,
        request_id: UUID,
        actor_role: str,
        actor_id: str,
        action: Action | str,
        comment: str | None = None,
        actor_name: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionOutcome:
        """Apply ``action`` by ``actor_role`` to the request.

        Preconditions (checked in order, before any write):
            1. The request exists and is pending.
            2. ``actor_role`` is the current approver role.
            3. A reject carries a comment when the template requires one.

        Returns:
            ``TransitionOutcome`` with the updated request, the appended
            history entry and the notification draft.  With an
            ``idempotency_key`` already recorded on the request, returns
            the current state with ``replayed=True`` and writes nothing.
        """
        try:
            action = Action(action)
        except ValueError:
            raise InvalidActionError(str(action)) from None

        try:
            return self._apply(
                request_id,
                actor_role=actor_role,
                actor_id=actor_id,
                action=action,
                comment=comment,
                actor_name=actor_name,
                idempotency_key=idempotency_key,
            )
        except (TransitionError, RoutingError) as exc:
            logger.warning(
                "workflow_transition_refused",
                extra={
                    "request_id": str(request_id),
                    "actor_role": actor_role,
                    "action": action.value,
                    "code": exc.code,
                },
            )
            raise
        except StaleDataError as exc:
            logger.warning(
                "workflow_transition_conflict",
                extra={"request_id": str(request_id), "actor_role": actor_role},
            )
            raise ConcurrentModificationError(str(request_id)) from exc
        except IntegrityError as exc:
            logger.warning(
                "workflow_transition_conflict",
                extra={
                    "request_id": str(request_id),
                    "actor_role": actor_role,
                    "constraint": str(exc.orig),
                },
            )
            raise ConcurrentModificationError(str(request_id)) from exc
        except DBAPIError as exc:
            logger.error(
                "workflow_store_unavailable",
                extra={"request_id": str(request_id), "operation": "transition"},
            )
            raise PersistenceUnavailableError("transition", str(exc.orig)) from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply(
        self,
        request_id: UUID,
        *,
        actor_role: str,
        actor_id: str,
        action: Action,
        comment: str | None,
        actor_name: str | None,
        idempotency_key: str | None,
    ) -> TransitionOutcome:
        model = self._load_for_update(request_id)

        recorded = None
        if idempotency_key is not None:
            recorded = next(
                (e for e in model.history if e.idempotency_key == idempotency_key),
                None,
            )
        if recorded is not None and _same_command(recorded, actor_role, actor_id, action):
            logger.info(
                "workflow_transition_replayed",
                extra={
                    "request_id": str(request_id),
                    "idempotency_key": idempotency_key,
                    "seq": recorded.seq,
                },
            )
            return TransitionOutcome(
                request=model.to_dto(),
                entry=None,
                notification=None,
                replayed=True,
            )

        phase = Phase(model.phase)
        if phase in TERMINAL_PHASES:
            raise StaleOrTerminalError(str(request_id), phase.value, model.stage)
        if actor_role != model.current_approver_role:
            raise WrongApproverError(
                str(request_id), actor_role, model.current_approver_role,
            )
        if recorded is not None:
            raise IdempotencyKeyReusedError(str(request_id), idempotency_key, recorded.seq)

        template = self._registry.get(model.kind)
        comment = comment.strip() if comment else None

        if action == Action.REJECT:
            if not comment:
                if template.require_reject_comment:
                    raise RejectionReasonRequiredError(str(request_id), model.kind)
                comment = self._registry.canned_reject_reason(model.kind, actor_role)
            new_status = WorkflowStatus.rejected_by(actor_role)
            history_action = HistoryAction.REJECTED
        else:
            target = self._resolver.next_role(model.kind, model.payload, actor_role)
            if target is TERMINAL:
                new_status = WorkflowStatus.approved()
                history_action = HistoryAction.APPROVED
            else:
                new_status = WorkflowStatus.pending_at(target)
                history_action = HistoryAction.FORWARDED

        # WF-1
        assert is_valid_phase_transition(phase, new_status.phase)

        occurred_at = self._next_timestamp(model)
        last = model.last_entry
        entry = WorkflowHistoryEntryModel(
            request_id=model.request_id,
            seq=(last.seq + 1) if last is not None else 1,
            role=actor_role,
            actor_id=str(actor_id),
            actor_name=actor_name or str(actor_id),
            action=history_action.value,
            comment=comment,
            occurred_at=occurred_at,
            idempotency_key=idempotency_key,
        )
        model.history.append(entry)

        model.phase = new_status.phase.value
        model.stage = new_status.stage
        model.current_approver_role = new_status.current_approver_role
        model.updated_at = occurred_at

        self.session.flush()

        logger.info(
            "workflow_transition_applied",
            extra={
                "request_id": str(model.request_id),
                "kind": model.kind,
                "actor_role": actor_role,
                "actor_id": str(actor_id),
                "history_action": history_action.value,
                "from_stage": actor_role,
                "phase": model.phase,
                "stage": model.stage,
                "seq": entry.seq,
                "version": model.version,
            },
        )

        request_dto = model.to_dto()
        entry_dto = entry.to_dto()
        draft = (
            self._composer(request_dto, entry_dto, self._registry)
            if self._composer is not None
            else None
        )
        return TransitionOutcome(
            request=request_dto,
            entry=entry_dto,
            notification=draft,
        )

    def _load_for_update(self, request_id: UUID) -> WorkflowRequestModel:
        model = self.session.execute(
            select(WorkflowRequestModel)
            .where(WorkflowRequestModel.request_id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model

    def _next_timestamp(self, model: WorkflowRequestModel) -> datetime:
        """Clock time, clamped so history never goes backwards (WF-7)."""
        now = self._clock.now()
        last = model.last_entry
        floor = last.occurred_at if last is not None else model.created_at
        if floor is not None and now < floor:
            logger.warning(
                "workflow_clock_regression_clamped",
                extra={
                    "request_id": str(model.request_id),
                    "clock_now": now,
                    "clamped_to": floor,
                },
            )
            return floor
        return now


def _same_command(
    entry: WorkflowHistoryEntryModel, actor_role: str, actor_id: str, action: Action,
) -> bool:
    """True when ``entry`` records this role and actor issuing this action."""
    recorded_reject = entry.action == HistoryAction.REJECTED.value
    return (
        entry.role == actor_role
        and entry.actor_id == str(actor_id)
        and recorded_reject == (action == Action.REJECT)
    )
