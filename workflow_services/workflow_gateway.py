"""
workflow_services.workflow_gateway -- The workflow core's public surface.

Responsibility:
    Thin coordinator that owns transaction boundaries.  Each call opens
    one ``session_scope()``, delegates to kernel services/selectors and
    pure engines, commits, and only then runs the side effects: the
    notification write and the change-feed publish.

Architecture position:
    Services layer.  May import from workflow_engines/ (pure engines),
    workflow_kernel/ (domain, services, selectors) and workflow_config/.

Invariants enforced:
    - One transaction per command: the status change and its history
      entry commit together or not at all.
    - Side effects run after commit, never inside the transition's
      transaction; a failed notification cannot roll back a transition.
    - Replayed (idempotent) transitions produce no side effects.

Failure modes:
    - Typed kernel errors propagate unchanged.
    - Store failures at commit time raise PersistenceUnavailableError.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Generator
from uuid import UUID

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from workflow_config import get_active_templates, get_settings
from workflow_engines.progress import (
    FlowStep,
    approval_flow,
    compose_notification,
    describe_status,
    replay_history,
)
from workflow_engines.routing import RoutingResolver
from workflow_kernel.db.engine import (
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.template import TemplateRegistry
from workflow_kernel.domain.workflow import (
    Action,
    NotificationRecord,
    Priority,
    TransitionOutcome,
    WorkflowRequest,
    WorkflowStats,
    WorkflowStatus,
)
from workflow_kernel.exceptions import (
    HistoryInconsistencyError,
    PersistenceUnavailableError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.selectors.notification_selector import NotificationSelector
from workflow_kernel.selectors.request_selector import RequestSelector
from workflow_kernel.selectors.worklist_selector import WorklistSelector
from workflow_kernel.services.notification_service import NotificationService
from workflow_kernel.services.request_service import RequestService
from workflow_kernel.services.transition_service import TransitionService
from workflow_services.change_feed import (
    CHANGE_CREATED,
    CHANGE_TRANSITIONED,
    ChangeFeed,
    RequestChange,
)
from workflow_services.notification_emitter import NotificationEmitter

logger = get_logger("services.workflow_gateway")


class WorkflowGateway:
    """Entry point for creators, dashboards and admin tools.

    Contract:
        Every write method commits before returning.  Read methods open a
        short transaction of their own.

    Non-goals:
        - Authentication: the caller's ``actor_role`` is trusted.
        - Retrying: ``PersistenceUnavailableError`` is raised to the caller.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        registry: TemplateRegistry | None = None,
        clock: Clock | None = None,
        emitter: NotificationEmitter | None = None,
        feed: ChangeFeed | None = None,
    ) -> None:
        self._session_factory = session_factory or get_session_factory()
        self._registry = registry or get_active_templates()
        self._clock = clock or SystemClock()
        self._resolver = RoutingResolver(self._registry)
        self._emitter = emitter or NotificationEmitter(
            self._session_factory, self._clock,
        )
        self._feed = feed or ChangeFeed()

    @classmethod
    def from_settings(cls, config_dir: Path | None = None, **kwargs: Any) -> WorkflowGateway:
        """Initialize the engine from ``settings.yaml`` and build a gateway."""
        settings = get_settings(config_dir)
        db = settings.database
        init_engine_from_url(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            statement_timeout_ms=db.statement_timeout_ms,
        )
        registry = kwargs.pop("registry", None) or get_active_templates(config_dir)
        return cls(get_session_factory(), registry=registry, **kwargs)

    @property
    def registry(self) -> TemplateRegistry:
        return self._registry

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_request(
        self,
        kind: str,
        subject_id: str,
        payload: dict[str, Any],
        priority: Priority | str = Priority.MEDIUM,
    ) -> WorkflowRequest:
        with LogContext.bind(kind=kind):
            with self._unit_of_work("create_request") as session:
                request = RequestService(
                    session, self._registry, self._clock,
                ).create_request(kind, subject_id, payload, priority)

        self._feed.publish(RequestChange(CHANGE_CREATED, request))
        return request

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
        """Approve or reject on behalf of ``actor_role``.

        The notification is written after the commit, in its own
        transaction; its failure is logged and does not surface here.
        """
        with LogContext.bind(
            request_id=str(request_id),
            actor_id=str(actor_id),
            actor_role=actor_role,
        ):
            with self._unit_of_work("transition") as session:
                outcome = TransitionService(
                    session,
                    self._registry,
                    self._resolver,
                    clock=self._clock,
                    composer=compose_notification,
                ).transition(
                    request_id,
                    actor_role=actor_role,
                    actor_id=actor_id,
                    action=action,
                    comment=comment,
                    actor_name=actor_name,
                    idempotency_key=idempotency_key,
                )

            if outcome.replayed:
                return outcome

            if outcome.notification is not None:
                self._emitter.emit(outcome.notification)
            self._feed.publish(
                RequestChange(CHANGE_TRANSITIONED, outcome.request, outcome.entry)
            )
        return outcome

    def approve(self, request_id: UUID, actor_role: str, actor_id: str, **kwargs: Any) -> TransitionOutcome:
        return self.transition(request_id, actor_role, actor_id, Action.APPROVE, **kwargs)

    def reject(self, request_id: UUID, actor_role: str, actor_id: str, **kwargs: Any) -> TransitionOutcome:
        return self.transition(request_id, actor_role, actor_id, Action.REJECT, **kwargs)

    def mark_notification_read(self, notification_id: UUID) -> NotificationRecord:
        with self._unit_of_work("mark_notification_read") as session:
            return NotificationService(session, self._clock).mark_read(notification_id)

    def archive_notification(self, notification_id: UUID) -> NotificationRecord:
        with self._unit_of_work("archive_notification") as session:
            return NotificationService(session, self._clock).archive(notification_id)

    def subscribe(
        self, callback: Callable[[RequestChange], None], kind: str | None = None,
    ) -> Callable[[], None]:
        return self._feed.subscribe(callback, kind=kind)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> WorkflowRequest:
        with self._unit_of_work("get_request") as session:
            return RequestSelector(session).get(request_id)

    def list_actionable(self, role: str, kind: str | None = None) -> list[WorkflowRequest]:
        with self._unit_of_work("list_actionable") as session:
            return WorklistSelector(session).list_actionable(role, kind=kind)

    def list_submitted(self, subject_id: str, kind: str | None = None) -> list[WorkflowRequest]:
        with self._unit_of_work("list_submitted") as session:
            return WorklistSelector(session).list_submitted(subject_id, kind=kind)

    def list_overdue(self, role: str | None = None) -> list[WorkflowRequest]:
        with self._unit_of_work("list_overdue") as session:
            return WorklistSelector(
                session, self._registry, self._clock,
            ).list_overdue(role)

    def stats(self, role: str | None = None, subject_id: str | None = None) -> WorkflowStats:
        with self._unit_of_work("stats") as session:
            return WorklistSelector(
                session, self._registry, self._clock,
            ).stats(role=role, subject_id=subject_id)

    def notifications(self, subject_id: str, unread_only: bool = False) -> list[NotificationRecord]:
        with self._unit_of_work("notifications") as session:
            return NotificationSelector(session).list_for_subject(
                subject_id, unread_only=unread_only,
            )

    def describe(self, request_id: UUID) -> str:
        """Display status, e.g. ``Pending at HOD``."""
        return describe_status(self.get_request(request_id), self._registry.role_names)

    def approval_flow(self, request_id: UUID) -> tuple[FlowStep, ...]:
        request = self.get_request(request_id)
        return approval_flow(
            self._registry.get(request.kind), request, self._registry.role_names,
        )

    def verify_consistency(self, request_id: UUID) -> WorkflowStatus:
        """Replay history and compare with the stored status.

        Raises:
            HistoryInconsistencyError: if they differ.
        """
        request = self.get_request(request_id)
        expected = replay_history(
            self._registry.get(request.kind),
            request.payload,
            request.history,
            request_id=str(request_id),
        )
        if expected != request.status:
            logger.error(
                "workflow_history_inconsistent",
                extra={
                    "request_id": str(request_id),
                    "expected_phase": expected.phase.value,
                    "expected_stage": expected.stage,
                    "stored_phase": request.phase.value,
                    "stored_stage": request.stage,
                },
            )
            raise HistoryInconsistencyError(
                str(request_id),
                f"{expected.phase.value}@{expected.stage}",
                f"{request.phase.value}@{request.stage}",
            )
        return expected

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _unit_of_work(self, operation: str) -> Generator[Session, None, None]:
        """session_scope() with commit-time store failures typed."""
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except DBAPIError as exc:
            raise PersistenceUnavailableError(operation, str(exc.orig)) from exc
