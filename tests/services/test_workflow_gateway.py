"""
Tests for WorkflowGateway -- committed commands and post-commit effects.

Covers:
- end-to-end scenarios through committed transactions
- notifications written after commit, best-effort, optionally to a
  separate store
- change feed: delivery, kind filter, failing subscribers, unsubscribe
- idempotent replays produce no side effects
- store failures surface as retryable PersistenceUnavailableError
- verify_consistency detects a tampered request row
"""

from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

import pytest

from workflow_config.loader import DATABASE_URL_ENV
from workflow_engines.progress import StepState
from workflow_kernel.db.base import Base
from workflow_kernel.db.engine import create_tables, reset_engine
from workflow_kernel.domain.workflow import Phase, ReadStatus, WorkflowStatus
from workflow_kernel.exceptions import (
    HistoryInconsistencyError,
    PersistenceUnavailableError,
    StaleOrTerminalError,
    WrongApproverError,
)
from workflow_services.change_feed import CHANGE_CREATED, CHANGE_TRANSITIONED, ChangeFeed
from workflow_services.notification_emitter import NotificationEmitter
from workflow_services.workflow_gateway import WorkflowGateway


class TestScenarios:

    def test_achievement_end_to_end(self, gateway, deterministic_clock):
        request = gateway.create_request(
            "achievement", "s-1001", {"title": "State chess champion"},
        )
        for role in ("teacher", "hod", "principal"):
            deterministic_clock.advance(60)
            gateway.approve(request.request_id, role, f"{role}-1")

        final = gateway.get_request(request.request_id)
        assert final.phase == Phase.APPROVED
        assert gateway.describe(request.request_id) == "Approved"
        assert gateway.list_actionable("principal") == []

        notes = gateway.notifications("s-1001")
        assert [n.type for n in notes] == [
            "achievement_approved", "achievement_forwarded", "achievement_forwarded",
        ]

    def test_maintenance_electrical(self, gateway):
        request = gateway.create_request(
            "maintenance", "staff-3", {"subject": "Tripped breaker", "category": "electrical"},
            priority="urgent",
        )
        gateway.approve(request.request_id, "clerk", "c-1")
        assert [r.request_id for r in gateway.list_actionable("electrical_technician")] == [
            request.request_id,
        ]
        gateway.approve(request.request_id, "electrical_technician", "e-1")
        assert gateway.get_request(request.request_id).phase == Phase.APPROVED

    def test_reject_mid_chain_shows_in_flow(self, gateway):
        request = gateway.create_request("library_resource", "s-2", {"resource_title": "SICP"})
        gateway.approve(request.request_id, "asst_librarian", "l-1")
        gateway.reject(request.request_id, "registrar", "r-1", comment="Over budget")

        assert gateway.describe(request.request_id) == "Rejected by Registrar"
        states = [s.state for s in gateway.approval_flow(request.request_id)]
        assert states == [StepState.APPROVED, StepState.REJECTED, StepState.SKIPPED]
        assert [r.request_id for r in gateway.list_submitted("s-2")] == [request.request_id]

    def test_refusal_leaves_request_untouched(self, gateway):
        request = gateway.create_request("certificate", "s-3", {"document_type": "Transcript"})
        with pytest.raises(WrongApproverError):
            gateway.approve(request.request_id, "principal", "p-1")

        stored = gateway.get_request(request.request_id)
        assert stored.version == 1
        assert stored.history == ()
        assert gateway.notifications("s-3") == []

    def test_stats_and_overdue(self, gateway, deterministic_clock):
        gateway.create_request("maintenance", "s-4", {"category": "safety"})
        deterministic_clock.advance(hours=30)
        assert gateway.stats(role="clerk").overdue == 1
        assert len(gateway.list_overdue(role="clerk")) == 1


class TestNotifications:

    def test_notification_lifecycle(self, gateway):
        request = gateway.create_request("certificate", "s-5", {"document_type": "Bonafide"})
        gateway.approve(request.request_id, "clerk", "c-1")

        (note,) = gateway.notifications("s-5")
        assert note.read_status == ReadStatus.UNREAD
        assert gateway.mark_notification_read(note.notification_id).read_status == ReadStatus.READ
        assert gateway.notifications("s-5", unread_only=True) == []
        gateway.archive_notification(note.notification_id)
        assert gateway.notifications("s-5") == []

    def test_emit_failure_does_not_undo_transition(self, session_factory, registry,
                                                   deterministic_clock, captured_logs):
        def broken_factory():
            raise OperationalError("INSERT", {}, Exception("notification store down"))

        gateway = WorkflowGateway(
            session_factory,
            registry=registry,
            clock=deterministic_clock,
            emitter=NotificationEmitter(broken_factory, deterministic_clock),
        )
        request = gateway.create_request("certificate", "s-6", {})
        outcome = gateway.approve(request.request_id, "clerk", "c-1")

        assert outcome.request.current_approver_role == "registrar"
        assert gateway.get_request(request.request_id).current_approver_role == "registrar"
        failures = [r for r in captured_logs() if r["message"] == "notification_emit_failed"]
        assert len(failures) == 1
        assert failures[0]["level"] == "WARNING"

    def test_separate_notification_store(self, tmp_path, session_factory, registry,
                                         deterministic_clock):
        other = create_engine(f"sqlite:///{tmp_path / 'notifications.db'}")
        Base.metadata.create_all(other)
        other_factory = sessionmaker(bind=other, expire_on_commit=False)
        try:
            gateway = WorkflowGateway(
                session_factory,
                registry=registry,
                clock=deterministic_clock,
                emitter=NotificationEmitter(other_factory, deterministic_clock),
            )
            request = gateway.create_request("library_timing", "s-7", {})
            gateway.approve(request.request_id, "registrar", "r-1")

            assert gateway.notifications("s-7") == []
            with other.connect() as conn:
                count = conn.execute(
                    text("SELECT count(*) FROM workflow_notifications WHERE subject_id = 's-7'")
                ).scalar_one()
            assert count == 1
        finally:
            other.dispose()


class TestChangeFeed:

    def test_created_and_transitioned_are_published(self, gateway):
        seen = []
        gateway.subscribe(seen.append)

        request = gateway.create_request("certificate", "s-8", {})
        gateway.approve(request.request_id, "clerk", "c-1")

        assert [c.change_type for c in seen] == [CHANGE_CREATED, CHANGE_TRANSITIONED]
        assert seen[1].request.current_approver_role == "registrar"
        assert seen[1].entry.role == "clerk"

    def test_kind_filter_and_unsubscribe(self, gateway):
        maintenance_only = []
        unsubscribe = gateway.subscribe(maintenance_only.append, kind="maintenance")

        gateway.create_request("certificate", "s-9", {})
        gateway.create_request("maintenance", "s-9", {"category": "cleaning"})
        assert [c.kind for c in maintenance_only] == ["maintenance"]

        unsubscribe()
        gateway.create_request("maintenance", "s-9", {})
        assert len(maintenance_only) == 1
        assert gateway.feed.subscriber_count() == 0

    def test_failing_subscriber_is_isolated(self, gateway, captured_logs):
        received = []

        def explode(change):
            raise RuntimeError("dashboard offline")

        gateway.subscribe(explode)
        gateway.subscribe(received.append)
        request = gateway.create_request("certificate", "s-10", {})

        assert len(received) == 1
        assert gateway.get_request(request.request_id).phase == Phase.PENDING
        assert any(r["message"] == "change_subscriber_failed" for r in captured_logs())

    def test_feed_can_be_shared(self, session_factory, registry, deterministic_clock):
        feed = ChangeFeed()
        seen = []
        feed.subscribe(seen.append)
        gateway = WorkflowGateway(
            session_factory, registry=registry, clock=deterministic_clock, feed=feed,
        )
        gateway.create_request("library_timing", "s-11", {})
        assert len(seen) == 1


class TestIdempotentReplay:

    def test_replay_has_no_side_effects(self, gateway):
        seen = []
        request = gateway.create_request("certificate", "s-12", {})
        gateway.subscribe(seen.append)

        first = gateway.approve(request.request_id, "clerk", "c-1", idempotency_key="click-1")
        again = gateway.approve(request.request_id, "clerk", "c-1", idempotency_key="click-1")

        assert not first.replayed
        assert again.replayed
        assert len(seen) == 1
        assert len(gateway.notifications("s-12")) == 1
        assert len(gateway.get_request(request.request_id).history) == 1

    def test_colliding_key_from_wrong_role_is_refused(self, gateway):
        seen = []
        request = gateway.create_request("achievement", "s-16", {"title": "Quiz"})
        gateway.approve(request.request_id, "teacher", "t-1", idempotency_key="k")
        gateway.subscribe(seen.append)

        with pytest.raises(WrongApproverError):
            gateway.approve(request.request_id, "principal", "p-1", idempotency_key="k")

        assert seen == []
        assert gateway.describe(request.request_id) == "Pending at HOD"

    def test_colliding_key_on_rejected_request_is_refused(self, gateway):
        request = gateway.create_request("certificate", "s-17", {})
        gateway.approve(request.request_id, "clerk", "c-1")
        gateway.approve(request.request_id, "registrar", "r-1", idempotency_key="k")
        gateway.reject(request.request_id, "principal", "p-1", comment="Missing fee receipt")

        with pytest.raises(StaleOrTerminalError):
            gateway.approve(request.request_id, "registrar", "r-2", idempotency_key="k")
        assert gateway.get_request(request.request_id).phase == Phase.REJECTED


class TestFromSettings:

    def test_builds_gateway_from_config_dir(self, tmp_path, monkeypatch):
        sets_dir = Path(__file__).resolve().parents[2] / "workflow_config" / "sets"
        monkeypatch.setenv(DATABASE_URL_ENV, f"sqlite:///{tmp_path / 'settings.db'}")
        try:
            gateway = WorkflowGateway.from_settings(sets_dir)
            create_tables()
            request = gateway.create_request("library_timing", "s-18", {})
            assert gateway.get_request(request.request_id).current_approver_role == "registrar"
            assert "library_timing" in gateway.registry.kinds()
        finally:
            reset_engine()


class TestFailures:

    def test_unreachable_store_is_retryable(self, tmp_path, registry, deterministic_clock):
        missing = tmp_path / "no-such-dir" / "workflow.db"
        engine = create_engine(f"sqlite:///{missing}")
        try:
            gateway = WorkflowGateway(
                sessionmaker(bind=engine), registry=registry, clock=deterministic_clock,
            )
            with pytest.raises(PersistenceUnavailableError) as exc_info:
                gateway.create_request("certificate", "s-13", {})
            assert exc_info.value.retryable
            assert exc_info.value.code == "PERSISTENCE_UNAVAILABLE"
        finally:
            engine.dispose()


class TestVerifyConsistency:

    def test_consistent_request(self, gateway):
        request = gateway.create_request("achievement", "s-14", {"title": "Debate"})
        gateway.approve(request.request_id, "teacher", "t-1")
        assert gateway.verify_consistency(request.request_id) == WorkflowStatus.pending_at("hod")

    def test_tampered_row_is_detected(self, gateway, db_engine, captured_logs):
        request = gateway.create_request("achievement", "s-15", {"title": "Debate"})
        gateway.approve(request.request_id, "teacher", "t-1")

        with db_engine.begin() as conn:
            conn.execute(
                text(
                    "UPDATE workflow_requests "
                    "SET stage = 'principal', current_approver_role = 'principal' "
                    "WHERE request_id = :rid"
                ),
                {"rid": str(request.request_id)},
            )

        with pytest.raises(HistoryInconsistencyError) as exc_info:
            gateway.verify_consistency(request.request_id)
        assert exc_info.value.expected == "pending@hod"
        assert exc_info.value.actual == "pending@principal"
        assert any(r["message"] == "workflow_history_inconsistent" for r in captured_logs())
