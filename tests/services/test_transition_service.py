"""
Tests for TransitionService -- the approve/reject engine.

Covers:
- full chains: achievement (3 stages), library_timing (2 stages)
- category routing: maintenance intake -> specialist -> approved
- refusals: wrong approver, terminal request, unknown request, bad action,
  missing rejection reason (with no write)
- canned rejection reasons for kinds that do not require one
- WF-5 exactly one history entry per transition, contiguous seq
- WF-7 history timestamps never go backwards (clock regression clamp)
- idempotency keys: a replay writes nothing and returns current state
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from workflow_engines.progress import compose_notification
from workflow_engines.routing import RoutingResolver
from workflow_kernel.domain.workflow import (
    FINAL_STAGE,
    Action,
    HistoryAction,
    Phase,
)
from workflow_kernel.exceptions import (
    IdempotencyKeyReusedError,
    InvalidActionError,
    RejectionReasonRequiredError,
    RequestNotFoundError,
    StaleOrTerminalError,
    WrongApproverError,
)
from workflow_kernel.selectors.request_selector import RequestSelector
from workflow_kernel.services.transition_service import TransitionService


@pytest.fixture
def transition_service(session, registry, deterministic_clock):
    return TransitionService(
        session,
        registry,
        RoutingResolver(registry),
        clock=deterministic_clock,
        composer=compose_notification,
    )


@pytest.fixture
def act(transition_service, deterministic_clock):
    """Apply a transition one minute after the previous one."""

    def _act(request, role, action="approve", **kwargs):
        deterministic_clock.advance(60)
        kwargs.setdefault("actor_id", f"{role}-7")
        return transition_service.transition(
            request.request_id, actor_role=role, action=action, **kwargs,
        )

    return _act


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestChains:

    def test_achievement_full_chain(self, create_request, act):
        request = create_request("achievement", payload={"title": "Robotics trophy"})
        assert request.current_approver_role == "teacher"

        first = act(request, "teacher")
        assert first.request.phase == Phase.PENDING
        assert first.request.current_approver_role == "hod"
        assert first.entry.action == HistoryAction.FORWARDED
        assert first.notification.type == "achievement_forwarded"

        second = act(request, "hod")
        assert second.request.current_approver_role == "principal"

        final = act(request, "principal", comment="Well done")
        assert final.request.phase == Phase.APPROVED
        assert final.request.stage == FINAL_STAGE
        assert final.request.current_approver_role is None
        assert final.entry.action == HistoryAction.APPROVED
        assert final.entry.comment == "Well done"
        assert [e.seq for e in final.request.history] == [1, 2, 3]
        assert [e.role for e in final.request.history] == ["teacher", "hod", "principal"]
        assert final.notification.message == (
            'Your achievement request "Robotics trophy" has been approved by Principal.'
        )

    def test_maintenance_routes_to_specialist(self, create_request, act):
        request = create_request(
            "maintenance", payload={"subject": "Sparking socket", "category": "Electrical"},
        )
        routed = act(request, "clerk")
        assert routed.request.current_approver_role == "electrical_technician"
        assert "forwarded to Electrical Technician" in routed.notification.message

        done = act(request, "electrical_technician")
        assert done.request.phase == Phase.APPROVED

    def test_maintenance_unmapped_category_goes_to_fallback(self, create_request, act):
        request = create_request("maintenance", payload={"subject": "Odd noise"})
        assert act(request, "clerk").request.current_approver_role == "registrar"

    def test_actor_name_defaults_to_actor_id(self, create_request, act):
        request = create_request("certificate")
        outcome = act(request, "clerk", actor_id="c-42")
        assert outcome.entry.actor_name == "c-42"

        named = act(request, "registrar", actor_name="R. Iyer")
        assert named.entry.actor_name == "R. Iyer"

    def test_action_accepts_enum(self, create_request, act):
        request = create_request("library_timing")
        outcome = act(request, "registrar", action=Action.APPROVE)
        assert outcome.request.current_approver_role == "principal"


class TestRejection:

    def test_reject_mid_chain(self, create_request, act):
        request = create_request("achievement")
        act(request, "teacher")
        outcome = act(request, "hod", action="reject", comment="  Proof missing  ")

        assert outcome.request.phase == Phase.REJECTED
        assert outcome.request.stage == "hod"
        assert outcome.request.current_approver_role is None
        assert outcome.entry.action == HistoryAction.REJECTED
        assert outcome.entry.comment == "Proof missing"
        assert outcome.notification.type == "achievement_rejected"
        assert outcome.notification.message.endswith("rejected by HOD: Proof missing")

    @pytest.mark.parametrize("comment", [None, "", "   "])
    def test_reason_required_for_achievement(self, create_request, act, session, comment):
        request = create_request("achievement")
        with pytest.raises(RejectionReasonRequiredError):
            act(request, "teacher", action="reject", comment=comment)

        stored = RequestSelector(session).get(request.request_id)
        assert stored.phase == Phase.PENDING
        assert stored.history == ()

    def test_canned_reason_when_not_required(self, create_request, act):
        request = create_request("certificate")
        outcome = act(request, "clerk", action="reject")
        assert outcome.entry.comment == "Rejected by Clerk"


# ---------------------------------------------------------------------------
# Refusals
# ---------------------------------------------------------------------------


class TestRefusals:

    def test_wrong_approver(self, create_request, act, session, captured_logs):
        request = create_request("achievement")
        with pytest.raises(WrongApproverError) as exc_info:
            act(request, "principal")

        assert exc_info.value.expected_role == "teacher"
        assert RequestSelector(session).get(request.request_id).history == ()
        refused = [r for r in captured_logs() if r["message"] == "workflow_transition_refused"]
        assert refused and refused[0]["code"] == "WRONG_APPROVER"

    @pytest.mark.parametrize("action", ["approve", "reject"])
    def test_terminal_request_is_closed(self, create_request, act, action):
        request = create_request("library_timing")
        act(request, "registrar")
        act(request, "principal")

        with pytest.raises(StaleOrTerminalError) as exc_info:
            act(request, "principal", action=action, comment="again")
        assert exc_info.value.phase == "approved"

    def test_rejected_request_is_closed(self, create_request, act):
        request = create_request("certificate")
        act(request, "clerk", action="reject")
        with pytest.raises(StaleOrTerminalError):
            act(request, "clerk")

    def test_unknown_request(self, transition_service):
        with pytest.raises(RequestNotFoundError):
            transition_service.transition(uuid4(), "clerk", "c-1", "approve")

    def test_invalid_action(self, create_request, transition_service):
        request = create_request("certificate")
        with pytest.raises(InvalidActionError):
            transition_service.transition(request.request_id, "clerk", "c-1", "escalate")


# ---------------------------------------------------------------------------
# History invariants
# ---------------------------------------------------------------------------


class TestHistory:

    def test_clock_regression_is_clamped(self, create_request, transition_service,
                                         deterministic_clock, captured_logs):
        request = create_request("achievement")
        deterministic_clock.advance(600)
        first = transition_service.transition(request.request_id, "teacher", "t-1", "approve")

        deterministic_clock.rewind(3600)
        second = transition_service.transition(request.request_id, "hod", "h-1", "approve")

        assert second.entry.occurred_at == first.entry.occurred_at
        assert second.request.updated_at >= first.request.updated_at
        assert any(
            r["message"] == "workflow_clock_regression_clamped" for r in captured_logs()
        )

    def test_first_entry_not_before_creation(self, create_request, transition_service,
                                             deterministic_clock):
        request = create_request("certificate")
        deterministic_clock.rewind(10)
        outcome = transition_service.transition(request.request_id, "clerk", "c-1", "approve")
        assert outcome.entry.occurred_at == request.created_at

    def test_updated_at_marks_stage_entry(self, create_request, act, deterministic_clock):
        request = create_request("certificate")
        outcome = act(request, "clerk")
        assert outcome.request.updated_at == deterministic_clock.now()
        assert outcome.request.updated_at - request.created_at == timedelta(seconds=60)

    def test_version_increments_per_transition(self, create_request, act):
        request = create_request("achievement")
        assert request.version == 1
        assert act(request, "teacher").request.version == 2
        assert act(request, "hod").request.version == 3

    def test_applied_log_carries_stage_move(self, create_request, act, captured_logs):
        request = create_request("certificate")
        act(request, "clerk")
        applied = [r for r in captured_logs() if r["message"] == "workflow_transition_applied"]
        assert applied[-1]["from_stage"] == "clerk"
        assert applied[-1]["stage"] == "registrar"
        assert applied[-1]["seq"] == 1


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------


class TestIdempotency:

    def test_replay_writes_nothing(self, create_request, act, session):
        request = create_request("certificate")
        first = act(request, "clerk", idempotency_key="k-1")
        again = act(request, "clerk", idempotency_key="k-1")

        assert again.replayed
        assert again.entry is None
        assert again.notification is None
        assert again.request.version == first.request.version
        assert len(RequestSelector(session).get(request.request_id).history) == 1

    def test_replay_after_later_transition_returns_current_state(self, create_request, act):
        request = create_request("certificate")
        act(request, "clerk", idempotency_key="k-1")
        act(request, "registrar", idempotency_key="k-2")

        again = act(request, "clerk", idempotency_key="k-1")
        assert again.replayed
        assert again.request.current_approver_role == "principal"

    def test_keys_are_scoped_to_the_request(self, create_request, act):
        one = create_request("certificate")
        two = create_request("certificate")
        act(one, "clerk", idempotency_key="same")
        outcome = act(two, "clerk", idempotency_key="same")
        assert not outcome.replayed
        assert outcome.entry.idempotency_key == "same"

    def test_key_from_another_role_does_not_bypass_gating(self, create_request, act, session):
        request = create_request("achievement")
        act(request, "teacher", idempotency_key="k")

        with pytest.raises(WrongApproverError):
            act(request, "principal", idempotency_key="k")

        stored = RequestSelector(session).get(request.request_id)
        assert stored.current_approver_role == "hod"
        assert len(stored.history) == 1

    def test_key_with_different_action_on_closed_request(self, create_request, act):
        request = create_request("certificate")
        act(request, "clerk", idempotency_key="k")
        act(request, "registrar")
        act(request, "principal", "reject", comment="Unpaid dues")

        with pytest.raises(StaleOrTerminalError):
            act(request, "registrar", idempotency_key="k")
        with pytest.raises(StaleOrTerminalError):
            act(request, "clerk", "reject", idempotency_key="k", comment="changed mind")

    def test_same_actor_different_action_is_not_a_replay(self, create_request, act):
        request = create_request("library_timing")
        act(request, "registrar", idempotency_key="k")

        with pytest.raises(WrongApproverError):
            act(request, "registrar", "reject", idempotency_key="k")

    def test_current_holder_reusing_a_recorded_key(self, create_request, act, session):
        request = create_request("certificate")
        act(request, "clerk", idempotency_key="k")

        with pytest.raises(IdempotencyKeyReusedError) as exc_info:
            act(request, "registrar", idempotency_key="k")

        assert exc_info.value.recorded_seq == 1
        stored = RequestSelector(session).get(request.request_id)
        assert stored.current_approver_role == "registrar"
        assert len(stored.history) == 1

    def test_different_actor_in_same_role_is_not_a_replay(self, create_request, act):
        request = create_request("certificate")
        act(request, "clerk", idempotency_key="k", actor_id="c-1")

        with pytest.raises(WrongApproverError):
            act(request, "clerk", idempotency_key="k", actor_id="c-2")
