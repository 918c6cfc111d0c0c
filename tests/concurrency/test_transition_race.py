"""
Race tests for concurrent approvals of the same request.

Two approvers acting on the same pending request must serialize: exactly
one transition lands, the other is refused, and the history holds exactly
one entry for the stage.

- The interleaved test forces the losing transaction to read the request,
  then lets the winner commit before the loser writes.  The version
  compare-and-swap must turn the loser's write into
  ConcurrentModificationError.  It relies on SQLite not taking row locks.
- The threaded test runs real parallel approvals against PostgreSQL, where
  FOR UPDATE makes the loser wait and then see the new stage.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from workflow_engines.progress import compose_notification
from workflow_engines.routing import RoutingResolver
from workflow_kernel.db.engine import is_postgres, session_scope
from workflow_kernel.domain.clock import DeterministicClock
from workflow_kernel.exceptions import (
    ConcurrentModificationError,
    StaleOrTerminalError,
    WrongApproverError,
)
from workflow_kernel.selectors.request_selector import RequestSelector
from workflow_kernel.services.request_service import RequestService
from workflow_kernel.services.transition_service import TransitionService


class _InterleavingResolver:
    """Runs ``hook`` once, after the caller has read the request and
    before it writes."""

    def __init__(self, inner, hook):
        self._inner = inner
        self._hook = hook

    def next_role(self, kind, payload, current_role):
        if self._hook is not None:
            hook, self._hook = self._hook, None
            hook()
        return self._inner.next_role(kind, payload, current_role)


def _create_committed(session_factory, registry, kind="certificate"):
    with session_scope(session_factory) as session:
        return RequestService(session, registry, DeterministicClock()).create_request(
            kind, "s-1", {"document_type": "Bonafide"},
        )


class TestInterleavedRace:

    def test_lost_update_is_detected(self, session_factory, registry, captured_logs):
        if is_postgres():
            pytest.skip("FOR UPDATE blocks the interleaving on PostgreSQL")
        request = _create_committed(session_factory, registry)
        resolver = RoutingResolver(registry)

        def winner():
            with session_scope(session_factory) as session:
                TransitionService(session, registry, resolver).transition(
                    request.request_id, "clerk", "c-winner", "approve",
                )

        loser_session = session_factory()
        try:
            loser = TransitionService(
                loser_session,
                registry,
                _InterleavingResolver(resolver, winner),
                composer=compose_notification,
            )
            with pytest.raises(ConcurrentModificationError) as exc_info:
                loser.transition(request.request_id, "clerk", "c-loser", "approve")
            loser_session.rollback()
        finally:
            loser_session.close()

        assert exc_info.value.request_id == str(request.request_id)
        assert any(r["message"] == "workflow_transition_conflict" for r in captured_logs())

        with session_scope(session_factory) as session:
            stored = RequestSelector(session).get(request.request_id)
        assert [e.actor_id for e in stored.history] == ["c-winner"]
        assert stored.current_approver_role == "registrar"
        assert stored.version == 2

    def test_sequential_second_approver_sees_new_stage(self, session_factory, registry):
        request = _create_committed(session_factory, registry)
        resolver = RoutingResolver(registry)

        with session_scope(session_factory) as session:
            TransitionService(session, registry, resolver).transition(
                request.request_id, "clerk", "c-1", "approve",
            )
        with pytest.raises(WrongApproverError):
            with session_scope(session_factory) as session:
                TransitionService(session, registry, resolver).transition(
                    request.request_id, "clerk", "c-2", "approve",
                )


@pytest.mark.postgres
@pytest.mark.slow_locks
class TestThreadedRace:

    @pytest.mark.parametrize("action", ["approve", "reject"])
    def test_exactly_one_of_many_approvers_wins(self, session_factory, registry, action):
        request = _create_committed(session_factory, registry, kind="library_timing")
        resolver = RoutingResolver(registry)
        workers = 8
        barrier = Barrier(workers)

        def attempt(n):
            barrier.wait()
            try:
                with session_scope(session_factory) as session:
                    TransitionService(session, registry, resolver).transition(
                        request.request_id, "registrar", f"r-{n}", action,
                    )
                return "ok"
            except (WrongApproverError, StaleOrTerminalError, ConcurrentModificationError) as exc:
                return exc.code

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(attempt, range(workers)))

        assert results.count("ok") == 1
        with session_scope(session_factory) as session:
            stored = RequestSelector(session).get(request.request_id)
        assert len(stored.history) == 1
        assert [e.seq for e in stored.history] == [1]
