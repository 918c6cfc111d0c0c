"""
Workflow engines - pure functions over workflow domain types.

No I/O, no sessions, no clock.  Callers pass in everything they need.
"""

from workflow_engines.progress import (
    FlowStep,
    StepState,
    approval_flow,
    compose_notification,
    describe_status,
    is_overdue,
    overdue_cutoff,
    replay_history,
    status_code,
)
from workflow_engines.routing import TERMINAL, RoutingResolver, next_role, routed_stages

__all__ = [
    "TERMINAL",
    "RoutingResolver",
    "next_role",
    "routed_stages",
    "FlowStep",
    "StepState",
    "approval_flow",
    "compose_notification",
    "describe_status",
    "is_overdue",
    "overdue_cutoff",
    "replay_history",
    "status_code",
]
