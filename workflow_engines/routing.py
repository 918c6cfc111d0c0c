"""
workflow_engines.routing -- Pure next-approver resolution.

Responsibility:
    Given a workflow template, the request payload and the role that just
    approved, decide who acts next, or that the chain is finished.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import workflow_kernel/domain/ types and exceptions.

Invariants enforced:
    - Routing totality: for every template and every role that can hold a
      request of that kind, ``next_role`` returns a role or ``TERMINAL``.
      Roles outside the template raise ``InvalidRoutingError``; nothing
      returns None.
    - Category routing never sends a request back to the intake role
      (rejected at config validation time, asserted here).
    - Purity: no clock access, no I/O, no database, no hidden state.

Failure modes:
    - InvalidRoutingError when ``current_role`` is not a stage of the
      template.
    - UnknownRequestKindError (from the registry) for unregistered kinds.
"""

from __future__ import annotations

from typing import Any, Mapping

from workflow_kernel.domain.template import (
    TERMINAL,
    CategoryRouted,
    FixedChain,
    TemplateRegistry,
    Terminal,
    WorkflowTemplate,
)
from workflow_kernel.exceptions import InvalidRoutingError

__all__ = [
    "TERMINAL",
    "RoutingResolver",
    "next_role",
    "routed_stages",
]


def next_role(
    template: WorkflowTemplate,
    payload: Mapping[str, Any],
    current_role: str,
) -> str | Terminal:
    """Resolve the role after ``current_role`` approves.

    Args:
        template: The kind's workflow template.
        payload: Request payload (only read by category-routed templates).
        current_role: The role that is approving.

    Returns:
        The next approver role, or ``TERMINAL`` if the approval finishes
        the chain.
    """
    if isinstance(template, FixedChain):
        return _next_in_chain(template, current_role)
    if isinstance(template, CategoryRouted):
        return _next_by_category(template, payload, current_role)
    raise InvalidRoutingError(
        getattr(template, "kind", "?"),
        current_role,
        f"unsupported template type {type(template).__name__}",
    )


def _next_in_chain(template: FixedChain, current_role: str) -> str | Terminal:
    try:
        index = template.stages.index(current_role)
    except ValueError:
        raise InvalidRoutingError(
            template.kind,
            current_role,
            f"role is not a stage of the chain {list(template.stages)}",
        ) from None
    if index == len(template.stages) - 1:
        return TERMINAL
    return template.stages[index + 1]


def _next_by_category(
    template: CategoryRouted,
    payload: Mapping[str, Any],
    current_role: str,
) -> str | Terminal:
    if current_role == template.intake_role:
        target = template.route_for(payload.get(template.category_field))
        if target == template.intake_role:
            raise InvalidRoutingError(
                template.kind,
                current_role,
                "category route points back to the intake role",
            )
        return target
    if current_role in template.roles:
        # Specialist sign-off closes the request.
        return TERMINAL
    raise InvalidRoutingError(
        template.kind,
        current_role,
        "role is neither the intake role nor a routed specialist",
    )


def routed_stages(
    template: WorkflowTemplate,
    payload: Mapping[str, Any],
) -> tuple[str, ...]:
    """The concrete stage sequence this request will travel.

    For a fixed chain this is the chain.  For a category-routed template
    it is the intake role followed by the specialist chosen from the
    payload.
    """
    if isinstance(template, FixedChain):
        return template.stages
    return (
        template.intake_role,
        template.route_for(payload.get(template.category_field)),
    )


class RoutingResolver:
    """Registry-backed resolver used by the transition service.

    Contract:
        Stateless apart from the immutable registry it wraps.  Satisfies
        ``workflow_kernel.domain.template.NextRoleResolver``.
    """

    def __init__(self, registry: TemplateRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> TemplateRegistry:
        return self._registry

    def next_role(
        self,
        kind: str,
        payload: Mapping[str, Any],
        current_role: str,
    ) -> str | Terminal:
        return next_role(self._registry.get(kind), payload, current_role)

    def first_role(self, kind: str) -> str:
        return self._registry.get(kind).first_role
