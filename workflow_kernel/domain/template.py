"""
Workflow templates (``workflow_kernel.domain.template``).

Responsibility
--------------
The two template variants a request kind can use, the ``TERMINAL``
sentinel returned by routing once no approver remains, and the
``TemplateRegistry`` that maps kinds to templates.  Templates are built
from YAML by ``workflow_config`` and are never constructed ad hoc in
services.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Protocol, Union

from workflow_kernel.exceptions import UnknownRequestKindError

if TYPE_CHECKING:
    from workflow_kernel.domain.workflow import (
        HistoryEntry,
        NotificationDraft,
        WorkflowRequest,
    )


class Terminal:
    """Sentinel meaning "no further approver; the request is approved"."""

    _instance: Terminal | None = None

    def __new__(cls) -> Terminal:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "TERMINAL"

    def __reduce__(self):
        return (Terminal, ())


TERMINAL = Terminal()


@dataclass(frozen=True)
class FixedChain:
    """Ordered approver roles.  Approved once the last stage approves."""

    kind: str
    stages: tuple[str, ...]
    require_reject_comment: bool = False
    default_reject_comment: str = "Rejected by {role_name}"
    max_response_hours: int | None = None

    @property
    def first_role(self) -> str:
        return self.stages[0]

    @property
    def roles(self) -> tuple[str, ...]:
        return self.stages


@dataclass(frozen=True)
class CategoryRouted:
    """Intake role approves, then a specialist picked from the payload.

    ``routes`` maps category values to specialist roles.  Categories that
    are missing or unmapped go to ``fallback_role``.  Approval by the
    specialist is terminal.
    """

    kind: str
    intake_role: str
    category_field: str
    routes: dict[str, str] = field(default_factory=dict)
    fallback_role: str = "registrar"
    require_reject_comment: bool = False
    default_reject_comment: str = "Rejected by {role_name}"
    max_response_hours: int | None = None

    @property
    def first_role(self) -> str:
        return self.intake_role

    @property
    def roles(self) -> tuple[str, ...]:
        seen: list[str] = [self.intake_role]
        for role in (*self.routes.values(), self.fallback_role):
            if role not in seen:
                seen.append(role)
        return tuple(seen)

    def route_for(self, category: object) -> str:
        if isinstance(category, str):
            return self.routes.get(category.strip().lower(), self.fallback_role)
        return self.fallback_role


WorkflowTemplate = Union[FixedChain, CategoryRouted]


@dataclass(frozen=True)
class TemplateRegistry:
    """Kind -> template lookup plus role display names.

    ``checksum`` is the SHA-256 of the source configuration, logged with
    every load so a transition can be traced to the templates in force.
    """

    templates: dict[str, WorkflowTemplate]
    role_names: dict[str, str] = field(default_factory=dict)
    checksum: str = ""

    def get(self, kind: str) -> WorkflowTemplate:
        try:
            return self.templates[kind]
        except KeyError:
            raise UnknownRequestKindError(kind) from None

    def kinds(self) -> tuple[str, ...]:
        return tuple(sorted(self.templates))

    def display_name(self, role: str) -> str:
        return self.role_names.get(role) or role.replace("_", " ").title()

    def canned_reject_reason(self, kind: str, role: str) -> str:
        template = self.get(kind)
        return template.default_reject_comment.format(
            role_name=self.display_name(role)
        )


# =========================================================================
# Engine seams
# =========================================================================


class NextRoleResolver(Protocol):
    """Picks the role after ``current_role`` approves, or ``TERMINAL``.

    Implemented by ``workflow_engines.routing.RoutingResolver``; kernel
    services depend only on this protocol.
    """

    def next_role(
        self, kind: str, payload: Mapping[str, Any], current_role: str,
    ) -> str | Terminal:
        ...


class NotificationComposer(Protocol):
    """Builds the notification for a just-applied history entry."""

    def __call__(
        self,
        request: WorkflowRequest,
        entry: HistoryEntry,
        registry: TemplateRegistry,
    ) -> NotificationDraft:
        ...
