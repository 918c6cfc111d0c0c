"""Domain layer - pure value objects, zero I/O."""

from workflow_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SystemClock,
)
from workflow_kernel.domain.template import (
    TERMINAL,
    CategoryRouted,
    FixedChain,
    NextRoleResolver,
    NotificationComposer,
    TemplateRegistry,
    Terminal,
    WorkflowTemplate,
)
from workflow_kernel.domain.workflow import (
    FINAL_STAGE,
    Action,
    HistoryAction,
    HistoryEntry,
    NotificationDraft,
    NotificationRecord,
    Phase,
    Priority,
    ReadStatus,
    RequestKind,
    TransitionOutcome,
    WorkflowRequest,
    WorkflowStats,
    WorkflowStatus,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "TERMINAL",
    "Terminal",
    "FixedChain",
    "NextRoleResolver",
    "NotificationComposer",
    "CategoryRouted",
    "WorkflowTemplate",
    "TemplateRegistry",
    "FINAL_STAGE",
    "Phase",
    "Action",
    "HistoryAction",
    "Priority",
    "RequestKind",
    "ReadStatus",
    "WorkflowStatus",
    "HistoryEntry",
    "WorkflowRequest",
    "NotificationDraft",
    "NotificationRecord",
    "TransitionOutcome",
    "WorkflowStats",
]
