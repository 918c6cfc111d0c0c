"""ORM models for the workflow kernel."""

from workflow_kernel.models.notification import NotificationModel
from workflow_kernel.models.request import (
    WorkflowHistoryEntryModel,
    WorkflowRequestModel,
)

__all__ = [
    "WorkflowRequestModel",
    "WorkflowHistoryEntryModel",
    "NotificationModel",
]
