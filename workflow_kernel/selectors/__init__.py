"""Read-only selectors."""

from workflow_kernel.selectors.notification_selector import NotificationSelector
from workflow_kernel.selectors.request_selector import RequestSelector
from workflow_kernel.selectors.worklist_selector import WorklistSelector

__all__ = [
    "RequestSelector",
    "WorklistSelector",
    "NotificationSelector",
]
