"""Kernel services - write operations, flush-only."""

from workflow_kernel.services.notification_service import NotificationService
from workflow_kernel.services.request_service import RequestService
from workflow_kernel.services.transition_service import TransitionService

__all__ = [
    "RequestService",
    "TransitionService",
    "NotificationService",
]
