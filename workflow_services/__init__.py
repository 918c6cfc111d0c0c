"""
Workflow services - coordinators that own sessions and wire kernel
services to the pure engines and the configuration.
"""

from workflow_services.change_feed import ChangeFeed, RequestChange
from workflow_services.notification_emitter import NotificationEmitter
from workflow_services.workflow_gateway import WorkflowGateway

__all__ = [
    "WorkflowGateway",
    "NotificationEmitter",
    "ChangeFeed",
    "RequestChange",
]
