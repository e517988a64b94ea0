"""
Application services package.

Contains the synchronization and workflow services of the sync client.
"""

from application.services.bulk_operation_service import BulkOperationCoordinator
from application.services.change_poller import ChangePoller, PollScope, SubscriptionHandle
from application.services.entity_gateway import EntityGateway
from application.services.notification_reconciler import NotificationReconciler
from application.services.sync_service import SyncService
from application.services.workflow import StatusWorkflowEngine, TransitionGraph

__all__ = [
    "BulkOperationCoordinator",
    "ChangePoller",
    "EntityGateway",
    "NotificationReconciler",
    "PollScope",
    "StatusWorkflowEngine",
    "SubscriptionHandle",
    "SyncService",
    "TransitionGraph",
]
