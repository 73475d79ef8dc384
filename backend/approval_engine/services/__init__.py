"""Service modules - Business logic layer"""
from .workflow_service import WorkflowService
from .delegation_service import DelegationService
from .notification_service import NotificationService
from .status_callback_service import StatusCallbackService, get_status_callback_service

__all__ = [
    "WorkflowService",
    "DelegationService",
    "NotificationService",
    "StatusCallbackService",
    "get_status_callback_service",
]
