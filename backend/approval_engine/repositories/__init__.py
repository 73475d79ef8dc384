"""Repository modules - Data access layer"""
from .mongo_client import get_database, get_collection, use_database
from .workflow_repo import WorkflowRepository
from .instance_repo import InstanceRepository
from .delegation_repo import DelegationRepository
from .org_directory_repo import OrgDirectoryRepository
from .audit_repo import AuditRepository
from .notification_repo import NotificationRepository

__all__ = [
    "get_database",
    "get_collection",
    "use_database",
    "WorkflowRepository",
    "InstanceRepository",
    "DelegationRepository",
    "OrgDirectoryRepository",
    "AuditRepository",
    "NotificationRepository",
]
