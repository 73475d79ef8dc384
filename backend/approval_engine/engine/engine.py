"""
Workflow Engine - The Brain of the System

Public entry point of the approval core. Wires the pure components
(DirectoryResolver, GraphRouter, QuorumEvaluator, DelegationRegistry,
InstanceRunner) to persistence and side effects via the DecisionProcessor.

=============================================================================
MODULE STRUCTURE
=============================================================================

1. INITIALIZATION
   - Constructor with optional repository / service overrides

2. COMMANDS
   - start: resolve the applicable definition and start an instance
   - decide: approve / reject / return a step
   - cancel: applicant withdraws the request

3. QUERIES
   - get_pending_for: open steps an employee can decide, delegated ones included
   - get_instance / get_instance_by_request / list_instances
   - get_audit_trail
   - find_applicable_definition

=============================================================================
DEPENDENCIES
=============================================================================

Repositories:
    - WorkflowRepository, InstanceRepository, DelegationRepository,
      OrgDirectoryRepository, AuditRepository

Services:
    - WorkflowService: applicability lookups
    - NotificationService: outbox
    - StatusCallbackService: originating-module callbacks

=============================================================================
"""

from typing import Any, Dict, List, Optional
from datetime import datetime

from ..domain.models import WorkflowDefinition, WorkflowInstance, PendingApproval, AuditEvent
from ..domain.enums import AuditEventType, DecisionAction, InstanceStatus
from ..domain.errors import InstanceNotFoundError, DefinitionNotFoundError
from ..repositories.workflow_repo import WorkflowRepository
from ..repositories.instance_repo import InstanceRepository
from ..repositories.delegation_repo import DelegationRepository
from ..repositories.org_directory_repo import OrgDirectoryRepository
from ..repositories.audit_repo import AuditRepository
from ..services.notification_service import NotificationService
from ..services.status_callback_service import StatusCallbackService, get_status_callback_service
from ..config.settings import settings
from .directory_resolver import DirectoryResolver
from .delegation_registry import DelegationRegistry
from .graph_router import GraphRouter
from .quorum import QuorumEvaluator
from .instance_runner import InstanceRunner
from .audit_writer import AuditWriter
from .decision_processor import DecisionProcessor
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


class WorkflowEngine:
    """
    Core approval workflow engine

    All state changes go through the DecisionProcessor; reads go straight to
    the repositories.
    """

    def __init__(
        self,
        workflow_repo: Optional[WorkflowRepository] = None,
        instance_repo: Optional[InstanceRepository] = None,
        delegation_repo: Optional[DelegationRepository] = None,
        directory_repo: Optional[OrgDirectoryRepository] = None,
        audit_repo: Optional[AuditRepository] = None,
        notification_service: Optional[NotificationService] = None,
        callback_service: Optional[StatusCallbackService] = None
    ):
        self.workflow_repo = workflow_repo or WorkflowRepository()
        self.instance_repo = instance_repo or InstanceRepository()
        self.delegation_repo = delegation_repo or DelegationRepository()
        self.directory_repo = directory_repo or OrgDirectoryRepository()
        self.audit_repo = audit_repo or AuditRepository()
        self.notification_service = notification_service or NotificationService()
        self.callback_service = callback_service or get_status_callback_service()

        # Local import: workflow_service itself imports engine components
        from ..services.workflow_service import WorkflowService
        self.workflow_service = WorkflowService(self.workflow_repo, self.instance_repo)
        self.registry = DelegationRegistry(self.delegation_repo, settings.business_timezone)
        self.resolver = DirectoryResolver(
            self.directory_repo,
            department_head_min_level=settings.department_head_min_level,
            max_supervisor_hops=settings.max_supervisor_hops
        )
        self.runner = InstanceRunner(self.resolver, GraphRouter(), QuorumEvaluator())
        self.processor = DecisionProcessor(
            runner=self.runner,
            registry=self.registry,
            instance_repo=self.instance_repo,
            workflow_repo=self.workflow_repo,
            audit_writer=AuditWriter(self.audit_repo),
            notification_service=self.notification_service,
            callback_service=self.callback_service
        )

    # =========================================================================
    # Commands
    # =========================================================================

    def start(
        self,
        request_type: str,
        request_id: str,
        applicant_id: str,
        company_id: str,
        context_data: Optional[Dict[str, Any]] = None,
        definition_id: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> WorkflowInstance:
        """
        Start the approval workflow of a request

        Uses definition_id when given, otherwise the applicable definition for
        (applicant, company, request type).

        Raises:
            DefinitionNotFoundError, NoApproverResolvedError, ActiveInstanceExistsError
        """
        if definition_id:
            definition = self.workflow_repo.get_definition_or_raise(definition_id)
            if not definition.is_active:
                raise DefinitionNotFoundError(
                    f"Definition {definition_id} is not active",
                    details={"definition_id": definition_id}
                )
        else:
            definition = self.find_applicable_definition(company_id, request_type, applicant_id)

        return self.processor.start(
            definition=definition,
            request_type=request_type,
            request_id=request_id,
            applicant_id=applicant_id,
            company_id=company_id,
            context_data=context_data,
            correlation_id=correlation_id
        )

    def decide(
        self,
        instance_id: str,
        record_id: str,
        actor_id: str,
        action: DecisionAction,
        comment: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> WorkflowInstance:
        """Record an approver's decision; returns the updated instance"""
        return self.processor.decide(instance_id, record_id, actor_id, action, comment, correlation_id)

    def cancel(
        self,
        instance_id: str,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> WorkflowInstance:
        """Cancel a running instance (applicant only when actor_id is given)"""
        return self.processor.cancel(instance_id, actor_id, reason, correlation_id)

    # =========================================================================
    # Queries
    # =========================================================================

    def find_applicable_definition(
        self,
        company_id: str,
        request_type: str,
        employee_id: Optional[str] = None,
        at: Optional[datetime] = None
    ) -> WorkflowDefinition:
        return self.workflow_service.find_applicable(company_id, request_type, employee_id, at)

    def get_instance(self, instance_id: str) -> WorkflowInstance:
        return self.instance_repo.get_instance_or_raise(instance_id)

    def get_instance_by_request(self, request_type: str, request_id: str) -> WorkflowInstance:
        """Active instance of a request, else its most recent one"""
        instance = (
            self.instance_repo.get_active_by_request(request_type, request_id)
            or self.instance_repo.get_latest_by_request(request_type, request_id)
        )
        if instance is None:
            raise InstanceNotFoundError(
                f"No workflow for {request_type.upper()}/{request_id}",
                details={"request_type": request_type.upper(), "request_id": request_id}
            )
        return instance

    def list_instances(
        self,
        applicant_id: Optional[str] = None,
        status: Optional[InstanceStatus] = None,
        request_type: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[WorkflowInstance]:
        return self.instance_repo.list_instances(applicant_id, status, request_type, skip, limit)

    def get_audit_trail(
        self,
        instance_id: str,
        event_types: Optional[List[AuditEventType]] = None
    ) -> List[AuditEvent]:
        self.instance_repo.get_instance_or_raise(instance_id)
        return self.audit_repo.get_events_for_instance(instance_id, event_types)

    def get_pending_for(self, employee_id: str, now: Optional[datetime] = None) -> List[PendingApproval]:
        """
        Open steps the employee can decide right now

        Includes steps assigned to principals the employee currently stands in
        for; those entries carry acting_as_delegate_for.
        """
        now = now or utc_now()
        principals = self.registry.principals_for(employee_id, now)
        instances = self.instance_repo.find_with_open_records_for([employee_id] + principals)

        pending: List[PendingApproval] = []
        for instance in instances:
            for record in instance.open_records():
                acting_for = self._pending_role(instance, record, employee_id, principals, now)
                if acting_for is False:
                    continue
                pending.append(PendingApproval(
                    instance_id=instance.instance_id,
                    record_id=record.record_id,
                    node_id=record.node_id,
                    node_name=record.node_name,
                    request_type=instance.request_type,
                    request_id=instance.request_id,
                    applicant_id=instance.applicant_id,
                    company_id=instance.company_id,
                    assigned_approver_ids=record.assigned_approver_ids,
                    quorum_mode=record.quorum_mode,
                    assigned_at=record.assigned_at,
                    acting_as_delegate_for=acting_for
                ))

        pending.sort(key=lambda p: p.assigned_at)
        return pending

    def _pending_role(self, instance, record, employee_id, principals, now):
        """None when assigned directly, the principal when delegated, False when not actionable"""
        if employee_id in record.assigned_approver_ids:
            return None if not record.has_decided(employee_id) else False
        for principal_id in principals:
            if principal_id not in record.assigned_approver_ids or record.has_decided(principal_id):
                continue
            if self.registry.is_authorized(principal_id, employee_id, instance.request_type, instance.company_id, now):
                return principal_id
        return False
