"""
Decision Processor - Transactional boundary around the instance runner

Loads an instance, checks the actor, lets the runner compute the transition,
commits it with an optimistic version check and only then dispatches side
effects (audit, notifications, status callback). Side effects are best-effort:
a failure there is logged and never rolls back a committed transition.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from ..domain.models import WorkflowDefinition, WorkflowInstance, ApprovalRecord, RunResult, EngineEvent
from ..domain.enums import AuditEventType, DecisionAction, InstanceStatus
from ..domain.errors import (
    ConcurrencyError, InstanceTerminalError, StepMismatchError,
    UnauthorizedActorError, ActiveInstanceExistsError
)
from ..repositories.instance_repo import InstanceRepository
from ..repositories.workflow_repo import WorkflowRepository
from ..services.notification_service import NotificationService
from ..services.status_callback_service import StatusCallbackService
from ..config.settings import settings
from .instance_runner import InstanceRunner
from .delegation_registry import DelegationRegistry
from .audit_writer import AuditWriter
from ..utils.idgen import generate_instance_id
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)

_FINAL_EVENTS = (
    AuditEventType.INSTANCE_APPROVED,
    AuditEventType.INSTANCE_REJECTED,
    AuditEventType.INSTANCE_CANCELLED,
)


class DecisionProcessor:
    """Apply starts, decisions and cancellations to stored instances"""

    def __init__(
        self,
        runner: InstanceRunner,
        registry: DelegationRegistry,
        instance_repo: InstanceRepository,
        workflow_repo: WorkflowRepository,
        audit_writer: AuditWriter,
        notification_service: NotificationService,
        callback_service: StatusCallbackService,
        max_retries: Optional[int] = None
    ):
        self.runner = runner
        self.registry = registry
        self.instance_repo = instance_repo
        self.workflow_repo = workflow_repo
        self.audit_writer = audit_writer
        self.notification_service = notification_service
        self.callback_service = callback_service
        self.max_retries = max(1, max_retries or settings.decision_max_retries)

    # =========================================================================
    # Start
    # =========================================================================

    def start(
        self,
        definition: WorkflowDefinition,
        request_type: str,
        request_id: str,
        applicant_id: str,
        company_id: str,
        context_data: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None
    ) -> WorkflowInstance:
        """
        Create, run and persist a new instance

        Nothing is stored when the runner fails (no approver, stalled route).
        """
        existing = self.instance_repo.get_active_by_request(request_type, request_id)
        if existing is not None:
            raise ActiveInstanceExistsError(
                f"Request {request_type.upper()}/{request_id} already has an active workflow",
                details={"instance_id": existing.instance_id}
            )

        result = self.runner.start(
            definition=definition,
            instance_id=generate_instance_id(),
            request_type=request_type,
            request_id=request_id,
            applicant_id=applicant_id,
            company_id=company_id,
            context_data=context_data,
            now=utc_now()
        )
        instance = self.instance_repo.create_instance(result.instance)

        logger.info(
            f"Started instance {instance.instance_id} for {instance.request_type}/{request_id}",
            extra={
                "instance_id": instance.instance_id,
                "definition_id": definition.definition_id,
                "status": instance.status.value,
                "actor_id": applicant_id
            }
        )
        self.dispatch_effects(None, result, correlation_id)
        return instance

    # =========================================================================
    # Decide
    # =========================================================================

    def decide(
        self,
        instance_id: str,
        record_id: str,
        actor_id: str,
        action: DecisionAction,
        comment: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> WorkflowInstance:
        """
        Record a decision and persist the resulting transition

        Raises:
            InstanceNotFoundError, InstanceTerminalError, StepMismatchError,
            UnauthorizedActorError, ConcurrencyError (retries exhausted)
        """
        for attempt in range(self.max_retries):
            before = self.instance_repo.get_instance_or_raise(instance_id)
            if before.status.is_terminal:
                raise InstanceTerminalError(
                    f"Instance {instance_id} is already {before.status.value}",
                    details={"instance_id": instance_id, "status": before.status.value}
                )

            record = before.get_record(record_id)
            if record is None or not record.is_open:
                raise StepMismatchError(
                    f"Record {record_id} is not an open step of instance {instance_id}",
                    details={"instance_id": instance_id, "record_id": record_id}
                )

            now = utc_now()
            acting_for = self._authorize(before, record, actor_id, now)
            definition = self.workflow_repo.get_version_or_raise(before.definition_id, before.definition_version)

            result = self.runner.record_decision(
                definition=definition,
                instance=before,
                record_id=record_id,
                actor_id=actor_id,
                action=action,
                comment=comment,
                now=now,
                acting_as_delegate_for=acting_for
            )

            try:
                instance = self.instance_repo.save_instance(result.instance, before.version)
            except ConcurrencyError:
                if attempt + 1 >= self.max_retries:
                    raise
                logger.warning(
                    f"Concurrent update on {instance_id}; retrying ({attempt + 1}/{self.max_retries})",
                    extra={"instance_id": instance_id, "record_id": record_id}
                )
                continue

            logger.info(
                f"Decision {action.value} by {actor_id} on {instance_id}: {instance.status.value}",
                extra={
                    "instance_id": instance_id,
                    "record_id": record_id,
                    "actor_id": actor_id,
                    "action": action.value,
                    "status": instance.status.value
                }
            )
            self.dispatch_effects(before, result, correlation_id)
            return instance

        raise ConcurrencyError(f"Instance {instance_id} could not be updated", details={"instance_id": instance_id})

    def _authorize(
        self,
        instance: WorkflowInstance,
        record: ApprovalRecord,
        actor_id: str,
        now: datetime
    ) -> Optional[str]:
        """
        Check the actor may decide on the record

        Returns:
            None when acting directly, else the principal the delegate stands in for
        """
        if actor_id in record.assigned_approver_ids:
            return None

        principals = [
            approver_id for approver_id in record.assigned_approver_ids
            if self.registry.is_authorized(
                approver_id, actor_id, instance.request_type, instance.company_id, now
            )
        ]
        if not principals:
            raise UnauthorizedActorError(
                f"{actor_id} is not an approver of record {record.record_id}",
                details={"instance_id": instance.instance_id, "record_id": record.record_id}
            )

        # Prefer a principal who has not decided yet; otherwise the runner reports the duplicate
        for principal_id in principals:
            if not record.has_decided(principal_id):
                return principal_id
        return principals[0]

    # =========================================================================
    # Cancel
    # =========================================================================

    def cancel(
        self,
        instance_id: str,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> WorkflowInstance:
        """Cancel a non-terminal instance; only the applicant may cancel"""
        for attempt in range(self.max_retries):
            before = self.instance_repo.get_instance_or_raise(instance_id)
            if before.status.is_terminal:
                raise InstanceTerminalError(
                    f"Instance {instance_id} is already {before.status.value}",
                    details={"instance_id": instance_id, "status": before.status.value}
                )
            if actor_id is not None and actor_id != before.applicant_id:
                raise UnauthorizedActorError(
                    f"Only the applicant can cancel instance {instance_id}",
                    details={"instance_id": instance_id}
                )

            definition = self.workflow_repo.get_version_or_raise(before.definition_id, before.definition_version)
            result = self.runner.cancel(definition, before, actor_id, reason, utc_now())

            try:
                instance = self.instance_repo.save_instance(result.instance, before.version)
            except ConcurrencyError:
                if attempt + 1 >= self.max_retries:
                    raise
                logger.warning(
                    f"Concurrent update on {instance_id} during cancel; retrying",
                    extra={"instance_id": instance_id}
                )
                continue

            self.dispatch_effects(before, result, correlation_id)
            return instance

        raise ConcurrencyError(f"Instance {instance_id} could not be updated", details={"instance_id": instance_id})

    # =========================================================================
    # Side effects
    # =========================================================================

    def dispatch_effects(
        self,
        before: Optional[WorkflowInstance],
        result: RunResult,
        correlation_id: Optional[str] = None
    ) -> None:
        """Audit, notify and call back after a committed transition"""
        instance = result.instance

        try:
            self.audit_writer.write_engine_events(result.events, correlation_id)
        except Exception as e:
            logger.error(
                f"Failed to write audit events for {instance.instance_id}: {e}",
                extra={"instance_id": instance.instance_id, "error_type": type(e).__name__}
            )

        try:
            self._send_notifications(before, instance, result.events)
        except Exception as e:
            logger.error(
                f"Failed to queue notifications for {instance.instance_id}: {e}",
                extra={"instance_id": instance.instance_id, "error_type": type(e).__name__}
            )

        if any(e.event_type in (AuditEventType.INSTANCE_APPROVED, AuditEventType.INSTANCE_REJECTED)
               for e in result.events):
            self.callback_service.notify_instance(instance)

    def _send_notifications(
        self,
        before: Optional[WorkflowInstance],
        instance: WorkflowInstance,
        events: List[EngineEvent]
    ) -> None:
        now = utc_now()
        for event in events:
            if event.event_type == AuditEventType.STEP_ASSIGNED:
                record = instance.get_record(event.record_id)
                if record is None or not record.is_open:
                    continue
                recipients, delegated_from = self._with_delegates(instance, event.recipients, now)
                self.notification_service.notify_approval_request(instance, record, recipients, delegated_from)

            elif event.event_type in _FINAL_EVENTS:
                recipients: Set[str] = set(event.recipients)
                if event.event_type == AuditEventType.INSTANCE_CANCELLED and before is not None:
                    for record in before.open_records():
                        recipients.update(record.assigned_approver_ids)
                    recipients.discard(event.actor_id)
                self.notification_service.notify_outcome(instance, sorted(recipients))
                if instance.status == InstanceStatus.APPROVED:
                    self.notification_service.notify_approval_cc(instance)

    def _with_delegates(
        self,
        instance: WorkflowInstance,
        approver_ids: List[str],
        now: datetime
    ):
        """Approvers plus the delegates currently standing in for them"""
        recipients = list(approver_ids)
        delegated_from: Dict[str, str] = {}
        for approver_id in approver_ids:
            delegate_id = self.registry.find_active_delegate(
                approver_id, now, instance.request_type, instance.company_id
            )
            if delegate_id and delegate_id not in recipients:
                recipients.append(delegate_id)
                delegated_from[delegate_id] = approver_id
        return recipients, delegated_from
