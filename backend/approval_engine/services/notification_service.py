"""Notification Service - Outbox creation and webhook delivery

Notifications are written to the outbox synchronously and delivered later by
the scheduler. Creating one never raises: a failed notification must not undo
the workflow transition that produced it.
"""
from datetime import date
from typing import Any, Dict, Iterable, List, Optional
import httpx

from ..domain.models import NotificationOutbox, WorkflowInstance, ApprovalRecord, Delegation
from ..domain.enums import NotificationStatus, NotificationKind
from ..domain.errors import NotificationDeliveryError
from ..repositories.notification_repo import NotificationRepository
from ..config.settings import settings
from ..config.request_types import get_request_type_info, build_request_link
from ..utils.idgen import generate_notification_id
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)

REF_TYPE_INSTANCE = "WORKFLOW_INSTANCE"
REF_TYPE_DELEGATION = "DELEGATION"


class NotificationService:
    """Service for queueing and delivering notifications"""

    def __init__(self, repo: Optional[NotificationRepository] = None):
        self.repo = repo or NotificationRepository()

    # =========================================================================
    # Outbox Creation
    # =========================================================================

    def notify(
        self,
        user_id: str,
        kind: NotificationKind,
        title: str,
        message: str,
        link: Optional[str] = None,
        ref_type: Optional[str] = None,
        ref_id: Optional[str] = None
    ) -> Optional[NotificationOutbox]:
        """
        Queue one notification.

        Failures are logged and swallowed; returns None when nothing was queued.
        """
        try:
            notification = NotificationOutbox(
                notification_id=generate_notification_id(),
                recipient_id=user_id,
                kind=kind,
                title=title,
                message=message,
                link=link,
                ref_type=ref_type,
                ref_id=ref_id,
                status=NotificationStatus.PENDING,
                created_at=utc_now()
            )
            return self.repo.create_notification(notification)
        except Exception as e:
            logger.error(
                f"Failed to queue {kind.value} notification for {user_id}: {e}",
                extra={"actor_id": user_id, "error_type": type(e).__name__}
            )
            return None

    def notify_approval_request(
        self,
        instance: WorkflowInstance,
        record: ApprovalRecord,
        recipient_ids: Iterable[str],
        delegated_from: Optional[Dict[str, str]] = None
    ) -> List[NotificationOutbox]:
        """
        Tell newly assigned approvers (and delegates standing in) a step awaits them

        Args:
            delegated_from: delegate_id -> principal_id for recipients who are delegates
        """
        info = get_request_type_info(instance.request_type)
        link = build_request_link(settings.frontend_url, instance.request_type, instance.request_id)
        delegated_from = delegated_from or {}

        queued = []
        for recipient_id in recipient_ids:
            message = f"{info.label} {instance.request_id} is waiting for your approval at step \"{record.node_name}\"."
            principal_id = delegated_from.get(recipient_id)
            if principal_id:
                message += f" You are acting on behalf of {principal_id}."
            notification = self.notify(
                user_id=recipient_id,
                kind=NotificationKind.APPROVAL_REQUEST,
                title=f"Approval required: {info.label}",
                message=message,
                link=link,
                ref_type=REF_TYPE_INSTANCE,
                ref_id=instance.instance_id
            )
            if notification:
                queued.append(notification)
        return queued

    def notify_outcome(
        self,
        instance: WorkflowInstance,
        recipient_ids: Iterable[str]
    ) -> List[NotificationOutbox]:
        """Tell the applicant (or others) how the request ended"""
        info = get_request_type_info(instance.request_type)
        link = build_request_link(settings.frontend_url, instance.request_type, instance.request_id)

        kind, verb = {
            "APPROVED": (NotificationKind.APPROVED, "approved"),
            "REJECTED": (NotificationKind.REJECTED, "rejected"),
            "CANCELLED": (NotificationKind.CANCELLED, "cancelled"),
        }[instance.status.value]

        message = f"{info.label} {instance.request_id} was {verb}."
        if instance.final_comment:
            message += f" Comment: {instance.final_comment}"

        queued = []
        for recipient_id in recipient_ids:
            notification = self.notify(
                user_id=recipient_id,
                kind=kind,
                title=f"{info.label} {verb}",
                message=message,
                link=link,
                ref_type=REF_TYPE_INSTANCE,
                ref_id=instance.instance_id
            )
            if notification:
                queued.append(notification)
        return queued

    def notify_approval_cc(self, instance: WorkflowInstance) -> List[NotificationOutbox]:
        """Copy configured observers on a final approval"""
        info = get_request_type_info(instance.request_type)
        link = build_request_link(settings.frontend_url, instance.request_type, instance.request_id)

        queued = []
        for recipient_id in settings.cc_employee_ids_list:
            if recipient_id == instance.applicant_id:
                continue
            notification = self.notify(
                user_id=recipient_id,
                kind=NotificationKind.APPROVAL_CC,
                title=f"For your information: {info.label} approved",
                message=f"{info.label} {instance.request_id} submitted by {instance.applicant_id} was approved.",
                link=link,
                ref_type=REF_TYPE_INSTANCE,
                ref_id=instance.instance_id
            )
            if notification:
                queued.append(notification)
        return queued

    def notify_delegation_assigned(self, delegation: Delegation) -> Optional[NotificationOutbox]:
        """Tell a delegate they will approve on someone's behalf"""
        scope = ", ".join(
            get_request_type_info(rt).label for rt in delegation.request_type_scope
        ) or "all requests"
        return self.notify(
            user_id=delegation.delegate_id,
            kind=NotificationKind.DELEGATION_ASSIGNED,
            title="Approval delegation assigned",
            message=(
                f"{delegation.principal_id} delegated approvals to you from "
                f"{_format_date(delegation.start_date)} to {_format_date(delegation.end_date)} ({scope})."
            ),
            link=settings.frontend_url.rstrip("/") + "/dashboard/approval",
            ref_type=REF_TYPE_DELEGATION,
            ref_id=delegation.delegation_id
        )

    # =========================================================================
    # Delivery
    # =========================================================================

    async def send_notification(self, notification: NotificationOutbox) -> bool:
        """
        Deliver a single notification.

        Locking is handled by the scheduler before calling this method.
        Returns True if sent successfully, False otherwise.
        """
        start_time = utc_now()

        try:
            await self._post_to_webhook(notification)
            self.repo.mark_sent(notification.notification_id)

            processing_time_ms = (utc_now() - start_time).total_seconds() * 1000
            logger.info(
                f"Sent notification: {notification.notification_id}",
                extra={
                    "notification_id": notification.notification_id,
                    "action": notification.kind.value,
                    "processing_time_ms": round(processing_time_ms, 2)
                }
            )
            return True

        except Exception as e:
            # Backoff and the retry ceiling are handled by the repository
            self.repo.mark_failed(notification.notification_id, str(e))
            logger.error(
                f"Failed to send notification: {notification.notification_id}",
                extra={
                    "notification_id": notification.notification_id,
                    "error_type": type(e).__name__,
                    "error": str(e)
                }
            )
            return False

    async def _post_to_webhook(self, notification: NotificationOutbox) -> None:
        """POST the notification to the configured webhook"""
        if not settings.notification_webhook_url:
            logger.info(
                f"[{notification.kind.value}] to {notification.recipient_id}: {notification.title}",
                extra={"notification_id": notification.notification_id}
            )
            return

        payload = _delivery_payload(notification)
        async with httpx.AsyncClient(timeout=settings.callback_timeout_seconds) as client:
            response = await client.post(settings.notification_webhook_url, json=payload)

        if response.status_code >= 300:
            raise NotificationDeliveryError(
                f"Webhook returned {response.status_code}: {response.text[:200]}"
            )


def _format_date(value: date) -> str:
    return value.isoformat()


def _delivery_payload(notification: NotificationOutbox) -> Dict[str, Any]:
    return notification.model_dump(
        mode="json",
        include={
            "notification_id", "recipient_id", "kind", "title", "message",
            "link", "ref_type", "ref_id", "created_at"
        }
    )
