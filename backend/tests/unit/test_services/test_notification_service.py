"""Tests for notification outbox and delivery"""
import asyncio
import json
from datetime import date

import httpx
import pytest

from approval_engine.config.settings import settings
from approval_engine.domain.enums import InstanceStatus, NotificationKind, NotificationStatus
from approval_engine.domain.models import ApprovalRecord, Delegation, WorkflowInstance
from approval_engine.repositories.notification_repo import NotificationRepository
from approval_engine.services.notification_service import NotificationService
from tests.factories import NOW


@pytest.fixture
def service(mongo_db):
    return NotificationService()


def make_instance(**fields):
    values = dict(
        instance_id="INST-1", definition_id="DEF-1", definition_version=1,
        request_type="LEAVE", request_id="LV-7", applicant_id="E400", company_id="C1",
        submitted_at=NOW, updated_at=NOW
    )
    values.update(fields)
    return WorkflowInstance(**values)


class BrokenRepository:

    def create_notification(self, notification):
        raise RuntimeError("outbox unavailable")


class TestOutbox:

    def test_approval_request_mentions_principal_for_delegates(self, service):
        record = ApprovalRecord(record_id="REC-1", node_id="step_1", node_name="Supervisor", assigned_at=NOW)
        queued = service.notify_approval_request(
            make_instance(), record, ["E300", "E301"], delegated_from={"E301": "E300"}
        )
        assert [n.recipient_id for n in queued] == ["E300", "E301"]
        assert "on behalf of" not in queued[0].message
        assert "on behalf of E300" in queued[1].message
        assert queued[0].link.endswith("/dashboard/leave/LV-7")
        assert queued[0].kind == NotificationKind.APPROVAL_REQUEST

        stored = NotificationRepository().list_for_ref("INST-1")
        assert len(stored) == 2
        assert all(n.status == NotificationStatus.PENDING for n in stored)

    def test_outcome_includes_comment(self, service):
        instance = make_instance(status=InstanceStatus.REJECTED, final_comment="budget")
        [notification] = service.notify_outcome(instance, ["E400"])
        assert notification.kind == NotificationKind.REJECTED
        assert notification.message == "Leave Request LV-7 was rejected. Comment: budget"

    def test_cc_skips_applicant(self, service, monkeypatch):
        monkeypatch.setattr(settings, "notification_cc_employee_ids", "E900, E400")
        queued = service.notify_approval_cc(make_instance(status=InstanceStatus.APPROVED))
        assert [n.recipient_id for n in queued] == ["E900"]

    def test_delegation_assigned(self, service):
        delegation = Delegation(
            delegation_id="DLG-1", principal_id="E200", delegate_id="E201",
            start_date=date(2026, 3, 1), end_date=date(2026, 3, 5),
            created_at=NOW, updated_at=NOW
        )
        notification = service.notify_delegation_assigned(delegation)
        assert notification.recipient_id == "E201"
        assert "2026-03-01 to 2026-03-05 (all requests)" in notification.message

    def test_queue_failure_is_swallowed(self):
        service = NotificationService(repo=BrokenRepository())
        assert service.notify("E1", NotificationKind.APPROVED, "t", "m") is None
        assert service.notify_outcome(make_instance(status=InstanceStatus.APPROVED), ["E400"]) == []


class TestDelivery:

    def queue_one(self, service):
        return service.notify("E400", NotificationKind.APPROVED, "Leave Request approved", "done", ref_id="INST-1")

    def test_log_only_delivery_marks_sent(self, service, monkeypatch):
        monkeypatch.setattr(settings, "notification_webhook_url", "")
        notification = self.queue_one(service)

        assert asyncio.run(service.send_notification(notification)) is True
        stored = NotificationRepository().get_notification(notification.notification_id)
        assert stored.status == NotificationStatus.SENT
        assert stored.sent_at is not None

    def test_webhook_receives_payload(self, service, monkeypatch):
        received = []

        def handler(request):
            received.append(json.loads(request.read()))
            return httpx.Response(200)

        real_client = httpx.AsyncClient
        monkeypatch.setattr(settings, "notification_webhook_url", "http://hooks.local/notify")
        monkeypatch.setattr(
            httpx, "AsyncClient",
            lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs)
        )
        notification = self.queue_one(service)

        assert asyncio.run(service.send_notification(notification)) is True
        assert received[0]["recipient_id"] == "E400"
        assert received[0]["kind"] == "APPROVED"
        assert "locked_by" not in received[0]

    def test_webhook_failure_schedules_retry(self, service, monkeypatch):
        real_client = httpx.AsyncClient
        monkeypatch.setattr(settings, "notification_webhook_url", "http://hooks.local/notify")
        monkeypatch.setattr(
            httpx, "AsyncClient",
            lambda **kwargs: real_client(transport=httpx.MockTransport(lambda r: httpx.Response(503)), **kwargs)
        )
        notification = self.queue_one(service)

        assert asyncio.run(service.send_notification(notification)) is False
        stored = NotificationRepository().get_notification(notification.notification_id)
        assert stored.status == NotificationStatus.PENDING
        assert stored.retry_count == 1
        assert stored.next_retry_at is not None
        assert "503" in stored.last_error

    def test_gives_up_after_max_retries(self, service, monkeypatch):
        monkeypatch.setattr(settings, "notification_max_retries", 2)
        notification = self.queue_one(service)
        repo = NotificationRepository()

        repo.mark_failed(notification.notification_id, "boom")
        final = repo.mark_failed(notification.notification_id, "boom again")
        assert final.status == NotificationStatus.FAILED
        assert final.next_retry_at is None
        assert [n.notification_id for n in repo.get_failed_notifications()] == [notification.notification_id]


class TestLocking:

    def test_lock_is_exclusive_until_released(self, service):
        notification = service.notify("E400", NotificationKind.APPROVED, "t", "m")
        repo = NotificationRepository()

        assert repo.acquire_lock(notification.notification_id, "worker-a")
        assert not repo.acquire_lock(notification.notification_id, "worker-b")
        assert repo.get_pending_notifications() == []

        assert not repo.release_lock(notification.notification_id, "worker-b")
        assert repo.release_lock(notification.notification_id, "worker-a")
        assert repo.acquire_lock(notification.notification_id, "worker-b")
