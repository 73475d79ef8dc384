"""Tests for originating-module status callbacks"""
import httpx

from approval_engine.domain.enums import InstanceStatus
from approval_engine.domain.models import WorkflowInstance
from approval_engine.services.status_callback_service import StatusCallbackService
from tests.factories import NOW


def instance(status):
    return WorkflowInstance(
        instance_id="INST-1",
        definition_id="DEF-1",
        definition_version=1,
        request_type="expense",
        request_id="EX-9",
        applicant_id="E400",
        company_id="C1",
        status=status,
        submitted_at=NOW,
        updated_at=NOW,
        final_decider_id="E100",
        final_comment="fine",
    )


def test_registered_handler_is_called():
    calls = []
    service = StatusCallbackService(url_map={})
    service.register("expense", lambda *args: calls.append(args))

    assert service.notify_instance(instance(InstanceStatus.APPROVED)) is True
    assert calls == [("EXPENSE", "EX-9", InstanceStatus.APPROVED, "E100", "fine")]


def test_cancelled_and_running_instances_are_not_reported():
    calls = []
    service = StatusCallbackService(url_map={})
    service.register("EXPENSE", lambda *args: calls.append(args))

    assert service.notify_instance(instance(InstanceStatus.CANCELLED)) is False
    assert service.notify_instance(instance(InstanceStatus.IN_PROGRESS)) is False
    assert calls == []


def test_handler_failure_is_swallowed():
    def broken(*args):
        raise RuntimeError("leave service down")

    service = StatusCallbackService(url_map={})
    service.register("EXPENSE", broken)
    assert service.notify_instance(instance(InstanceStatus.REJECTED)) is False


def test_missing_target():
    service = StatusCallbackService(url_map={})
    assert not service.has_target("EXPENSE")
    assert service.on_instance_finalized("EXPENSE", "EX-9", InstanceStatus.APPROVED) is False


def test_unregister():
    service = StatusCallbackService(url_map={})
    service.register("EXPENSE", lambda *args: None)
    service.unregister("expense")
    assert not service.has_target("EXPENSE")


def test_url_callback_posts_outcome(monkeypatch):
    posted = {}

    def handler(request: httpx.Request) -> httpx.Response:
        posted["url"] = str(request.url)
        posted["body"] = request.read()
        return httpx.Response(204)

    real_client = httpx.Client
    monkeypatch.setattr(
        httpx, "Client",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs)
    )

    service = StatusCallbackService(url_map={"EXPENSE": "http://expense.local/callback"})
    assert service.has_target("expense")
    assert service.notify_instance(instance(InstanceStatus.APPROVED)) is True
    assert posted["url"] == "http://expense.local/callback"
    assert b'"outcome":"APPROVED"' in posted["body"].replace(b" ", b"")


def test_url_callback_error_status_is_swallowed(monkeypatch):
    real_client = httpx.Client
    monkeypatch.setattr(
        httpx, "Client",
        lambda **kwargs: real_client(transport=httpx.MockTransport(lambda r: httpx.Response(500)), **kwargs)
    )
    service = StatusCallbackService(url_map={"EXPENSE": "http://expense.local/callback"})
    assert service.notify_instance(instance(InstanceStatus.APPROVED)) is False
