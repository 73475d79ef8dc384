"""End-to-end engine flows against an in-memory MongoDB"""
import asyncio
from datetime import timedelta

import pytest

from approval_engine.config.settings import settings
from approval_engine.domain.enums import (
    ApproverStrategy, AuditEventType, DecisionAction, InstanceStatus,
    NotificationKind, NotificationStatus, QuorumMode, RecordStatus
)
from approval_engine.domain.errors import (
    ActiveInstanceExistsError, ConcurrencyError, DefinitionNotFoundError,
    InstanceTerminalError, NoApproverResolvedError, StepMismatchError, UnauthorizedActorError
)
from approval_engine.engine.engine import WorkflowEngine
from approval_engine.repositories.instance_repo import InstanceRepository
from approval_engine.repositories.notification_repo import NotificationRepository
from approval_engine.repositories.org_directory_repo import OrgDirectoryRepository
from approval_engine.scheduler.dev_scheduler import DevScheduler
from approval_engine.services.delegation_service import DelegationService
from approval_engine.services.notification_service import NotificationService
from approval_engine.services.status_callback_service import StatusCallbackService
from approval_engine.services.workflow_service import WorkflowService
from approval_engine.utils.time import business_date
from tests.factories import approval_node, end_node, start_node, edge, linear_definition


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def org(mongo_db, directory):
    """Conftest org plus a second level-5 employee, stored in MongoDB"""
    directory.add("E101", department_id="FIN", position_id="P-DIR", position_level=5)
    repo = OrgDirectoryRepository()
    for assignment in directory.assignments:
        repo.upsert_assignment(assignment)
    return repo


@pytest.fixture
def callbacks():
    calls = []
    service = StatusCallbackService(url_map={})
    for request_type in ("LEAVE", "EXPENSE"):
        service.register(request_type, lambda *args: calls.append(args))
    service.calls = calls
    return service


@pytest.fixture
def engine(org, callbacks):
    return WorkflowEngine(callback_service=callbacks)


def define(nodes, edges, **fields):
    return WorkflowService().create_definition(name="Flow", nodes=nodes, edges=edges, **fields)


def define_linear(*approvers, **fields):
    template = linear_definition(*approvers)
    return define(template.nodes, template.edges, **fields)


def start(engine, request_id="LV-1", request_type="LEAVE", applicant_id="E400", **kwargs):
    return engine.start(request_type, request_id, applicant_id, "C1", **kwargs)


def open_record(instance, node_id=None):
    records = [r for r in instance.open_records() if node_id is None or r.node_id == node_id]
    assert len(records) == 1
    return records[0]


# =============================================================================
# Scenarios
# =============================================================================

class TestScenarios:

    def test_supervisor_approves(self, engine, callbacks):
        define([
            start_node(),
            approval_node("step_1", strategy=ApproverStrategy.DIRECT_SUPERVISOR),
            end_node()
        ], [edge("start", "step_1"), edge("step_1", "end")])

        instance = start(engine)
        assert instance.status == InstanceStatus.PENDING
        record = open_record(instance)
        assert record.assigned_approver_ids == ["E300"]

        approved = engine.decide(instance.instance_id, record.record_id, "E300", DecisionAction.APPROVE, "ok")
        assert approved.status == InstanceStatus.APPROVED
        assert approved.is_active is False
        assert approved.final_decider_id == "E300"
        assert callbacks.calls == [("LEAVE", "LV-1", InstanceStatus.APPROVED, "E300", "ok")]

        trail = engine.get_audit_trail(instance.instance_id)
        assert trail[0].event_type == AuditEventType.INSTANCE_STARTED
        assert trail[-1].event_type == AuditEventType.INSTANCE_APPROVED

    def test_all_quorum_then_specific_employee(self, engine, callbacks):
        define([
            start_node(),
            approval_node("level_5", strategy=ApproverStrategy.POSITION_LEVEL, param="5", quorum=QuorumMode.ALL),
            approval_node("finance", param="E300"),
            end_node()
        ], [edge("start", "level_5"), edge("level_5", "finance"), edge("finance", "end")])

        instance = start(engine)
        record = open_record(instance)
        assert record.assigned_approver_ids == ["E100", "E101"]

        instance = engine.decide(instance.instance_id, record.record_id, "E100", DecisionAction.APPROVE)
        assert open_record(instance).record_id == record.record_id
        assert instance.status == InstanceStatus.PENDING

        instance = engine.decide(instance.instance_id, record.record_id, "E101", DecisionAction.APPROVE)
        finance = open_record(instance, "finance")
        assert finance.assigned_approver_ids == ["E300"]
        assert instance.status == InstanceStatus.IN_PROGRESS

        instance = engine.decide(instance.instance_id, finance.record_id, "E300", DecisionAction.APPROVE)
        assert instance.status == InstanceStatus.APPROVED
        assert len(callbacks.calls) == 1

    def test_reject_vetoes_all_quorum(self, engine, callbacks):
        define([
            start_node(),
            approval_node("level_5", strategy=ApproverStrategy.POSITION_LEVEL, param="5", quorum=QuorumMode.ALL),
            approval_node("finance", param="E300"),
            end_node()
        ], [edge("start", "level_5"), edge("level_5", "finance"), edge("finance", "end")])

        instance = start(engine)
        record = open_record(instance)
        rejected = engine.decide(instance.instance_id, record.record_id, "E100", DecisionAction.REJECT, "no")
        assert rejected.status == InstanceStatus.REJECTED
        assert callbacks.calls == [("LEAVE", "LV-1", InstanceStatus.REJECTED, "E100", "no")]

        with pytest.raises(InstanceTerminalError):
            engine.decide(instance.instance_id, record.record_id, "E101", DecisionAction.APPROVE)

    def test_delegate_scope_decides_authority(self, engine, org):
        define_linear("E200")
        today = business_date()
        DelegationService().create_delegation(
            "E200", "E201", today - timedelta(days=1), today + timedelta(days=1),
            request_type_scope=["EXPENSE"]
        )

        expense = start(engine, request_id="EX-1", request_type="EXPENSE")
        leave = start(engine, request_id="LV-1", request_type="LEAVE")

        decided = engine.decide(expense.instance_id, open_record(expense).record_id, "E201", DecisionAction.APPROVE)
        assert decided.status == InstanceStatus.APPROVED
        decision = decided.approval_records[0].decisions[0]
        assert decision.actor_id == "E201"
        assert decision.acting_as_delegate_for == "E200"

        with pytest.raises(UnauthorizedActorError):
            engine.decide(leave.instance_id, open_record(leave).record_id, "E201", DecisionAction.APPROVE)


# =============================================================================
# Lifecycle rules
# =============================================================================

class TestLifecycle:

    def test_one_active_instance_per_request(self, engine):
        define_linear("E300")
        first = start(engine)
        with pytest.raises(ActiveInstanceExistsError):
            start(engine)

        engine.cancel(first.instance_id, actor_id="E400")
        second = start(engine)
        assert second.instance_id != first.instance_id
        assert engine.get_instance_by_request("leave", "LV-1").instance_id == second.instance_id

    def test_cancel_is_applicant_only_and_skips_callback(self, engine, callbacks):
        define_linear("E300")
        instance = start(engine)

        with pytest.raises(UnauthorizedActorError):
            engine.cancel(instance.instance_id, actor_id="E300")

        cancelled = engine.cancel(instance.instance_id, actor_id="E400", reason="plans changed")
        assert cancelled.status == InstanceStatus.CANCELLED
        assert cancelled.approval_records[0].status == RecordStatus.CANCELLED
        assert callbacks.calls == []

        [notice] = [n for n in NotificationRepository().list_for_recipient("E300")
                    if n.kind == NotificationKind.CANCELLED]
        assert notice.ref_id == instance.instance_id
        assert not [n for n in NotificationRepository().list_for_recipient("E400")
                    if n.kind == NotificationKind.CANCELLED]

        with pytest.raises(InstanceTerminalError):
            engine.cancel(instance.instance_id, actor_id="E400")

    def test_stale_record_is_a_step_mismatch(self, engine):
        define_linear("E300", "E200")
        instance = start(engine)
        first = open_record(instance)
        engine.decide(instance.instance_id, first.record_id, "E300", DecisionAction.APPROVE)

        with pytest.raises(StepMismatchError):
            engine.decide(instance.instance_id, first.record_id, "E300", DecisionAction.APPROVE)

    def test_nothing_stored_when_no_approver_resolves(self, engine, mongo_db):
        define([
            start_node(),
            approval_node("step_1", strategy=ApproverStrategy.ROLE, param="LEGAL"),
            end_node()
        ], [edge("start", "step_1"), edge("step_1", "end")])

        with pytest.raises(NoApproverResolvedError):
            start(engine)
        assert mongo_db["workflow_instances"].count_documents({}) == 0

    def test_explicit_definition_must_be_active(self, engine):
        definition = define_linear("E300", is_active=False)
        with pytest.raises(DefinitionNotFoundError):
            start(engine, definition_id=definition.definition_id)

    def test_instance_keeps_its_definition_version(self, engine):
        definition = define_linear("E300")
        instance = start(engine)

        graph = linear_definition("E300", "E100")
        WorkflowService().update_graph(definition.definition_id, graph.nodes, graph.edges)

        approved = engine.decide(
            instance.instance_id, open_record(instance).record_id, "E300", DecisionAction.APPROVE
        )
        assert approved.definition_version == 1
        assert approved.status == InstanceStatus.APPROVED


# =============================================================================
# Side effects and concurrency
# =============================================================================

class FailingNotifications(NotificationService):

    def notify_approval_request(self, *args, **kwargs):
        raise RuntimeError("outbox down")

    def notify_outcome(self, *args, **kwargs):
        raise RuntimeError("outbox down")


class RacingInstanceRepository(InstanceRepository):
    """Another writer saves the instance just before each of our first `races` saves"""

    def __init__(self, races: int):
        super().__init__()
        self.races = races
        self.attempts = 0

    def save_instance(self, instance, expected_version):
        self.attempts += 1
        if self.attempts <= self.races:
            self._instances.update_one({"instance_id": instance.instance_id}, {"$inc": {"version": 1}})
        return super().save_instance(instance, expected_version)


class TestSideEffects:

    def test_notification_failure_keeps_transition(self, org, callbacks):
        define_linear("E300")
        engine = WorkflowEngine(notification_service=FailingNotifications(), callback_service=callbacks)

        instance = start(engine)
        approved = engine.decide(instance.instance_id, open_record(instance).record_id, "E300", DecisionAction.APPROVE)

        assert approved.status == InstanceStatus.APPROVED
        assert engine.get_instance(instance.instance_id).status == InstanceStatus.APPROVED
        assert len(callbacks.calls) == 1

    def test_failing_callback_keeps_transition(self, engine, callbacks):
        def broken(*args):
            raise RuntimeError("leave module down")

        callbacks.register("LEAVE", broken)
        define_linear("E300")
        instance = start(engine)
        approved = engine.decide(instance.instance_id, open_record(instance).record_id, "E300", DecisionAction.APPROVE)
        assert engine.get_instance(approved.instance_id).status == InstanceStatus.APPROVED

    def test_decision_retries_after_concurrent_update(self, org, callbacks):
        define_linear("E300")
        instance = start(WorkflowEngine(callback_service=callbacks))

        repo = RacingInstanceRepository(races=1)
        engine = WorkflowEngine(instance_repo=repo, callback_service=callbacks)
        approved = engine.decide(instance.instance_id, open_record(instance).record_id, "E300", DecisionAction.APPROVE)

        assert approved.status == InstanceStatus.APPROVED
        assert repo.attempts == 2

    def test_decision_gives_up_when_always_raced(self, org, callbacks, monkeypatch):
        monkeypatch.setattr(settings, "decision_max_retries", 2)
        define_linear("E300")
        instance = start(WorkflowEngine(callback_service=callbacks))

        engine = WorkflowEngine(instance_repo=RacingInstanceRepository(races=10), callback_service=callbacks)
        with pytest.raises(ConcurrencyError):
            engine.decide(instance.instance_id, open_record(instance).record_id, "E300", DecisionAction.APPROVE)
        assert callbacks.calls == []


# =============================================================================
# Pending approvals and delivery
# =============================================================================

class TestPendingAndDelivery:

    def test_pending_includes_delegated_steps(self, engine):
        define_linear("E300")
        today = business_date()
        DelegationService().create_delegation("E300", "E201", today, today + timedelta(days=2))

        instance = start(engine)
        record = open_record(instance)

        [own] = engine.get_pending_for("E300")
        assert own.record_id == record.record_id
        assert own.acting_as_delegate_for is None

        [delegated] = engine.get_pending_for("E201")
        assert delegated.acting_as_delegate_for == "E300"
        assert engine.get_pending_for("E100") == []

        request = [n for n in NotificationRepository().list_for_recipient("E201")
                   if n.kind == NotificationKind.APPROVAL_REQUEST]
        assert "on behalf of E300" in request[0].message

        engine.decide(instance.instance_id, record.record_id, "E201", DecisionAction.APPROVE)
        assert engine.get_pending_for("E201") == []
        assert engine.get_pending_for("E300") == []

    def test_scheduler_delivers_outbox(self, engine, monkeypatch):
        monkeypatch.setattr(settings, "notification_webhook_url", "")
        define_linear("E300")
        instance = start(engine)
        engine.decide(instance.instance_id, open_record(instance).record_id, "E300", DecisionAction.APPROVE)

        queued = NotificationRepository().list_for_ref(instance.instance_id)
        counts = asyncio.run(DevScheduler().process_pending())

        assert counts == {"processed": len(queued), "failed": 0, "skipped": 0}
        assert all(
            n.status == NotificationStatus.SENT
            for n in NotificationRepository().list_for_ref(instance.instance_id)
        )
        assert asyncio.run(DevScheduler().process_pending()) == {"processed": 0, "failed": 0, "skipped": 0}
