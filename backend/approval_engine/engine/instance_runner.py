"""
Instance Runner - The approval state machine

Owns the lifecycle of one workflow instance. The runner is pure with respect
to persistence: every operation takes the current instance, works on a deep
copy and returns the updated copy together with the engine events it
produced. Saving and side effects belong to the DecisionProcessor.

Execution lanes:
    Every instance has a "main" lane. A PARALLEL_FORK parks its lane
    (WAITING_FOR_BRANCHES) and opens one child lane per outgoing edge. A child
    lane that reaches a PARALLEL_JOIN parks there (AT_JOIN); when every
    sibling lane of the same fork has arrived, the siblings are MERGED and the
    parent lane continues from the join. Each lane has at most one open
    approval record.

Status:
    PENDING -> IN_PROGRESS once a step closes without ending the instance;
    APPROVED when the main lane reaches END; REJECTED on any REJECT (or a
    RETURN with nowhere to go); CANCELLED on explicit cancel.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..domain.models import (
    WorkflowDefinition, WorkflowInstance, ApprovalRecord, BranchState,
    Decision, EngineEvent, RunResult, MAIN_BRANCH_ID
)
from ..domain.enums import (
    NodeType, InstanceStatus, RecordStatus, DecisionAction, QuorumOutcome,
    BranchStatus, AuditEventType, ALLOWED_TRANSITIONS
)
from ..domain.errors import (
    InstanceTerminalError, InvalidStateError, StepMismatchError,
    StalledRouteError, NoApproverResolvedError
)
from .directory_resolver import DirectoryResolver
from .graph_router import GraphRouter
from .quorum import QuorumEvaluator
from ..utils.idgen import generate_record_id, generate_branch_id
from ..utils.logger import get_logger

logger = get_logger(__name__)

_CLOSED_BRANCH_STATES = (BranchStatus.MERGED, BranchStatus.COMPLETED, BranchStatus.CANCELLED)


class _Run:
    """Mutable state of one runner call"""

    def __init__(self, definition: WorkflowDefinition, instance: WorkflowInstance, now: datetime):
        self.definition = definition
        self.instance = instance
        self.now = now
        self.events: List[EngineEvent] = []
        self.steps = 0
        self.max_steps = max(100, 10 * len(definition.nodes))

    def emit(self, event_type: AuditEventType, **kwargs: Any) -> None:
        self.events.append(EngineEvent(event_type=event_type, instance_id=self.instance.instance_id, **kwargs))

    @property
    def terminal(self) -> bool:
        return self.instance.status.is_terminal


class InstanceRunner:
    """Advance workflow instances through their definition graph"""

    def __init__(
        self,
        resolver: DirectoryResolver,
        router: Optional[GraphRouter] = None,
        quorum: Optional[QuorumEvaluator] = None
    ):
        self.resolver = resolver
        self.router = router or GraphRouter()
        self.quorum = quorum or QuorumEvaluator()

    # =========================================================================
    # Public operations
    # =========================================================================

    def start(
        self,
        definition: WorkflowDefinition,
        instance_id: str,
        request_type: str,
        request_id: str,
        applicant_id: str,
        company_id: str,
        context_data: Optional[Dict[str, Any]],
        now: datetime
    ) -> RunResult:
        """
        Create an instance and run it up to its first approval step(s)

        Raises:
            NoApproverResolvedError: A required step resolved to nobody
            StalledRouteError: The graph has no START or dead-ends
        """
        start_node = definition.get_start_node()
        if start_node is None:
            raise StalledRouteError(
                f"Definition {definition.definition_id} has no START node",
                details={"definition_id": definition.definition_id}
            )

        instance = WorkflowInstance(
            instance_id=instance_id,
            definition_id=definition.definition_id,
            definition_version=definition.version,
            request_type=request_type,
            request_id=request_id,
            applicant_id=applicant_id,
            company_id=company_id,
            context_data=context_data or {},
            status=InstanceStatus.PENDING,
            current_node_id=start_node.node_id,
            branches=[BranchState(branch_id=MAIN_BRANCH_ID, current_node_id=start_node.node_id, started_at=now)],
            submitted_at=now,
            updated_at=now,
        )
        run = _Run(definition, instance, now)
        run.emit(
            AuditEventType.INSTANCE_STARTED,
            node_id=start_node.node_id,
            actor_id=applicant_id,
            details={"definition_version": definition.version, "request_type": instance.request_type}
        )

        self._advance(run, instance.branches[0], start_node.node_id)
        return self._finish(run)

    def record_decision(
        self,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        record_id: str,
        actor_id: str,
        action: DecisionAction,
        comment: Optional[str],
        now: datetime,
        acting_as_delegate_for: Optional[str] = None
    ) -> RunResult:
        """
        Append a decision to the current record of a lane and re-evaluate quorum

        Raises:
            InstanceTerminalError: Instance already ended
            StepMismatchError: Record is not the open record of its lane, or
                the actor (or principal) already decided on it
        """
        if instance.status.is_terminal:
            raise InstanceTerminalError(
                f"Instance {instance.instance_id} is already {instance.status.value}",
                details={"instance_id": instance.instance_id, "status": instance.status.value}
            )

        instance = instance.model_copy(deep=True)
        run = _Run(definition, instance, now)
        record = self._current_record(instance, record_id)

        for employee_id in filter(None, (actor_id, acting_as_delegate_for)):
            if record.has_decided(employee_id):
                raise StepMismatchError(
                    f"{employee_id} already decided on record {record_id}",
                    details={"record_id": record_id, "employee_id": employee_id}
                )

        record.decisions.append(Decision(
            actor_id=actor_id,
            action=action,
            comment=comment,
            decided_at=now,
            acting_as_delegate_for=acting_as_delegate_for,
        ))
        run.emit(
            AuditEventType.DECISION_RECORDED,
            record_id=record.record_id,
            node_id=record.node_id,
            actor_id=actor_id,
            details={"action": action.value, "comment": comment, "acting_as_delegate_for": acting_as_delegate_for}
        )

        outcome = self.quorum.evaluate(record.quorum_mode, record.assigned_approver_ids, record.decisions)
        logger.info(
            f"Quorum {record.quorum_mode.value} on record {record.record_id}: {outcome.value}",
            extra={"instance_id": instance.instance_id, "record_id": record.record_id, "action": action.value}
        )

        branch = instance.get_branch(record.branch_id)
        if outcome == QuorumOutcome.FAILED:
            self._close_record(run, record, RecordStatus.REJECTED)
            self._finalize(run, InstanceStatus.REJECTED, actor_id, comment)

        elif outcome == QuorumOutcome.RETURNED:
            self._return_step(run, branch, record, actor_id, comment)

        elif outcome == QuorumOutcome.SATISFIED:
            self._close_record(run, record, RecordStatus.APPROVED)
            run.emit(
                AuditEventType.STEP_COMPLETED,
                record_id=record.record_id,
                node_id=record.node_id,
                actor_id=actor_id
            )
            self._promote(run)
            branch.current_record_id = None
            branch.last_record_id = record.record_id
            self._advance(run, branch, record.node_id, decider_id=actor_id, comment=comment)

        return self._finish(run)

    def cancel(
        self,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        actor_id: Optional[str],
        reason: Optional[str],
        now: datetime
    ) -> RunResult:
        """Cancel a non-terminal instance"""
        if instance.status.is_terminal:
            raise InstanceTerminalError(
                f"Instance {instance.instance_id} is already {instance.status.value}",
                details={"instance_id": instance.instance_id, "status": instance.status.value}
            )
        instance = instance.model_copy(deep=True)
        run = _Run(definition, instance, now)
        self._finalize(run, InstanceStatus.CANCELLED, actor_id, reason)
        return self._finish(run)

    # =========================================================================
    # Traversal
    # =========================================================================

    def _advance(
        self,
        run: _Run,
        branch: BranchState,
        from_node_id: str,
        decider_id: Optional[str] = None,
        comment: Optional[str] = None
    ) -> None:
        """Leave a node along its routed edge"""
        next_node_id = self.router.route(run.definition, from_node_id, run.instance.context_data)
        if next_node_id is None:
            raise StalledRouteError(
                f"Node {from_node_id} has no outgoing edge",
                details={"definition_id": run.definition.definition_id, "node_id": from_node_id}
            )
        self._enter(run, branch, next_node_id, decider_id, comment)

    def _enter(
        self,
        run: _Run,
        branch: BranchState,
        node_id: str,
        decider_id: Optional[str] = None,
        comment: Optional[str] = None
    ) -> None:
        """Enter a node on a lane and keep going until something waits"""
        if run.terminal:
            return

        run.steps += 1
        if run.steps > run.max_steps:
            raise StalledRouteError(
                f"Routing loop detected near node {node_id}",
                details={"definition_id": run.definition.definition_id, "node_id": node_id}
            )

        node = run.definition.get_node(node_id)
        if node is None:
            raise StalledRouteError(
                f"Edge points to unknown node {node_id}",
                details={"definition_id": run.definition.definition_id, "node_id": node_id}
            )

        branch.current_node_id = node_id

        if node.node_type in (NodeType.START, NodeType.CONDITION):
            self._advance(run, branch, node_id, decider_id, comment)

        elif node.node_type == NodeType.APPROVAL:
            self._open_approval(run, branch, node_id, decider_id, comment)

        elif node.node_type == NodeType.PARALLEL_FORK:
            self._fork(run, branch, node_id)

        elif node.node_type == NodeType.PARALLEL_JOIN:
            self._arrive_at_join(run, branch, node_id, decider_id, comment)

        elif node.node_type == NodeType.END:
            if branch.branch_id != MAIN_BRANCH_ID:
                raise StalledRouteError(
                    f"Parallel branch reached END node {node_id} before joining",
                    details={"node_id": node_id, "branch_id": branch.branch_id}
                )
            branch.status = BranchStatus.COMPLETED
            branch.completed_at = run.now
            self._finalize(run, InstanceStatus.APPROVED, decider_id, comment)

    def _open_approval(
        self,
        run: _Run,
        branch: BranchState,
        node_id: str,
        decider_id: Optional[str],
        comment: Optional[str]
    ) -> None:
        node = run.definition.get_node(node_id)
        instance = run.instance
        approvers = self.resolver.resolve_node(node, instance.applicant_id, instance.company_id)

        if not approvers:
            if not node.is_optional:
                raise NoApproverResolvedError(node.node_id, node.display_name)
            run.emit(
                AuditEventType.STEP_SKIPPED,
                node_id=node_id,
                details={"reason": "no approver resolved", "node_name": node.display_name}
            )
            logger.info(
                f"Skipped optional node {node_id}: no approver resolved",
                extra={"instance_id": instance.instance_id, "node_id": node_id}
            )
            self._advance(run, branch, node_id, decider_id, comment)
            return

        record = ApprovalRecord(
            record_id=generate_record_id(),
            node_id=node_id,
            node_name=node.display_name,
            branch_id=branch.branch_id,
            assigned_approver_ids=list(approvers),
            quorum_mode=node.quorum_mode,
            assigned_at=run.now,
            previous_record_id=branch.last_record_id,
        )
        instance.approval_records.append(record)
        branch.current_record_id = record.record_id
        run.emit(
            AuditEventType.STEP_ASSIGNED,
            record_id=record.record_id,
            node_id=node_id,
            recipients=record.assigned_approver_ids,
            details={"node_name": record.node_name, "quorum_mode": record.quorum_mode.value}
        )

    def _fork(self, run: _Run, branch: BranchState, node_id: str) -> None:
        targets = self.router.fork_targets(run.definition, node_id)
        branch.status = BranchStatus.WAITING_FOR_BRANCHES
        branch.current_record_id = None

        children = [
            BranchState(
                branch_id=generate_branch_id(),
                parent_branch_id=branch.branch_id,
                fork_node_id=node_id,
                current_node_id=target,
                # RETURN does not cross a fork either
                last_record_id=None,
                started_at=run.now,
            )
            for target in targets
        ]
        # All lanes exist before any is entered, so the join sees every sibling
        run.instance.branches.extend(children)
        run.emit(
            AuditEventType.FORK_ACTIVATED,
            node_id=node_id,
            details={"branches": [{"branch_id": c.branch_id, "entry_node_id": c.current_node_id} for c in children]}
        )
        for child, target in zip(children, targets):
            self._enter(run, child, target)

    def _arrive_at_join(
        self,
        run: _Run,
        branch: BranchState,
        node_id: str,
        decider_id: Optional[str],
        comment: Optional[str]
    ) -> None:
        instance = run.instance
        if branch.parent_branch_id is None:
            # A join outside any fork is a pass-through
            self._advance(run, branch, node_id, decider_id, comment)
            return

        branch.status = BranchStatus.AT_JOIN
        branch.join_node_id = node_id
        branch.current_record_id = None

        siblings = [
            b for b in instance.branches
            if b.parent_branch_id == branch.parent_branch_id
            and b.fork_node_id == branch.fork_node_id
            and b.status not in _CLOSED_BRANCH_STATES
        ]
        waiting = [b.branch_id for b in siblings if b.status != BranchStatus.AT_JOIN]
        if waiting:
            logger.info(
                f"Branch {branch.branch_id} at join {node_id}; waiting for {len(waiting)} branch(es)",
                extra={"instance_id": instance.instance_id, "node_id": node_id}
            )
            return

        mismatched = {b.join_node_id for b in siblings} - {node_id}
        if mismatched:
            logger.warning(
                f"Branches of fork {branch.fork_node_id} arrived at different joins {sorted(mismatched)}; continuing from {node_id}",
                extra={"instance_id": instance.instance_id, "node_id": node_id}
            )

        for sibling in siblings:
            sibling.status = BranchStatus.MERGED
            sibling.completed_at = run.now

        parent = instance.get_branch(branch.parent_branch_id)
        parent.status = BranchStatus.ACTIVE
        parent.current_node_id = node_id
        # RETURN does not cross a join
        parent.last_record_id = None
        run.emit(
            AuditEventType.JOIN_COMPLETED,
            node_id=node_id,
            details={"fork_node_id": branch.fork_node_id, "merged_branches": [b.branch_id for b in siblings]}
        )
        self._advance(run, parent, node_id, decider_id, comment)

    def _return_step(
        self,
        run: _Run,
        branch: BranchState,
        record: ApprovalRecord,
        actor_id: str,
        comment: Optional[str]
    ) -> None:
        """Send the lane back to the approval step before this record"""
        instance = run.instance
        previous = instance.get_record(record.previous_record_id) if record.previous_record_id else None

        if previous is None:
            logger.info(
                f"RETURN on record {record.record_id} has no previous step; rejecting",
                extra={"instance_id": instance.instance_id, "record_id": record.record_id}
            )
            self._close_record(run, record, RecordStatus.REJECTED)
            self._finalize(run, InstanceStatus.REJECTED, actor_id, comment)
            return

        self._close_record(run, record, RecordStatus.RETURNED)
        run.emit(
            AuditEventType.STEP_RETURNED,
            record_id=record.record_id,
            node_id=record.node_id,
            actor_id=actor_id,
            details={"returned_to_node_id": previous.node_id, "comment": comment}
        )
        self._promote(run)
        branch.current_record_id = None
        branch.last_record_id = previous.previous_record_id
        self._enter(run, branch, previous.node_id)

    # =========================================================================
    # State helpers
    # =========================================================================

    def _current_record(self, instance: WorkflowInstance, record_id: str) -> ApprovalRecord:
        record = instance.get_record(record_id)
        branch = instance.get_branch(record.branch_id) if record else None
        if (
            record is None
            or not record.is_open
            or branch is None
            or branch.current_record_id != record_id
        ):
            raise StepMismatchError(
                f"Record {record_id} is not an open step of instance {instance.instance_id}",
                details={"instance_id": instance.instance_id, "record_id": record_id}
            )
        return record

    def _close_record(self, run: _Run, record: ApprovalRecord, status: RecordStatus) -> None:
        record.status = status
        record.completed_at = run.now

    def _promote(self, run: _Run) -> None:
        """PENDING -> IN_PROGRESS once any step closes"""
        if run.instance.status == InstanceStatus.PENDING:
            self._set_status(run.instance, InstanceStatus.IN_PROGRESS)

    def _set_status(self, instance: WorkflowInstance, target: InstanceStatus) -> None:
        current = instance.status
        if target not in ALLOWED_TRANSITIONS[current]:
            if current.is_terminal:
                raise InstanceTerminalError(
                    f"Instance {instance.instance_id} is already {current.value}",
                    details={"instance_id": instance.instance_id, "status": current.value}
                )
            raise InvalidStateError(
                f"Illegal status change {current.value} -> {target.value}",
                details={"instance_id": instance.instance_id}
            )
        instance.status = target

    def _finalize(
        self,
        run: _Run,
        status: InstanceStatus,
        decider_id: Optional[str],
        comment: Optional[str]
    ) -> None:
        instance = run.instance
        self._set_status(instance, status)
        instance.is_active = False
        instance.completed_at = run.now
        instance.final_decider_id = decider_id
        instance.final_comment = comment

        for record in instance.open_records():
            self._close_record(run, record, RecordStatus.CANCELLED)

        closed_as = BranchStatus.COMPLETED if status == InstanceStatus.APPROVED else BranchStatus.CANCELLED
        for branch in instance.branches:
            if branch.status not in _CLOSED_BRANCH_STATES:
                branch.status = closed_as
                branch.completed_at = run.now
            branch.current_record_id = None

        event_type = {
            InstanceStatus.APPROVED: AuditEventType.INSTANCE_APPROVED,
            InstanceStatus.REJECTED: AuditEventType.INSTANCE_REJECTED,
            InstanceStatus.CANCELLED: AuditEventType.INSTANCE_CANCELLED,
        }[status]
        run.emit(
            event_type,
            actor_id=decider_id,
            recipients=[instance.applicant_id],
            details={"comment": comment}
        )
        logger.info(
            f"Instance {instance.instance_id} finalized as {status.value}",
            extra={"instance_id": instance.instance_id, "status": status.value, "actor_id": decider_id}
        )

    def _finish(self, run: _Run) -> RunResult:
        instance = run.instance
        main = instance.get_branch(MAIN_BRANCH_ID)
        instance.current_node_ids = [
            b.current_node_id for b in instance.branches
            if b.status == BranchStatus.ACTIVE and b.current_node_id
        ]
        if main is not None and main.current_node_id:
            instance.current_node_id = main.current_node_id
        instance.updated_at = run.now
        return RunResult(instance=instance, events=run.events)
