"""Test factories - in-memory org/delegation sources and definition builders"""
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional

from approval_engine.domain.models import (
    WorkflowDefinition, NodeTemplate, EdgeTemplate, Condition, OrgAssignment, Delegation
)
from approval_engine.domain.enums import (
    NodeType, ApproverStrategy, QuorumMode, ConditionOperator, DefinitionScope, AssignmentStatus
)

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# In-memory sources for the pure engine components
# =============================================================================

class FakeDirectory:
    """Org snapshot held in a list, same query surface as OrgDirectoryRepository"""

    def __init__(self, assignments: Iterable[OrgAssignment] = ()):
        self.assignments: List[OrgAssignment] = list(assignments)

    def add(self, employee_id: str, company_id: str = "C1", **fields) -> OrgAssignment:
        assignment = OrgAssignment(employee_id=employee_id, company_id=company_id, **fields)
        self.assignments.append(assignment)
        return assignment

    def get_active_assignment(self, employee_id: str, company_id: str) -> Optional[OrgAssignment]:
        for a in self.assignments:
            if a.employee_id == employee_id and a.company_id == company_id and a.status == AssignmentStatus.ACTIVE:
                return a
        return None

    def list_assignments(
        self,
        company_id: str,
        department_id: Optional[str] = None,
        position_id: Optional[str] = None,
        role_id: Optional[str] = None,
        min_level: Optional[int] = None,
    ) -> List[OrgAssignment]:
        result = []
        for a in self.assignments:
            if a.company_id != company_id or a.status != AssignmentStatus.ACTIVE:
                continue
            if department_id is not None and a.department_id != department_id:
                continue
            if position_id is not None and a.position_id != position_id:
                continue
            if role_id is not None and a.role_id != role_id:
                continue
            if min_level is not None and a.position_level < min_level:
                continue
            result.append(a)
        return sorted(result, key=lambda a: a.employee_id)


class FakeDelegations:
    """Delegations held in a list, same query surface as DelegationRepository"""

    def __init__(self, delegations: Iterable[Delegation] = ()):
        self.delegations: List[Delegation] = list(delegations)

    def add(
        self,
        principal_id: str,
        delegate_id: str,
        start: date = date(2026, 3, 1),
        end: date = date(2026, 3, 31),
        **fields
    ) -> Delegation:
        delegation = Delegation(
            delegation_id=f"DLG-{len(self.delegations) + 1}",
            principal_id=principal_id,
            delegate_id=delegate_id,
            start_date=start,
            end_date=end,
            created_at=NOW,
            updated_at=NOW,
            **fields
        )
        self.delegations.append(delegation)
        return delegation

    def list_active_for_principal(self, principal_id: str) -> List[Delegation]:
        return [d for d in self.delegations if d.principal_id == principal_id and d.is_active]

    def list_active_for_delegate(self, delegate_id: str) -> List[Delegation]:
        return [d for d in self.delegations if d.delegate_id == delegate_id and d.is_active]



# =============================================================================
# Definition builders
# =============================================================================

def start_node(node_id: str = "start") -> NodeTemplate:
    return NodeTemplate(node_id=node_id, node_type=NodeType.START, name="Start")


def end_node(node_id: str = "end") -> NodeTemplate:
    return NodeTemplate(node_id=node_id, node_type=NodeType.END, name="End")


def approval_node(
    node_id: str,
    strategy: ApproverStrategy = ApproverStrategy.SPECIFIC_EMPLOYEE,
    param: Optional[str] = None,
    quorum: QuorumMode = QuorumMode.ANY,
    **fields
) -> NodeTemplate:
    return NodeTemplate(
        node_id=node_id,
        node_type=NodeType.APPROVAL,
        name=node_id.replace("_", " ").title(),
        approver_strategy=strategy,
        strategy_param=param,
        quorum_mode=quorum,
        **fields
    )


def node(node_id: str, node_type: NodeType) -> NodeTemplate:
    return NodeTemplate(node_id=node_id, node_type=node_type, name=node_id)


def edge(
    from_id: str,
    to_id: str,
    condition: Optional[Condition] = None,
    is_default: bool = False,
    sort_order: int = 0
) -> EdgeTemplate:
    return EdgeTemplate(
        from_node_id=from_id,
        to_node_id=to_id,
        condition=condition,
        is_default=is_default,
        sort_order=sort_order
    )


def cond(field: str, operator: ConditionOperator, value) -> Condition:
    return Condition(field=field, operator=operator, value=value)


def make_definition(
    nodes: List[NodeTemplate],
    edges: List[EdgeTemplate],
    definition_id: str = "WFD-test",
    **fields
) -> WorkflowDefinition:
    values: Dict = {
        "definition_id": definition_id,
        "name": "Test workflow",
        "scope": DefinitionScope.DEFAULT,
        "nodes": nodes,
        "edges": edges,
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(fields)
    return WorkflowDefinition(**values)


def linear_definition(*approvers: str, **fields) -> WorkflowDefinition:
    """START -> one SPECIFIC_EMPLOYEE step per approver -> END"""
    steps = [approval_node(f"step_{i + 1}", param=a) for i, a in enumerate(approvers)]
    ids = ["start"] + [s.node_id for s in steps] + ["end"]
    edges = [edge(a, b) for a, b in zip(ids, ids[1:])]
    return make_definition([start_node()] + steps + [end_node()], edges, **fields)


def fork_join_definition(**fields) -> WorkflowDefinition:
    """START -> fork -> (E200 | E300) -> join -> E100 -> END"""
    nodes = [
        start_node(),
        node("fork", NodeType.PARALLEL_FORK),
        approval_node("left", param="E200"),
        approval_node("right", param="E300"),
        node("join", NodeType.PARALLEL_JOIN),
        approval_node("final", param="E100"),
        end_node(),
    ]
    edges = [
        edge("start", "fork"),
        edge("fork", "left", sort_order=1),
        edge("fork", "right", sort_order=2),
        edge("left", "join"),
        edge("right", "join"),
        edge("join", "final"),
        edge("final", "end"),
    ]
    return make_definition(nodes, edges, **fields)
