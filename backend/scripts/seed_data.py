"""
Seed Data Script - Creates a sample org chart and approval workflows
Run: python -m scripts.seed_data
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from approval_engine.repositories.mongo_client import get_collection, create_indexes
from approval_engine.repositories.org_directory_repo import OrgDirectoryRepository
from approval_engine.domain.models import OrgAssignment, NodeTemplate, EdgeTemplate, Condition
from approval_engine.domain.enums import (
    NodeType, ApproverStrategy, QuorumMode, ConditionOperator, DefinitionScope
)
from approval_engine.services.workflow_service import WorkflowService

COMPANY_ID = "C001"

# employee_id, name, department, position, level, role, supervisor
ORG_CHART = [
    ("E100", "Grace Director", "D-OPS", "P-DIR", 5, "ROLE_FINANCE_APPROVER", None),
    ("E200", "Henry Manager", "D-OPS", "P-MGR", 3, None, "E100"),
    ("E201", "Irene Manager", "D-OPS", "P-MGR", 3, None, "E100"),
    ("E300", "Jack Lead", "D-OPS", "P-LEAD", 2, None, "E200"),
    ("E400", "Kim Staff", "D-OPS", "P-STAFF", 1, None, "E300"),
    ("E401", "Lee Staff", "D-OPS", "P-STAFF", 1, None, "E300"),
    ("E500", "Mia Finance", "D-FIN", "P-ACC", 2, "ROLE_FINANCE_APPROVER", "E100"),
]


def seed_org_chart() -> int:
    """Upsert the sample org assignments"""
    repo = OrgDirectoryRepository()
    for employee_id, name, department, position, level, role, supervisor in ORG_CHART:
        repo.upsert_assignment(OrgAssignment(
            employee_id=employee_id,
            company_id=COMPANY_ID,
            display_name=name,
            department_id=department,
            position_id=position,
            position_level=level,
            role_id=role,
            supervisor_id=supervisor
        ))
    return len(ORG_CHART)


def create_leave_workflow(service: WorkflowService):
    """
    Leave approval: supervisor, then department head when the leave is
    longer than three days.
    """
    nodes = [
        NodeTemplate(node_id="start", node_type=NodeType.START, name="Start"),
        NodeTemplate(
            node_id="supervisor", node_type=NodeType.APPROVAL, name="Supervisor Approval",
            approver_strategy=ApproverStrategy.DIRECT_SUPERVISOR
        ),
        NodeTemplate(node_id="duration", node_type=NodeType.CONDITION, name="Long leave?"),
        NodeTemplate(
            node_id="dept_head", node_type=NodeType.APPROVAL, name="Department Head Approval",
            approver_strategy=ApproverStrategy.DEPARTMENT_HEAD
        ),
        NodeTemplate(node_id="end", node_type=NodeType.END, name="End"),
    ]
    edges = [
        EdgeTemplate(from_node_id="start", to_node_id="supervisor"),
        EdgeTemplate(from_node_id="supervisor", to_node_id="duration"),
        EdgeTemplate(
            from_node_id="duration", to_node_id="dept_head", sort_order=1,
            condition=Condition(field="days", operator=ConditionOperator.GT, value=3)
        ),
        EdgeTemplate(from_node_id="duration", to_node_id="end", is_default=True, sort_order=2),
        EdgeTemplate(from_node_id="dept_head", to_node_id="end"),
    ]
    return service.create_definition(
        name="Leave Approval",
        description="Supervisor approval; department head for leave over three days",
        scope=DefinitionScope.REQUEST_TYPE,
        company_id=COMPANY_ID,
        request_type="LEAVE",
        nodes=nodes,
        edges=edges,
        actor_id="seed"
    )


def create_default_workflow(service: WorkflowService):
    """Company default: managers and finance review in parallel"""
    nodes = [
        NodeTemplate(node_id="start", node_type=NodeType.START, name="Start"),
        NodeTemplate(node_id="fork", node_type=NodeType.PARALLEL_FORK, name="Parallel Review"),
        NodeTemplate(
            node_id="managers", node_type=NodeType.APPROVAL, name="Managers",
            approver_strategy=ApproverStrategy.POSITION, strategy_param="P-MGR",
            quorum_mode=QuorumMode.MAJORITY
        ),
        NodeTemplate(
            node_id="finance", node_type=NodeType.APPROVAL, name="Finance",
            approver_strategy=ApproverStrategy.ROLE, strategy_param="ROLE_FINANCE_APPROVER",
            quorum_mode=QuorumMode.ANY
        ),
        NodeTemplate(node_id="join", node_type=NodeType.PARALLEL_JOIN, name="Join"),
        NodeTemplate(node_id="end", node_type=NodeType.END, name="End"),
    ]
    edges = [
        EdgeTemplate(from_node_id="start", to_node_id="fork"),
        EdgeTemplate(from_node_id="fork", to_node_id="managers", sort_order=1),
        EdgeTemplate(from_node_id="fork", to_node_id="finance", sort_order=2),
        EdgeTemplate(from_node_id="managers", to_node_id="join"),
        EdgeTemplate(from_node_id="finance", to_node_id="join"),
        EdgeTemplate(from_node_id="join", to_node_id="end"),
    ]
    return service.create_definition(
        name="Company Default Approval",
        scope=DefinitionScope.DEFAULT,
        company_id=COMPANY_ID,
        nodes=nodes,
        edges=edges,
        actor_id="seed"
    )


def main():
    """Main seed function"""
    print("=" * 50)
    print("Approval Engine - Seed Data")
    print("=" * 50)

    print("\nCreating indexes...")
    create_indexes()
    print("Indexes created.")

    count = seed_org_chart()
    print(f"Seeded {count} org assignments for {COMPANY_ID}")

    if get_collection("workflow_definitions").count_documents({}) > 0:
        print("Definitions already exist. Skipping workflow seed.")
    else:
        service = WorkflowService()
        leave = create_leave_workflow(service)
        default = create_default_workflow(service)
        print(f"Created definition: {leave.name} ({leave.definition_id})")
        print(f"Created definition: {default.name} ({default.definition_id})")

    print("\nSeed completed!")


if __name__ == "__main__":
    main()
