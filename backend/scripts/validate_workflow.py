"""Script to validate a stored workflow definition
Run: python -m scripts.validate_workflow <definition_id> [version]
"""
import json
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from approval_engine.domain.enums import NodeType
from approval_engine.domain.errors import NotFoundError
from approval_engine.services.workflow_service import WorkflowService


def describe_node(node) -> str:
    if node.node_type != NodeType.APPROVAL:
        return ""
    detail = f"{node.approver_strategy.value if node.approver_strategy else 'NO STRATEGY'}"
    if node.strategy_param:
        detail += f"={node.strategy_param}"
    if node.org_relation:
        detail += f" ({node.org_relation.value}, {node.org_level_up} up)"
    detail += f", quorum {node.quorum_mode.value}"
    if node.is_optional:
        detail += ", optional"
    return detail


def validate_workflow(definition_id: str, version: int = None) -> bool:
    service = WorkflowService()
    try:
        if version is not None:
            definition = service.get_definition_version(definition_id, version)
        else:
            definition = service.get_definition(definition_id)
    except NotFoundError as e:
        print(f"Definition not found: {e.message}")
        return False

    print(f"Found definition: {definition.name}")
    print(f"   Version: {definition.version}")
    print(f"   Scope: {definition.scope.value} (company={definition.company_id}, "
          f"request_type={definition.request_type}, employee={definition.employee_id})")
    print(f"   Active: {definition.is_active}")

    print("\n" + "=" * 60)
    print(f"NODES ({len(definition.nodes)})")
    print("=" * 60)
    for node in definition.nodes:
        print(f"   [{node.node_type.value}] {node.display_name} ({node.node_id}) {describe_node(node)}")

    print("\n" + "=" * 60)
    print(f"EDGES ({len(definition.edges)})")
    print("=" * 60)
    names = {n.node_id: n.display_name for n in definition.nodes}
    for edge in definition.edges:
        label = "default" if edge.is_default else ""
        if edge.condition:
            c = edge.condition
            label = f"{c.field} {c.operator.value} {c.value!r}"
        print(f"   {names.get(edge.from_node_id, edge.from_node_id)} --[{label}]--> "
              f"{names.get(edge.to_node_id, edge.to_node_id)}")

    print("\n" + "=" * 60)
    print("VALIDATION RESULTS")
    print("=" * 60)
    result = service.validate(definition)
    if result["is_valid"]:
        print("WORKFLOW IS VALID")
    else:
        print("WORKFLOW HAS ERRORS:")
        for problem in result["errors"]:
            where = f" [{problem['node_id']}]" if problem.get("node_id") else ""
            print(f"   - {problem['code']}{where}: {problem['message']}")

    if "--raw" in sys.argv:
        print("\n" + json.dumps(definition.model_dump(mode="json"), indent=2))
    return result["is_valid"]


if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    if not args:
        print("Usage: python -m scripts.validate_workflow <definition_id> [version] [--raw]")
        sys.exit(2)
    ok = validate_workflow(args[0], int(args[1]) if len(args) > 1 else None)
    sys.exit(0 if ok else 1)
