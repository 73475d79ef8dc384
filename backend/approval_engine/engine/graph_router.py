"""Graph Router - Determine next node from the workflow graph"""
from collections import deque
from typing import Any, Dict, List, Optional

from ..domain.models import WorkflowDefinition, EdgeTemplate
from ..domain.enums import NodeType, ApproverStrategy
from .condition_evaluator import ConditionEvaluator
from ..utils.logger import get_logger

logger = get_logger(__name__)

PARAMETERIZED_STRATEGIES = frozenset({
    ApproverStrategy.SPECIFIC_EMPLOYEE,
    ApproverStrategy.POSITION,
    ApproverStrategy.SPECIFIC_POSITION,
    ApproverStrategy.ROLE,
    ApproverStrategy.POSITION_LEVEL,
})


class GraphRouter:
    """
    Resolve routing over a workflow definition

    Given node N and context C:
    1. Collect outgoing edges of N ordered by sort_order
    2. The first non-default edge whose condition holds wins
    3. Otherwise the default edge
    4. Otherwise the first edge
    5. No outgoing edges -> None (the caller treats it as a stall)

    Edges without a condition never match in step 2; they are only reached
    through the fallbacks.
    """

    def __init__(self, condition_evaluator: Optional[ConditionEvaluator] = None):
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()

    def route(
        self,
        definition: WorkflowDefinition,
        from_node_id: str,
        context: Dict[str, Any]
    ) -> Optional[str]:
        """
        Resolve the next node ID

        Args:
            definition: Workflow graph
            from_node_id: Node being left
            context: Request context data for conditions

        Returns:
            Next node ID, or None if the node has no outgoing edges
        """
        edges = definition.outgoing_edges(from_node_id)
        if not edges:
            return None

        selected: Optional[EdgeTemplate] = None
        reason = "condition"

        for edge in edges:
            if edge.is_default or edge.condition is None:
                continue
            if self.condition_evaluator.evaluate(edge.condition, context):
                selected = edge
                break

        if selected is None:
            selected = next((e for e in edges if e.is_default), None)
            reason = "default"

        if selected is None:
            selected = edges[0]
            reason = "first"

        logger.info(
            f"Resolved route: {from_node_id} -> {selected.to_node_id} ({reason})",
            extra={"definition_id": definition.definition_id, "node_id": from_node_id}
        )
        return selected.to_node_id

    def fork_targets(self, definition: WorkflowDefinition, fork_node_id: str) -> List[str]:
        """All lane entry nodes of a fork, in sort_order"""
        return [e.to_node_id for e in definition.outgoing_edges(fork_node_id)]

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, definition: WorkflowDefinition) -> List[Dict[str, Any]]:
        """
        Check structural rules of a definition

        Returns:
            List of problems, each {"code", "message", "node_id"?}; empty when valid
        """
        problems: List[Dict[str, Any]] = []

        def problem(code: str, message: str, node_id: Optional[str] = None) -> None:
            entry: Dict[str, Any] = {"code": code, "message": message}
            if node_id:
                entry["node_id"] = node_id
            problems.append(entry)

        node_ids = [n.node_id for n in definition.nodes]
        seen = set()
        for node_id in node_ids:
            if node_id in seen:
                problem("DUPLICATE_NODE", f"Node {node_id} is declared more than once", node_id)
            seen.add(node_id)

        starts = [n for n in definition.nodes if n.node_type == NodeType.START]
        if len(starts) != 1:
            problem("START_COUNT", f"Definition must have exactly one START node, found {len(starts)}")

        for edge in definition.edges:
            if edge.from_node_id not in seen:
                problem("DANGLING_EDGE", f"Edge source {edge.from_node_id} does not exist", edge.from_node_id)
            if edge.to_node_id not in seen:
                problem("DANGLING_EDGE", f"Edge target {edge.to_node_id} does not exist", edge.to_node_id)

        for node in definition.nodes:
            outgoing = definition.outgoing_edges(node.node_id)
            defaults = [e for e in outgoing if e.is_default]
            if len(defaults) > 1:
                problem("MULTIPLE_DEFAULTS", f"Node {node.node_id} has {len(defaults)} default edges", node.node_id)

            if node.node_type == NodeType.END:
                continue
            if not outgoing:
                problem("NO_OUTGOING_EDGE", f"Node {node.node_id} has no outgoing edge", node.node_id)

            if node.node_type == NodeType.APPROVAL:
                if node.approver_strategy is None:
                    problem("MISSING_STRATEGY", f"Approval node {node.node_id} has no approver strategy", node.node_id)
                elif node.approver_strategy == ApproverStrategy.ORG_RELATION and node.org_relation is None:
                    problem("MISSING_ORG_RELATION", f"Approval node {node.node_id} needs org_relation", node.node_id)
                elif node.approver_strategy in PARAMETERIZED_STRATEGIES and not node.strategy_param:
                    problem("MISSING_STRATEGY_PARAM", f"Approval node {node.node_id} needs strategy_param", node.node_id)

            if node.node_type == NodeType.PARALLEL_FORK and len(outgoing) < 2:
                problem("FORK_TOO_NARROW", f"Fork {node.node_id} needs at least two outgoing edges", node.node_id)

        if len(starts) == 1 and not problems:
            if not self._end_reachable(definition, starts[0].node_id):
                problem("END_UNREACHABLE", "No END node is reachable from START")

        return problems

    def _end_reachable(self, definition: WorkflowDefinition, start_node_id: str) -> bool:
        """Breadth-first search from START for any END node"""
        visited = {start_node_id}
        queue = deque([start_node_id])
        while queue:
            node_id = queue.popleft()
            node = definition.get_node(node_id)
            if node and node.node_type == NodeType.END:
                return True
            for edge in definition.outgoing_edges(node_id):
                if edge.to_node_id not in visited:
                    visited.add(edge.to_node_id)
                    queue.append(edge.to_node_id)
        return False
