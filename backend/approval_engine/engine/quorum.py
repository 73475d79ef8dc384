"""Quorum Evaluator - Is an approval step decided?"""
from typing import Iterable, List

from ..domain.enums import QuorumMode, QuorumOutcome, DecisionAction
from ..domain.models import Decision


class QuorumEvaluator:
    """
    Decide an approval record from its assignees and decisions

    Order of checks:
    1. Any REJECT -> FAILED, whatever the mode
    2. Any RETURN -> RETURNED
    3. ANY: one APPROVE; ALL: every assignee covered; MAJORITY: more than half
    """

    def evaluate(
        self,
        mode: QuorumMode,
        assigned: Iterable[str],
        decisions: List[Decision]
    ) -> QuorumOutcome:
        assigned_set = set(assigned)

        if any(d.action == DecisionAction.REJECT for d in decisions):
            return QuorumOutcome.FAILED
        if any(d.action == DecisionAction.RETURN for d in decisions):
            return QuorumOutcome.RETURNED

        # A delegate's approval counts for the principal it stood in for
        approved_by = {d.principal_id for d in decisions if d.action == DecisionAction.APPROVE}

        if mode == QuorumMode.ANY:
            satisfied = len(approved_by) >= 1
        elif mode == QuorumMode.ALL:
            satisfied = bool(assigned_set) and assigned_set <= approved_by
        else:  # MAJORITY
            satisfied = len(approved_by & assigned_set) * 2 > len(assigned_set)

        return QuorumOutcome.SATISFIED if satisfied else QuorumOutcome.STILL_PENDING
