"""Tests for quorum evaluation"""
import pytest

from approval_engine.domain.enums import QuorumMode, QuorumOutcome, DecisionAction
from approval_engine.domain.models import Decision
from approval_engine.engine.quorum import QuorumEvaluator
from tests.factories import NOW

APPROVE = DecisionAction.APPROVE
REJECT = DecisionAction.REJECT
RETURN = DecisionAction.RETURN


def decision(actor_id, action, acting_for=None):
    return Decision(actor_id=actor_id, action=action, decided_at=NOW, acting_as_delegate_for=acting_for)


@pytest.fixture
def quorum():
    return QuorumEvaluator()


def test_no_decisions_is_pending(quorum):
    for mode in QuorumMode:
        assert quorum.evaluate(mode, ["A", "B"], []) == QuorumOutcome.STILL_PENDING


def test_any_needs_one_approval(quorum):
    assert quorum.evaluate(QuorumMode.ANY, ["A", "B", "C"], [decision("B", APPROVE)]) == QuorumOutcome.SATISFIED


def test_all_needs_every_assignee(quorum):
    decisions = [decision("A", APPROVE), decision("B", APPROVE)]
    assert quorum.evaluate(QuorumMode.ALL, ["A", "B", "C"], decisions) == QuorumOutcome.STILL_PENDING
    decisions.append(decision("C", APPROVE))
    assert quorum.evaluate(QuorumMode.ALL, ["A", "B", "C"], decisions) == QuorumOutcome.SATISFIED


@pytest.mark.parametrize("assigned,approvals,expected", [
    (["A", "B", "C"], ["A"], QuorumOutcome.STILL_PENDING),
    (["A", "B", "C"], ["A", "B"], QuorumOutcome.SATISFIED),
    (["A", "B", "C", "D"], ["A", "B"], QuorumOutcome.STILL_PENDING),
    (["A", "B", "C", "D"], ["A", "B", "C"], QuorumOutcome.SATISFIED),
    (["A"], ["A"], QuorumOutcome.SATISFIED),
])
def test_majority_is_strictly_more_than_half(quorum, assigned, approvals, expected):
    decisions = [decision(a, APPROVE) for a in approvals]
    assert quorum.evaluate(QuorumMode.MAJORITY, assigned, decisions) == expected


def test_single_reject_vetoes_every_mode(quorum):
    decisions = [decision("A", APPROVE), decision("B", APPROVE), decision("C", REJECT)]
    for mode in QuorumMode:
        assert quorum.evaluate(mode, ["A", "B", "C"], decisions) == QuorumOutcome.FAILED


def test_reject_wins_over_return(quorum):
    decisions = [decision("A", RETURN), decision("B", REJECT)]
    assert quorum.evaluate(QuorumMode.ALL, ["A", "B"], decisions) == QuorumOutcome.FAILED


def test_return(quorum):
    assert quorum.evaluate(QuorumMode.ANY, ["A", "B"], [decision("A", RETURN)]) == QuorumOutcome.RETURNED


def test_delegate_approval_counts_for_principal(quorum):
    decisions = [decision("A", APPROVE), decision("D", APPROVE, acting_for="B")]
    assert quorum.evaluate(QuorumMode.ALL, ["A", "B"], decisions) == QuorumOutcome.SATISFIED


def test_majority_ignores_approvals_from_outside_the_assignees(quorum):
    decisions = [decision("X", APPROVE), decision("A", APPROVE)]
    assert quorum.evaluate(QuorumMode.MAJORITY, ["A", "B", "C"], decisions) == QuorumOutcome.STILL_PENDING
