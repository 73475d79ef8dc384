"""Tests for routing and definition validation"""
import pytest

from approval_engine.domain.enums import NodeType, ApproverStrategy, ConditionOperator as Op
from approval_engine.engine.graph_router import GraphRouter
from tests.factories import (
    make_definition, linear_definition, fork_join_definition,
    start_node, end_node, approval_node, node, edge, cond
)


@pytest.fixture
def router():
    return GraphRouter()


def branching_definition():
    nodes = [
        start_node(),
        node("check", NodeType.CONDITION),
        approval_node("big", param="E100"),
        approval_node("medium", param="E200"),
        approval_node("small", param="E300"),
        end_node(),
    ]
    edges = [
        edge("start", "check"),
        edge("check", "small", is_default=True, sort_order=0),
        edge("check", "medium", cond("amount", Op.GT, 100), sort_order=2),
        edge("check", "big", cond("amount", Op.GT, 1000), sort_order=1),
        edge("big", "end"),
        edge("medium", "end"),
        edge("small", "end"),
    ]
    return make_definition(nodes, edges)


class TestRoute:

    def test_first_matching_condition_by_sort_order(self, router):
        definition = branching_definition()
        assert router.route(definition, "check", {"amount": 5000}) == "big"
        assert router.route(definition, "check", {"amount": 500}) == "medium"

    def test_default_edge_when_nothing_matches(self, router):
        assert router.route(branching_definition(), "check", {"amount": 10}) == "small"

    def test_first_edge_without_default(self, router):
        definition = make_definition(
            [start_node(), node("c", NodeType.CONDITION), end_node("a"), end_node("b")],
            [
                edge("start", "c"),
                edge("c", "a", cond("x", Op.EQUALS, 1), sort_order=1),
                edge("c", "b", cond("x", Op.EQUALS, 2), sort_order=2),
            ]
        )
        assert router.route(definition, "c", {"x": 3}) == "a"

    def test_unconditioned_edge_is_only_a_fallback(self, router):
        definition = make_definition(
            [start_node(), node("c", NodeType.CONDITION), end_node("plain"), end_node("cond")],
            [
                edge("start", "c"),
                edge("c", "plain", sort_order=1),
                edge("c", "cond", cond("x", Op.EQUALS, 1), sort_order=2),
            ]
        )
        assert router.route(definition, "c", {"x": 1}) == "cond"
        assert router.route(definition, "c", {"x": 2}) == "plain"

    def test_no_outgoing_edges(self, router):
        assert router.route(linear_definition("E100"), "end", {}) is None

    def test_fork_targets_in_sort_order(self, router):
        assert router.fork_targets(fork_join_definition(), "fork") == ["left", "right"]


class TestValidate:

    def codes(self, router, definition):
        return {p["code"] for p in router.validate(definition)}

    def test_valid_definitions(self, router):
        assert router.validate(linear_definition("E100", "E200")) == []
        assert router.validate(fork_join_definition()) == []
        assert router.validate(branching_definition()) == []

    def test_start_count(self, router):
        definition = make_definition([approval_node("a", param="E1"), end_node()], [edge("a", "end")])
        assert "START_COUNT" in self.codes(router, definition)

    def test_dangling_edge(self, router):
        definition = make_definition([start_node(), end_node()], [edge("start", "end"), edge("start", "ghost")])
        assert "DANGLING_EDGE" in self.codes(router, definition)

    def test_duplicate_node(self, router):
        definition = make_definition([start_node(), end_node(), end_node()], [edge("start", "end")])
        assert "DUPLICATE_NODE" in self.codes(router, definition)

    def test_multiple_defaults(self, router):
        definition = make_definition(
            [start_node(), end_node("a"), end_node("b")],
            [edge("start", "a", is_default=True), edge("start", "b", is_default=True)]
        )
        assert "MULTIPLE_DEFAULTS" in self.codes(router, definition)

    def test_dead_end(self, router):
        definition = make_definition(
            [start_node(), approval_node("a", param="E1"), end_node()],
            [edge("start", "a")]
        )
        assert "NO_OUTGOING_EDGE" in self.codes(router, definition)

    def test_strategy_settings(self, router):
        definition = make_definition(
            [
                start_node(),
                approval_node("a", strategy=ApproverStrategy.POSITION),
                approval_node("b", strategy=ApproverStrategy.ORG_RELATION),
                end_node(),
            ],
            [edge("start", "a"), edge("a", "b"), edge("b", "end")]
        )
        codes = self.codes(router, definition)
        assert "MISSING_STRATEGY_PARAM" in codes
        assert "MISSING_ORG_RELATION" in codes

    def test_narrow_fork(self, router):
        definition = make_definition(
            [start_node(), node("fork", NodeType.PARALLEL_FORK), end_node()],
            [edge("start", "fork"), edge("fork", "end")]
        )
        assert "FORK_TOO_NARROW" in self.codes(router, definition)

    def test_end_unreachable(self, router):
        definition = make_definition(
            [start_node(), approval_node("a", param="E1"), approval_node("b", param="E2"), end_node()],
            [edge("start", "a"), edge("a", "b"), edge("b", "a")]
        )
        assert self.codes(router, definition) == {"END_UNREACHABLE"}
