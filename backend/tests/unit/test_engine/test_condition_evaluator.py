"""Tests for edge condition evaluation"""
import pytest

from approval_engine.domain.enums import ConditionOperator as Op
from approval_engine.engine.condition_evaluator import ConditionEvaluator
from tests.factories import cond


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


class TestEquality:

    def test_numbers_and_text_compare_by_textual_form(self, evaluator):
        assert evaluator.evaluate(cond("amount", Op.EQUALS, "5"), {"amount": 5})
        assert evaluator.evaluate(cond("amount", Op.EQUALS, 5), {"amount": 5.0})
        assert not evaluator.evaluate(cond("amount", Op.EQUALS, 6), {"amount": 5})

    def test_booleans(self, evaluator):
        assert evaluator.evaluate(cond("urgent", Op.EQUALS, "true"), {"urgent": True})

    def test_not_equals(self, evaluator):
        assert evaluator.evaluate(cond("type", Op.NOT_EQUALS, "ANNUAL"), {"type": "SICK"})
        assert not evaluator.evaluate(cond("type", Op.NOT_EQUALS, "SICK"), {"type": "SICK"})


class TestNumeric:

    @pytest.mark.parametrize("operator,value,expected", [
        (Op.GT, 3, True),
        (Op.GT, 5, False),
        (Op.GTE, 5, True),
        (Op.LT, 10, True),
        (Op.LTE, 4, False),
    ])
    def test_numeric_operators(self, evaluator, operator, value, expected):
        assert evaluator.evaluate(cond("days", operator, value), {"days": 5}) is expected

    def test_numeric_strings_are_coerced(self, evaluator):
        assert evaluator.evaluate(cond("amount", Op.GT, "1000"), {"amount": "1500.50"})

    def test_non_numeric_fails_closed(self, evaluator):
        assert not evaluator.evaluate(cond("amount", Op.GT, 10), {"amount": "lots"})
        assert not evaluator.evaluate(cond("amount", Op.LT, 10), {"amount": "lots"})


class TestMembership:

    def test_contains_on_text_and_lists(self, evaluator):
        assert evaluator.evaluate(cond("reason", Op.CONTAINS, "visa"), {"reason": "visa appointment"})
        assert evaluator.evaluate(cond("tags", Op.CONTAINS, "urgent"), {"tags": ["urgent", "travel"]})
        assert not evaluator.evaluate(cond("tags", Op.CONTAINS, "urg"), {"tags": ["urgent"]})

    def test_in_accepts_list_or_comma_string(self, evaluator):
        assert evaluator.evaluate(cond("dept", Op.IN, ["OPS", "FIN"]), {"dept": "FIN"})
        assert evaluator.evaluate(cond("dept", Op.IN, "OPS, FIN"), {"dept": "FIN"})
        assert not evaluator.evaluate(cond("dept", Op.IN, "OPS,FIN"), {"dept": "HR"})

    def test_not_in(self, evaluator):
        assert evaluator.evaluate(cond("dept", Op.NOT_IN, ["OPS"]), {"dept": "HR"})


class TestFieldLookup:

    def test_dot_notation(self, evaluator):
        context = {"expense": {"amount": 200}}
        assert evaluator.evaluate(cond("expense.amount", Op.GTE, 200), context)

    def test_flat_key_with_dot_wins(self, evaluator):
        context = {"expense.amount": 1, "expense": {"amount": 500}}
        assert evaluator.evaluate(cond("expense.amount", Op.EQUALS, 1), context)

    def test_missing_field_only_satisfies_negative_operators(self, evaluator):
        assert not evaluator.evaluate(cond("days", Op.EQUALS, 1), {})
        assert not evaluator.evaluate(cond("days", Op.GT, 1), {})
        assert evaluator.evaluate(cond("days", Op.NOT_EQUALS, 1), {})
        assert evaluator.evaluate(cond("days", Op.NOT_IN, [1]), {"days": None})
