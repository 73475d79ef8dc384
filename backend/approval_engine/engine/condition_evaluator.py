"""Edge condition matching against request context data"""
from typing import Any, Callable, Dict, List, Optional

from ..domain.models import Condition
from ..domain.enums import ConditionOperator
from ..utils.logger import get_logger

logger = get_logger(__name__)

_MISSING = object()


class ConditionEvaluator:
    """
    Operator table, with no eval() involved:
    - EQUALS / NOT_EQUALS compare textual forms, so 5, 5.0 and "5" are equal
    - GT / LT / GTE / LTE coerce both sides to numbers; non-numeric fails closed
    - CONTAINS is substring on text, membership on lists
    - IN / NOT_IN accept a list literal or a comma separated string
    - A missing field satisfies only the negative operators
    """

    def evaluate(self, condition: Condition, context: Dict[str, Any]) -> bool:
        try:
            field_value = self._get_field_value(condition.field, context)
            if field_value is _MISSING or field_value is None:
                return condition.operator in (ConditionOperator.NOT_EQUALS, ConditionOperator.NOT_IN)
            return self._compare(field_value, condition.operator, condition.value)

        except Exception as e:
            logger.warning(
                f"Condition evaluation failed for field '{condition.field}': {e}",
                extra={"action": condition.operator.value}
            )
            return False  # Fail closed

    def _get_field_value(self, field_path: str, context: Dict[str, Any]) -> Any:
        """"expense.amount" reads context["expense"]["amount"]; a literal dotted key wins"""
        if field_path in context:
            return context[field_path]

        value: Any = context
        for part in field_path.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return _MISSING
        return value

    def _compare(
        self,
        field_value: Any,
        operator: ConditionOperator,
        compare_value: Any
    ) -> bool:
        if operator == ConditionOperator.EQUALS:
            return self.as_text(field_value) == self.as_text(compare_value)

        elif operator == ConditionOperator.NOT_EQUALS:
            return self.as_text(field_value) != self.as_text(compare_value)

        elif operator == ConditionOperator.GT:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a > b)

        elif operator == ConditionOperator.LT:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a < b)

        elif operator == ConditionOperator.GTE:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a >= b)

        elif operator == ConditionOperator.LTE:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a <= b)

        elif operator == ConditionOperator.CONTAINS:
            if isinstance(field_value, (list, tuple, set)):
                needle = self.as_text(compare_value)
                return any(self.as_text(item) == needle for item in field_value)
            return self.as_text(compare_value) in self.as_text(field_value)

        elif operator == ConditionOperator.IN:
            return self.as_text(field_value) in self._as_text_set(compare_value)

        elif operator == ConditionOperator.NOT_IN:
            return self.as_text(field_value) not in self._as_text_set(compare_value)

        return False

    def _compare_numeric(
        self,
        field_value: Any,
        compare_value: Any,
        comparator: Callable[[float, float], bool]
    ) -> bool:
        """Compare numeric values, False if either side is not a number"""
        a = self._as_number(field_value)
        b = self._as_number(compare_value)
        if a is None or b is None:
            return False
        return comparator(a, b)

    @staticmethod
    def _as_number(value: Any) -> Optional[float]:
        if isinstance(value, bool):
            return float(value)
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            try:
                number = float(text)
            except ValueError:
                return None
            return number if number == number else None  # NaN never compares
        return None

    @staticmethod
    def as_text(value: Any) -> str:
        """Textual form used for equality and membership"""
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value).strip()

    def _as_text_set(self, value: Any) -> List[str]:
        if isinstance(value, (list, tuple, set)):
            return [self.as_text(v) for v in value]
        return [part.strip() for part in self.as_text(value).split(",")]
