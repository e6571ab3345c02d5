"""
Condition model and evaluator for automation rules.

A condition compares one field of the evaluation context against a literal
value. Conditions are combined with AND in a flat list, or arbitrarily
nested with ConditionGroup (AND/OR).

Evaluation is closed-world: a missing field, an unknown operator or
operands of the wrong type all make the condition false. Nothing in this
module raises during evaluation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class LogicOperator(str, Enum):
    AND = "AND"
    OR = "OR"


@dataclass
class RuleCondition:
    """Single field/operator/value comparison."""

    field: str
    operator: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "operator": self.operator, "value": self.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RuleCondition":
        return cls(
            field=data.get("field", ""),
            operator=data.get("operator", ""),
            value=data.get("value"),
        )


@dataclass
class ConditionGroup:
    """Recursive AND/OR group of conditions and sub-groups."""

    logic: LogicOperator = LogicOperator.AND
    conditions: List[RuleCondition] = field(default_factory=list)
    groups: List["ConditionGroup"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "logic": self.logic.value,
            "conditions": [c.to_dict() for c in self.conditions],
            "groups": [g.to_dict() for g in self.groups],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConditionGroup":
        logic = str(data.get("logic", LogicOperator.AND.value)).upper()
        return cls(
            logic=LogicOperator.OR if logic == LogicOperator.OR.value else LogicOperator.AND,
            conditions=[RuleCondition.from_dict(c) for c in data.get("conditions", [])],
            groups=[cls.from_dict(g) for g in data.get("groups", [])],
        )


# ============================================================================
# Operator implementations
# ============================================================================


def to_number(value: Any) -> Optional[float]:
    """
    Coerce an int or float to float.

    Booleans are not numbers here even though bool subclasses int, so
    ``True > 0`` is never evaluated as a numeric comparison.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _compare_numbers(actual: Any, expected: Any, op: str) -> bool:
    left = to_number(actual)
    right = to_number(expected)
    if left is None or right is None:
        return False

    if op == "gt":
        return left > right
    if op == "gte":
        return left >= right
    if op == "lt":
        return left < right
    return left <= right


def _contains(actual: Any, expected: Any) -> bool:
    # Prefix match, not substring search: "hello world" contains "hello"
    # but not "world".
    if not isinstance(actual, str) or not isinstance(expected, str):
        return False
    if not actual or not expected:
        return False
    return actual == expected or actual.startswith(expected)


def _same_value(actual: Any, expected: Any) -> bool:
    # True == 1 in Python; a bool only ever equals another bool
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


def _in(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple)):
        return False
    return any(_same_value(actual, candidate) for candidate in expected)


_NUMERIC_ALIASES = {
    "gt": "gt",
    "greater_than": "gt",
    "gte": "gte",
    "greater_than_or_equal": "gte",
    "lt": "lt",
    "less_than": "lt",
    "lte": "lte",
    "less_than_or_equal": "lte",
}


def evaluate_condition(condition: RuleCondition, context: Mapping[str, Any]) -> bool:
    """
    Evaluate a single condition against an evaluation context.

    Args:
        condition: Condition to evaluate
        context: Flat mapping of field name to value

    Returns:
        True if the condition holds; False otherwise, including when the
        field is absent or the operator is unknown

    Example:
        >>> evaluate_condition(RuleCondition("count", "gte", 3), {"count": 5})
        True
        >>> evaluate_condition(RuleCondition("status", "ne", "x"), {})
        False
    """
    if condition.field not in context:
        return False

    actual = context[condition.field]
    expected = condition.value
    op = condition.operator

    if op in ("eq", "equals"):
        return _same_value(actual, expected)
    if op in ("ne", "not_equals"):
        return not _same_value(actual, expected)
    if op in _NUMERIC_ALIASES:
        return _compare_numbers(actual, expected, _NUMERIC_ALIASES[op])
    if op == "contains":
        return _contains(actual, expected)
    if op == "in":
        return _in(actual, expected)

    return False


def evaluate_conditions(
    conditions: List[RuleCondition], context: Mapping[str, Any]
) -> bool:
    """Implicit AND over a flat list. An empty list always matches."""
    for condition in conditions:
        if not evaluate_condition(condition, context):
            return False
    return True


def evaluate_condition_group(group: ConditionGroup, context: Mapping[str, Any]) -> bool:
    """
    Evaluate a (possibly nested) condition group.

    An empty group is true. Otherwise every leaf condition and every
    sub-group is evaluated, then the results are combined with the group's
    logic operator.
    """
    if not group.conditions and not group.groups:
        return True

    results = [evaluate_condition(c, context) for c in group.conditions]
    results.extend(evaluate_condition_group(g, context) for g in group.groups)

    if group.logic == LogicOperator.OR:
        return any(results)
    return all(results)


# ============================================================================
# Operator catalog (discovery for rule builders)
# ============================================================================


AVAILABLE_OPERATORS: List[Dict[str, str]] = [
    {"code": "eq", "name": "Equals", "description": "Field equals the value", "example": "status eq 'open'"},
    {"code": "ne", "name": "Not equals", "description": "Field is present and differs from the value", "example": "status ne 'closed'"},
    {"code": "gt", "name": "Greater than", "description": "Numeric field is greater than the value", "example": "message_count gt 5"},
    {"code": "gte", "name": "Greater than or equal", "description": "Numeric field is greater than or equal to the value", "example": "message_count gte 5"},
    {"code": "lt", "name": "Less than", "description": "Numeric field is less than the value", "example": "session_duration_minutes lt 10"},
    {"code": "lte", "name": "Less than or equal", "description": "Numeric field is less than or equal to the value", "example": "session_duration_minutes lte 10"},
    {"code": "contains", "name": "Starts with", "description": "Text field equals or starts with the value", "example": "channel contains 'whats'"},
    {"code": "in", "name": "In list", "description": "Field equals one of the listed values", "example": "agent_id in ['a', 'b']"},
]

OPERATOR_ALIASES: Dict[str, str] = {
    "equals": "eq",
    "not_equals": "ne",
    "greater_than": "gt",
    "greater_than_or_equal": "gte",
    "less_than": "lt",
    "less_than_or_equal": "lte",
}


def available_operators() -> List[Dict[str, str]]:
    return [dict(op) for op in AVAILABLE_OPERATORS]


def is_supported_operator(operator: str) -> bool:
    codes = {op["code"] for op in AVAILABLE_OPERATORS}
    return operator in codes or operator in OPERATOR_ALIASES
