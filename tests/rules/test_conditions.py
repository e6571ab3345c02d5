"""
Unit tests for the condition evaluator.

Covers every operator and alias, closed-world handling of missing fields
and type mismatches, flat AND lists and nested AND/OR groups.
"""

import pytest

from crm_automation.domain.conditions import (
    ConditionGroup,
    LogicOperator,
    RuleCondition,
    available_operators,
    evaluate_condition,
    evaluate_condition_group,
    evaluate_conditions,
    is_supported_operator,
    to_number,
)


class TestEqualityOperators:
    """eq / ne and their long-form aliases"""

    @pytest.mark.parametrize("operator", ["eq", "equals"])
    def test_equal_values_match(self, operator):
        condition = RuleCondition("status", operator, "open")
        assert evaluate_condition(condition, {"status": "open"}) is True
        assert evaluate_condition(condition, {"status": "closed"}) is False

    @pytest.mark.parametrize("operator", ["ne", "not_equals"])
    def test_not_equal(self, operator):
        condition = RuleCondition("status", operator, "closed")
        assert evaluate_condition(condition, {"status": "open"}) is True
        assert evaluate_condition(condition, {"status": "closed"}) is False

    def test_ne_is_false_when_field_missing(self):
        """Absent fields never satisfy a condition, not even ne"""
        assert evaluate_condition(RuleCondition("status", "ne", "x"), {}) is False

    def test_eq_does_not_coerce_types(self):
        assert evaluate_condition(RuleCondition("count", "eq", "5"), {"count": 5}) is False

    @pytest.mark.parametrize(
        "operator,actual,expected,result",
        [
            ("eq", True, 1, False),
            ("eq", 0, False, False),
            ("eq", True, True, True),
            ("ne", True, 1, True),
            ("ne", False, False, False),
            ("in", True, [1, 2], False),
            ("in", 1, [True, 2], False),
            ("in", True, [False, True], True),
        ],
    )
    def test_booleans_only_equal_booleans(self, operator, actual, expected, result):
        condition = RuleCondition("flag", operator, expected)
        assert evaluate_condition(condition, {"flag": actual}) is result


class TestMissingField:
    """An absent field fails every operator, negations included"""

    @pytest.mark.parametrize(
        "operator,value",
        [
            ("eq", "x"),
            ("equals", "x"),
            ("ne", "x"),
            ("not_equals", "x"),
            ("gt", 1),
            ("greater_than", 1),
            ("gte", 1),
            ("greater_than_or_equal", 1),
            ("lt", 1),
            ("less_than", 1),
            ("lte", 1),
            ("less_than_or_equal", 1),
            ("contains", "x"),
            ("in", ["x"]),
        ],
    )
    def test_missing_field_is_false(self, operator, value):
        assert evaluate_condition(RuleCondition("absent", operator, value), {}) is False
        assert evaluate_condition(RuleCondition("absent", operator, value), {"other": "x"}) is False


class TestNumericOperators:
    """gt / gte / lt / lte and aliases"""

    @pytest.mark.parametrize(
        "operator,actual,expected,result",
        [
            ("gt", 6, 5, True),
            ("gt", 5, 5, False),
            ("greater_than", 5.5, 5, True),
            ("gte", 5, 5, True),
            ("greater_than_or_equal", 4, 5, False),
            ("lt", 3, 5, True),
            ("less_than", 5, 5, False),
            ("lte", 5, 5.0, True),
            ("less_than_or_equal", 6, 5, False),
        ],
    )
    def test_numeric_comparisons(self, operator, actual, expected, result):
        condition = RuleCondition("n", operator, expected)
        assert evaluate_condition(condition, {"n": actual}) is result

    def test_non_numeric_operand_is_false(self):
        assert evaluate_condition(RuleCondition("n", "gt", 5), {"n": "10"}) is False
        assert evaluate_condition(RuleCondition("n", "gt", "5"), {"n": 10}) is False

    def test_booleans_are_not_numbers(self):
        assert evaluate_condition(RuleCondition("n", "gt", 0), {"n": True}) is False
        assert to_number(True) is None
        assert to_number(3) == 3.0

    def test_int_and_float_compare(self):
        assert evaluate_condition(RuleCondition("n", "gte", 2.5), {"n": 3}) is True


class TestContainsOperator:
    """contains is equality or prefix match on non-empty strings"""

    def test_prefix_matches(self):
        condition = RuleCondition("text", "contains", "hello")
        assert evaluate_condition(condition, {"text": "hello world"}) is True

    def test_substring_that_is_not_prefix_does_not_match(self):
        condition = RuleCondition("text", "contains", "world")
        assert evaluate_condition(condition, {"text": "hello world"}) is False

    def test_exact_match(self):
        condition = RuleCondition("text", "contains", "hello")
        assert evaluate_condition(condition, {"text": "hello"}) is True

    def test_empty_strings_do_not_match(self):
        assert evaluate_condition(RuleCondition("text", "contains", ""), {"text": "abc"}) is False
        assert evaluate_condition(RuleCondition("text", "contains", "a"), {"text": ""}) is False

    def test_non_string_operands(self):
        assert evaluate_condition(RuleCondition("text", "contains", 1), {"text": "1"}) is False
        assert evaluate_condition(RuleCondition("text", "contains", "1"), {"text": 12}) is False


class TestInOperator:
    def test_value_in_list(self):
        condition = RuleCondition("agent", "in", ["a", "b"])
        assert evaluate_condition(condition, {"agent": "b"}) is True
        assert evaluate_condition(condition, {"agent": "c"}) is False

    def test_non_list_value_is_false(self):
        assert evaluate_condition(RuleCondition("agent", "in", "abc"), {"agent": "a"}) is False

    def test_tuple_value(self):
        assert evaluate_condition(RuleCondition("n", "in", (1, 2)), {"n": 2}) is True


class TestUnknownOperator:
    def test_unknown_operator_is_false(self):
        assert evaluate_condition(RuleCondition("x", "regex", ".*"), {"x": "a"}) is False

    def test_operator_catalog(self):
        codes = [op["code"] for op in available_operators()]
        assert codes == ["eq", "ne", "gt", "gte", "lt", "lte", "contains", "in"]
        assert is_supported_operator("greater_than") is True
        assert is_supported_operator("regex") is False


class TestConditionLists:
    """Flat lists are an implicit AND"""

    def test_empty_list_matches(self):
        assert evaluate_conditions([], {}) is True

    def test_all_must_hold(self):
        conditions = [
            RuleCondition("count", "gte", 3),
            RuleCondition("status", "eq", "open"),
        ]
        assert evaluate_conditions(conditions, {"count": 5, "status": "open"}) is True
        assert evaluate_conditions(conditions, {"count": 5, "status": "closed"}) is False


class TestConditionGroups:
    """Nested AND/OR groups"""

    def test_empty_group_matches(self):
        assert evaluate_condition_group(ConditionGroup(), {}) is True

    def test_or_group(self):
        group = ConditionGroup(
            logic=LogicOperator.OR,
            conditions=[
                RuleCondition("channel", "eq", "email"),
                RuleCondition("channel", "eq", "sms"),
            ],
        )
        assert evaluate_condition_group(group, {"channel": "sms"}) is True
        assert evaluate_condition_group(group, {"channel": "chat"}) is False

    def test_nested_groups(self):
        """(vip == True) AND (count > 10 OR resolved == False)"""
        group = ConditionGroup(
            logic=LogicOperator.AND,
            conditions=[RuleCondition("vip", "eq", True)],
            groups=[
                ConditionGroup(
                    logic=LogicOperator.OR,
                    conditions=[
                        RuleCondition("count", "gt", 10),
                        RuleCondition("resolved", "eq", False),
                    ],
                )
            ],
        )
        assert evaluate_condition_group(group, {"vip": True, "count": 2, "resolved": False}) is True
        assert evaluate_condition_group(group, {"vip": True, "count": 2, "resolved": True}) is False
        assert evaluate_condition_group(group, {"vip": False, "count": 20}) is False

    def test_group_from_dict(self):
        group = ConditionGroup.from_dict(
            {
                "logic": "or",
                "conditions": [{"field": "a", "operator": "eq", "value": 1}],
                "groups": [{"conditions": [{"field": "b", "operator": "eq", "value": 2}]}],
            }
        )
        assert group.logic == LogicOperator.OR
        assert group.groups[0].logic == LogicOperator.AND
        assert evaluate_condition_group(group, {"b": 2}) is True
        assert group.to_dict()["conditions"][0] == {"field": "a", "operator": "eq", "value": 1}
