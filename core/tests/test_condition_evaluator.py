"""
Tests for condition parsing, type-aware comparison and evaluation.
"""

import logging

import pytest
from pydantic import ValidationError

from intentflow.errors import ConditionEvaluationWarning
from intentflow.graph.condition import (
    ComparisonOperator,
    Condition,
    ConditionEvaluator,
    compare,
)
from intentflow.runtime.result_store import ResultStore


@pytest.fixture
def store():
    results = ResultStore()
    results.put("sentiment", {"label": "Bullish ", "score": 0.82})
    results.put("quote", {"price": "1.25", "volume": 1000})
    results.put("flags", {"active": True, "note": None})
    return results


@pytest.fixture
def evaluator(store):
    return ConditionEvaluator(store.lookup)


class TestCompare:
    @pytest.mark.parametrize(
        "left,op,right,expected",
        [
            (1, ">", 0.5, True),
            (2, "==", 2.0, True),
            (2, "<=", 1, False),
            ("1.25", "<", 2, True),
            (3, "!=", "3", False),
            ("  Bullish", "==", "bullish", True),
            ("apple", "<", "Banana", True),
            (True, "==", True, True),
            (True, "!=", False, True),
            (None, "==", None, True),
            (None, "!=", None, False),
        ],
    )
    def test_compatible_types(self, left, op, right, expected):
        assert compare(left, ComparisonOperator(op), right) is expected

    @pytest.mark.parametrize(
        "left,op,right",
        [
            ("abc", "==", 1),
            ("abc", "!=", 1),
            (True, "==", 1),
            (True, ">", False),
            (None, "==", 0),
            ("1", "==", True),
            ({"a": 1}, "==", {"a": 1}),
        ],
    )
    def test_type_mismatch_raises_warning(self, left, op, right):
        with pytest.raises(ConditionEvaluationWarning):
            compare(left, ComparisonOperator(op), right)


class TestConditionModel:
    def test_string_form(self):
        condition = Condition.model_validate("sentiment.label == 'bullish'")
        assert condition.expression == "sentiment.label == 'bullish'"
        assert condition.compile().references() == frozenset({"sentiment"})

    def test_structured_form(self):
        condition = Condition(left={"ref": "quote.price"}, operator=">", right=1)
        compiled = condition.compile()
        assert compiled.operator == ComparisonOperator.GT
        assert compiled.references() == frozenset({"quote"})

    def test_references_from_both_sides(self):
        compiled = Condition.model_validate("quote.price * 1.05 < sentiment.score").compile()
        assert compiled.references() == frozenset({"quote", "sentiment"})

    def test_needs_expression_or_operator(self):
        with pytest.raises(ValidationError):
            Condition.model_validate({"left": 1})


class TestConditionEvaluator:
    def test_string_condition_case_insensitive(self, evaluator):
        assert evaluator.evaluate(Condition.model_validate("sentiment.label == 'bullish'"))

    def test_numeric_string_coerced(self, evaluator):
        condition = Condition(left={"ref": "quote.price"}, operator=">", right=1)
        assert evaluator.evaluate(condition)

    def test_arithmetic_operand(self, evaluator):
        condition = Condition(left={"expr": "quote.price * 2"}, operator="==", right=2.5)
        assert evaluator.evaluate(condition)

    def test_boolean_result(self, evaluator):
        assert evaluator.evaluate(Condition.model_validate("flags.active == true"))

    def test_null_result(self, evaluator):
        assert evaluator.evaluate(Condition.model_validate("flags.note == null"))

    def test_mismatch_is_false_and_logged(self, evaluator, caplog):
        with caplog.at_level(logging.WARNING):
            result = evaluator.evaluate(Condition.model_validate("sentiment.label == 1"))
        assert result is False
        assert "Type mismatch" in caplog.text
        assert len(evaluator.warnings) == 1

    def test_mismatch_with_not_equal_is_false(self, evaluator):
        assert evaluator.evaluate(Condition.model_validate("sentiment.label != 1")) is False

    def test_missing_field_is_false(self, evaluator):
        result = evaluator.evaluate(Condition.model_validate("sentiment.missing == 'x'"))
        assert result is False
        assert "no key 'missing'" in evaluator.warnings[0]

    def test_division_by_zero_is_false(self, evaluator):
        assert evaluator.evaluate(Condition.model_validate("quote.volume / 0 > 1")) is False
