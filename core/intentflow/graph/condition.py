"""
Conditions - gate a node on the results of the nodes it depends on.

A condition compares two operands. Each operand is one of:
- a literal: "bullish", 42, 0.5, true, null
- a reference: {"ref": "quote.price"}
- an arithmetic expression: {"expr": "quote.price * 1.05"}

A condition can also be written as one string:
    "sentiment.label == 'bullish'"

Comparison rules (no other coercion happens):
- number vs number; booleans are not numbers
- a string holding a finite number is coerced when compared with a number
- string vs string, case-insensitive after stripping whitespace
- boolean vs boolean, only == and !=
- null only equals null
- any other pairing is a type mismatch: False for every operator, logged
"""

import logging
import operator
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from intentflow.errors import (
    ConditionEvaluationWarning,
    ExpressionError,
    UnresolvedReferenceError,
)
from intentflow.graph.expressions import (
    Expression,
    Literal,
    Reference,
    Resolver,
    as_number,
    compile_comparison,
    compile_expression,
)

logger = logging.getLogger(__name__)


class ComparisonOperator(StrEnum):
    EQ = "=="
    NE = "!="
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="


_OPERATORS = {
    ComparisonOperator.EQ: operator.eq,
    ComparisonOperator.NE: operator.ne,
    ComparisonOperator.GT: operator.gt,
    ComparisonOperator.LT: operator.lt,
    ComparisonOperator.GE: operator.ge,
    ComparisonOperator.LE: operator.le,
}

_EQUALITY = (ComparisonOperator.EQ, ComparisonOperator.NE)


def compile_operand(value: Any) -> Expression:
    """Compile one structured operand into an expression tree."""
    if isinstance(value, dict):
        if set(value) == {"ref"} and isinstance(value["ref"], str):
            return Reference.parse(value["ref"])
        if set(value) == {"expr"} and isinstance(value["expr"], str):
            return compile_expression(value["expr"])
        raise ExpressionError(f"Operand objects must be {{'ref': str}} or {{'expr': str}}: {value}")
    if value is None or isinstance(value, str | int | float | bool):
        return Literal(value)
    raise ExpressionError(f"Unsupported operand type {type(value).__name__}")


@dataclass(frozen=True)
class CompiledCondition:
    left: Expression
    operator: ComparisonOperator
    right: Expression

    def references(self) -> frozenset[str]:
        return self.left.references() | self.right.references()

    def __str__(self) -> str:
        return f"{self.left} {self.operator.value} {self.right}"


class Condition(BaseModel):
    """
    Gate on a node, evaluated once every referenced node has succeeded.

    Examples:
        Condition(left={"ref": "sentiment.label"}, operator="==", right="bullish")
        Condition.model_validate("quote.price * 1.05 < 2.5")
    """

    left: Any = None
    operator: ComparisonOperator | None = None
    right: Any = None
    expression: str | None = Field(
        default=None,
        description="Single-string form, e.g. \"sentiment.label == 'bullish'\"",
    )

    model_config = {"extra": "forbid"}

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"expression": data}
        return data

    @model_validator(mode="after")
    def _check_shape(self) -> "Condition":
        if self.expression is None and self.operator is None:
            raise ValueError("Condition needs either 'expression' or 'operator'")
        return self

    def compile(self) -> CompiledCondition:
        """Compile into an expression tree.

        Raises:
            ExpressionError: If an operand falls outside the grammar
        """
        if self.expression is not None:
            left, symbol, right = compile_comparison(self.expression)
            return CompiledCondition(left, ComparisonOperator(symbol), right)
        return CompiledCondition(
            compile_operand(self.left),
            ComparisonOperator(self.operator),
            compile_operand(self.right),
        )


def compare(left: Any, op: ComparisonOperator, right: Any) -> bool:
    """Type-aware comparison.

    Raises:
        ConditionEvaluationWarning: On a type mismatch
    """
    op = ComparisonOperator(op)

    if left is None or right is None:
        if left is None and right is None and op in _EQUALITY:
            return op == ComparisonOperator.EQ
        raise ConditionEvaluationWarning(f"Cannot compare {left!r} {op.value} {right!r}")

    if isinstance(left, bool) or isinstance(right, bool):
        if isinstance(left, bool) and isinstance(right, bool) and op in _EQUALITY:
            return _OPERATORS[op](left, right)
        raise ConditionEvaluationWarning(f"Cannot compare {left!r} {op.value} {right!r}")

    if isinstance(left, str) and isinstance(right, str):
        return _OPERATORS[op](left.strip().casefold(), right.strip().casefold())

    left_number = as_number(left)
    right_number = as_number(right)
    if left_number is not None and right_number is not None:
        return _OPERATORS[op](left_number, right_number)

    raise ConditionEvaluationWarning(
        f"Type mismatch: {type(left).__name__} {op.value} {type(right).__name__}"
    )


class ConditionEvaluator:
    """
    Evaluates conditions against a request's results.

    Never raises for runtime problems: a missing reference, a type mismatch
    or bad arithmetic is logged as a warning and the condition is False.
    """

    def __init__(self, resolve: Resolver):
        """
        Args:
            resolve: Callable (node_id, path) -> value, usually ResultStore.lookup
        """
        self._resolve = resolve
        self.warnings: list[str] = []

    def evaluate(self, condition: Condition | CompiledCondition) -> bool:
        compiled = condition.compile() if isinstance(condition, Condition) else condition
        try:
            left = compiled.left.evaluate(self._resolve)
            right = compiled.right.evaluate(self._resolve)
            return compare(left, compiled.operator, right)
        except (ConditionEvaluationWarning, UnresolvedReferenceError) as e:
            self._warn(compiled, str(e))
            return False

    def _warn(self, compiled: CompiledCondition, reason: str) -> None:
        message = f"Condition '{compiled}' evaluated to false: {reason}"
        self.warnings.append(message)
        logger.warning(f"⚠ {message}")
