"""
Whitelisted expression grammar for conditions and parameter templates.

Expressions are parsed with Python's ``ast`` module and rebuilt into a tiny
expression tree. Nothing is ever passed to ``eval``: only the node types
below survive compilation.

Grammar:
    expr      := reference | literal | expr (+|-|*|/) expr | -expr | (expr)
    reference := node_id ( .field | [index] | ["key"] )*
    literal   := number | 'string' | true | false | null

Examples:
    sentiment.label
    quote.price * 1.05
    scan.tokens[0].symbol
"""

import ast
import math
import operator
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from intentflow.errors import ConditionEvaluationWarning, ExpressionError

# (node_id, path) -> value
Resolver = Callable[[str, tuple], Any]

MAX_EXPRESSION_LENGTH = 1000

_NAME_LITERALS = {"true": True, "false": False, "null": None, "none": None}

_ARITHMETIC = {
    ast.Add: ("+", operator.add),
    ast.Sub: ("-", operator.sub),
    ast.Mult: ("*", operator.mul),
    ast.Div: ("/", operator.truediv),
}

_COMPARISONS = {
    ast.Eq: "==",
    ast.NotEq: "!=",
    ast.Gt: ">",
    ast.Lt: "<",
    ast.GtE: ">=",
    ast.LtE: "<=",
}


def as_number(value: Any) -> int | float | None:
    """Return value as a number, or None when it is not numeric.

    Booleans are not numbers. Strings holding a finite number are coerced.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


@dataclass(frozen=True)
class Literal:
    value: Any

    def evaluate(self, resolve: Resolver) -> Any:
        return self.value

    def references(self) -> frozenset[str]:
        return frozenset()

    def __str__(self) -> str:
        return repr(self.value)


@dataclass(frozen=True)
class Reference:
    """Result of node ``node_id``, narrowed by ``path``."""

    node_id: str
    path: tuple[str | int, ...] = ()

    @classmethod
    def parse(cls, text: str) -> "Reference":
        """Parse the dotted ``{"ref": ...}`` form, which allows any node id.

        The node id is everything before the first dot; numeric segments
        become sequence indexes.
        """
        text = text.strip()
        if not text:
            raise ExpressionError("Empty reference")
        node_id, _, rest = text.partition(".")
        path: list[str | int] = []
        if rest:
            for segment in rest.split("."):
                if not segment:
                    raise ExpressionError(f"Empty path segment in reference {text!r}")
                path.append(int(segment) if segment.isdigit() else segment)
        return cls(node_id=node_id, path=tuple(path))

    def evaluate(self, resolve: Resolver) -> Any:
        return resolve(self.node_id, self.path)

    def references(self) -> frozenset[str]:
        return frozenset({self.node_id})

    def __str__(self) -> str:
        return ".".join(str(p) for p in (self.node_id, *self.path))


@dataclass(frozen=True)
class BinaryOp:
    symbol: str
    left: "Expression"
    right: "Expression"

    def evaluate(self, resolve: Resolver) -> Any:
        left = as_number(self.left.evaluate(resolve))
        right = as_number(self.right.evaluate(resolve))
        if left is None or right is None:
            raise ConditionEvaluationWarning(f"Arithmetic on a non-numeric value in '{self}'")
        if self.symbol == "/" and right == 0:
            raise ConditionEvaluationWarning(f"Division by zero in '{self}'")
        func = next(f for sym, f in _ARITHMETIC.values() if sym == self.symbol)
        return func(left, right)

    def references(self) -> frozenset[str]:
        return self.left.references() | self.right.references()

    def __str__(self) -> str:
        return f"({self.left} {self.symbol} {self.right})"


@dataclass(frozen=True)
class Negate:
    operand: "Expression"

    def evaluate(self, resolve: Resolver) -> Any:
        value = as_number(self.operand.evaluate(resolve))
        if value is None:
            raise ConditionEvaluationWarning(f"Negation of a non-numeric value in '{self}'")
        return -value

    def references(self) -> frozenset[str]:
        return self.operand.references()

    def __str__(self) -> str:
        return f"-{self.operand}"


Expression = Literal | Reference | BinaryOp | Negate


def _parse(text: str) -> ast.expr:
    if not isinstance(text, str) or not text.strip():
        raise ExpressionError("Expression must be a non-empty string")
    if len(text) > MAX_EXPRESSION_LENGTH:
        raise ExpressionError(
            f"Expression is longer than {MAX_EXPRESSION_LENGTH} characters: {text[:40]!r}..."
        )
    try:
        return ast.parse(text.strip(), mode="eval").body
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression {text!r}: {e.msg}") from e
    except (RecursionError, MemoryError) as e:
        raise ExpressionError(f"Expression is nested too deeply: {text[:40]!r}...") from e


def _build_checked(node: ast.expr, text: str) -> Expression:
    try:
        return _build(node, text)
    except RecursionError as e:
        raise ExpressionError(f"Expression is nested too deeply: {text[:40]!r}...") from e


def _index_of(node: ast.expr, text: str) -> str | int:
    if isinstance(node, ast.Constant) and type(node.value) in (int, str):
        return node.value
    if (
        isinstance(node, ast.UnaryOp)
        and isinstance(node.op, ast.USub)
        and isinstance(node.operand, ast.Constant)
        and type(node.operand.value) is int
    ):
        return -node.operand.value
    raise ExpressionError(f"Only constant indexes are allowed in {text!r}")


def _build(node: ast.expr, text: str) -> Expression:
    if isinstance(node, ast.Constant):
        if node.value is None or type(node.value) in (int, float, str, bool):
            return Literal(node.value)
        raise ExpressionError(f"Unsupported literal {node.value!r} in {text!r}")

    if isinstance(node, ast.Name):
        if node.id.lower() in _NAME_LITERALS:
            return Literal(_NAME_LITERALS[node.id.lower()])
        return Reference(node.id)

    if isinstance(node, ast.Attribute):
        base = _build(node.value, text)
        if not isinstance(base, Reference):
            raise ExpressionError(f"Field access is only allowed on references in {text!r}")
        if node.attr.startswith("_"):
            raise ExpressionError(f"Private field '{node.attr}' is not accessible in {text!r}")
        return Reference(base.node_id, (*base.path, node.attr))

    if isinstance(node, ast.Subscript):
        base = _build(node.value, text)
        if not isinstance(base, Reference):
            raise ExpressionError(f"Indexing is only allowed on references in {text!r}")
        return Reference(base.node_id, (*base.path, _index_of(node.slice, text)))

    if isinstance(node, ast.BinOp) and type(node.op) in _ARITHMETIC:
        left = _build(node.left, text)
        right = _build(node.right, text)
        for side in (left, right):
            if isinstance(side, Literal) and (
                isinstance(side.value, str) or as_number(side.value) is None
            ):
                raise ExpressionError(f"Arithmetic needs numeric literals in {text!r}")
        return BinaryOp(_ARITHMETIC[type(node.op)][0], left, right)

    if isinstance(node, ast.UnaryOp):
        if isinstance(node.op, ast.USub):
            operand = _build(node.operand, text)
            if isinstance(operand, Literal):
                number = as_number(operand.value)
                if number is None or isinstance(operand.value, str):
                    raise ExpressionError(f"Cannot negate {operand} in {text!r}")
                return Literal(-number)
            return Negate(operand)
        if isinstance(node.op, ast.UAdd):
            return _build(node.operand, text)

    raise ExpressionError(f"Unsupported syntax '{type(node).__name__}' in {text!r}")


def compile_expression(text: str) -> Expression:
    """Compile an arithmetic/reference expression into an expression tree.

    Raises:
        ExpressionError: If the text falls outside the whitelisted grammar
    """
    node = _parse(text)
    if isinstance(node, ast.Compare):
        raise ExpressionError(f"Comparison is not allowed inside an operand: {text!r}")
    return _build_checked(node, text)


def compile_comparison(text: str) -> tuple[Expression, str, Expression]:
    """Compile ``<expr> <op> <expr>`` into (left, operator symbol, right)."""
    node = _parse(text)
    if not isinstance(node, ast.Compare):
        raise ExpressionError(f"Condition must be a single comparison: {text!r}")
    if len(node.ops) != 1 or len(node.comparators) != 1:
        raise ExpressionError(f"Chained comparisons are not allowed: {text!r}")
    op_type = type(node.ops[0])
    if op_type not in _COMPARISONS:
        raise ExpressionError(f"Unsupported comparison operator in {text!r}")
    return (
        _build_checked(node.left, text),
        _COMPARISONS[op_type],
        _build_checked(node.comparators[0], text),
    )
