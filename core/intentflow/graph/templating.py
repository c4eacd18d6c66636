"""Parameter templates: ``{{ expression }}`` references inside node parameters."""

import re
from dataclasses import dataclass
from typing import Any

from intentflow.graph.expressions import Expression, Resolver, compile_expression

TEMPLATE_PATTERN = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)


@dataclass(frozen=True)
class _Exact:
    """A string that is exactly one template; renders to the raw value."""

    expression: Expression


@dataclass(frozen=True)
class _Interpolated:
    parts: tuple[str | Expression, ...]


def _compile_value(value: Any) -> Any:
    if isinstance(value, str):
        matches = list(TEMPLATE_PATTERN.finditer(value))
        if not matches:
            return value
        stripped = value.strip()
        if len(matches) == 1 and matches[0].group(0) == stripped:
            return _Exact(compile_expression(matches[0].group(1)))
        parts: list[str | Expression] = []
        cursor = 0
        for match in matches:
            if match.start() > cursor:
                parts.append(value[cursor : match.start()])
            parts.append(compile_expression(match.group(1)))
            cursor = match.end()
        if cursor < len(value):
            parts.append(value[cursor:])
        return _Interpolated(tuple(parts))
    if isinstance(value, dict):
        return {key: _compile_value(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_compile_value(item) for item in value]
    return value


def _references(value: Any) -> frozenset[str]:
    if isinstance(value, _Exact):
        return value.expression.references()
    if isinstance(value, _Interpolated):
        refs: frozenset[str] = frozenset()
        for part in value.parts:
            if not isinstance(part, str):
                refs |= part.references()
        return refs
    if isinstance(value, dict):
        return frozenset().union(*(_references(v) for v in value.values()))
    if isinstance(value, list):
        return frozenset().union(*(_references(v) for v in value))
    return frozenset()


def _render(value: Any, resolve: Resolver) -> Any:
    if isinstance(value, _Exact):
        return value.expression.evaluate(resolve)
    if isinstance(value, _Interpolated):
        return "".join(
            part if isinstance(part, str) else str(part.evaluate(resolve)) for part in value.parts
        )
    if isinstance(value, dict):
        return {key: _render(item, resolve) for key, item in value.items()}
    if isinstance(value, list):
        return [_render(item, resolve) for item in value]
    return value


class ParameterTemplate:
    """
    Compiled form of a node's parameters.

    Example:
        template = ParameterTemplate.compile(
            {"symbol": "{{ scan.tokens[0].symbol }}", "note": "bought at {{ quote.price }}"}
        )
        template.references()  # frozenset({"scan", "quote"})
        template.render(results.lookup)
    """

    def __init__(self, compiled: dict[str, Any]):
        self._compiled = compiled

    @classmethod
    def compile(cls, parameters: dict[str, Any]) -> "ParameterTemplate":
        """
        Raises:
            ExpressionError: If a template falls outside the grammar
        """
        return cls(_compile_value(parameters))

    def references(self) -> frozenset[str]:
        return _references(self._compiled)

    def render(self, resolve: Resolver) -> dict[str, Any]:
        """Resolve every template against prior results.

        Raises:
            UnresolvedReferenceError: If a reference path does not exist
            ConditionEvaluationWarning: If template arithmetic fails
        """
        return _render(self._compiled, resolve)
