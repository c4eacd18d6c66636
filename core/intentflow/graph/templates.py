"""
Plan templates - canned multi-step flows that build draft graphs directly.

The analyzer normally produces the draft graph. For the common flows of the
trading bot a template is enough: the caller supplies a few parameters and
gets back an IntentGraph ready for the DependencyGraphBuilder.

Placeholders:
- "$token" as a whole value is replaced by the raw parameter (type kept)
- "$token" inside a longer string is substituted as text
- "{{ node.field }}" is left alone; it is resolved at run time

Example:
    graph = build_from_template(
        "research_scan_trade", {"token": "BONK", "amount": 50}
    )
"""

from dataclasses import dataclass, field
from string import Template
from typing import Any

from intentflow.graph.intent_graph import IntentGraph
from intentflow.graph.node import IntentType


@dataclass(frozen=True)
class TemplateStep:
    """One node of a plan template."""

    id: str
    type: IntentType
    parameters: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    condition: str | None = None
    description: str = ""


@dataclass(frozen=True)
class PlanTemplate:
    """A named flow with its steps and parameter defaults."""

    name: str
    description: str
    steps: tuple[TemplateStep, ...]
    required_parameters: tuple[str, ...] = ()
    defaults: dict[str, Any] = field(default_factory=dict)

    def build(self, parameters: dict[str, Any] | None = None) -> IntentGraph:
        """
        Instantiate the template.

        Raises:
            ValueError: If a required parameter is missing
        """
        values = {**self.defaults, **(parameters or {})}
        missing = [name for name in self.required_parameters if values.get(name) is None]
        if missing:
            raise ValueError(f"Template '{self.name}' requires parameters: {', '.join(missing)}")

        nodes = []
        for step in self.steps:
            node: dict[str, Any] = {
                "id": step.id,
                "type": step.type.value,
                "parameters": _fill(step.parameters, values, self.name),
                "depends_on": list(step.depends_on),
                "description": step.description,
            }
            if step.condition is not None:
                node["condition"] = _fill(step.condition, values, self.name)
            nodes.append(node)
        return IntentGraph.model_validate(
            {"id": self.name, "description": self.description, "nodes": nodes}
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "required_parameters": list(self.required_parameters),
            "defaults": dict(self.defaults),
            "steps": [
                {"id": s.id, "type": s.type.value, "depends_on": list(s.depends_on)}
                for s in self.steps
            ],
        }


def _fill(value: Any, values: dict[str, Any], template_name: str) -> Any:
    if isinstance(value, dict):
        return {key: _fill(item, values, template_name) for key, item in value.items()}
    if isinstance(value, list):
        return [_fill(item, values, template_name) for item in value]
    if not isinstance(value, str) or "$" not in value:
        return value
    if value.startswith("$") and value[1:].isidentifier():
        name = value[1:]
        if name not in values:
            raise ValueError(f"Template '{template_name}' has no value for '{name}'")
        return values[name]
    try:
        return Template(value).substitute(values)
    except KeyError as e:
        raise ValueError(f"Template '{template_name}' has no value for {e}") from None


TEMPLATES: dict[str, PlanTemplate] = {
    "research_scan_trade": PlanTemplate(
        name="research_scan_trade",
        description="Check sentiment, trade only if bullish, then alert on the fill price",
        required_parameters=("token", "amount"),
        defaults={"side": "buy", "sentiment": "bullish", "alert_multiplier": 1.1},
        steps=(
            TemplateStep(
                id="sentiment",
                type=IntentType.SENTIMENT_CHECK,
                parameters={"token": "$token"},
                description="Analyze token sentiment",
            ),
            TemplateStep(
                id="trade",
                type=IntentType.TOKEN_TRADE,
                parameters={"token": "$token", "side": "$side", "amount": "$amount"},
                depends_on=("sentiment",),
                condition="sentiment.label == '$sentiment'",
                description="Execute the trade",
            ),
            TemplateStep(
                id="alert",
                type=IntentType.PRICE_ALERT,
                parameters={
                    "token": "$token",
                    "target_price": "{{ trade.price * $alert_multiplier }}",
                },
                depends_on=("trade",),
                description="Alert when the price moves past the target",
            ),
        ),
    ),
    "portfolio_review_alert": PlanTemplate(
        name="portfolio_review_alert",
        description="Review the portfolio, then set a price alert",
        required_parameters=("token", "target_price"),
        defaults={"wallet": "default"},
        steps=(
            TemplateStep(
                id="portfolio",
                type=IntentType.PORTFOLIO_VIEW,
                parameters={"wallet": "$wallet"},
                description="Fetch portfolio holdings",
            ),
            TemplateStep(
                id="alert",
                type=IntentType.PRICE_ALERT,
                parameters={"token": "$token", "target_price": "$target_price"},
                depends_on=("portfolio",),
                description="Create the price alert",
            ),
        ),
    ),
    "multi_target_order": PlanTemplate(
        name="multi_target_order",
        description="Check sentiment, place a multi-target order unless bearish, remind later",
        required_parameters=("token", "amount", "targets"),
        defaults={"remind_in_minutes": 60},
        steps=(
            TemplateStep(
                id="sentiment",
                type=IntentType.SENTIMENT_CHECK,
                parameters={"token": "$token"},
                description="Analyze token sentiment",
            ),
            TemplateStep(
                id="order",
                type=IntentType.MULTI_TARGET_ORDER,
                parameters={"token": "$token", "amount": "$amount", "targets": "$targets"},
                depends_on=("sentiment",),
                condition="sentiment.label != 'bearish'",
                description="Place the multi-target order",
            ),
            TemplateStep(
                id="reminder",
                type=IntentType.REMINDER,
                parameters={
                    "message": "Review order {{ order.order_id }} for $token",
                    "in_minutes": "$remind_in_minutes",
                },
                depends_on=("order",),
                description="Remind the user to review the order",
            ),
        ),
    ),
}


def get_template(name: str) -> PlanTemplate:
    """
    Raises:
        KeyError: If no template has that name
    """
    try:
        return TEMPLATES[name]
    except KeyError:
        raise KeyError(f"Unknown plan template '{name}', available: {sorted(TEMPLATES)}") from None


def list_templates() -> list[str]:
    return sorted(TEMPLATES)


def build_from_template(name: str, parameters: dict[str, Any] | None = None) -> IntentGraph:
    """Instantiate a named template into a draft graph."""
    return get_template(name).build(parameters)
