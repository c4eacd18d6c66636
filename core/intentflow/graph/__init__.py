"""Graph structures: intent nodes, conditions, validation and execution."""

from intentflow.graph.builder import DependencyGraphBuilder, ValidatedGraph
from intentflow.graph.condition import (
    CompiledCondition,
    ComparisonOperator,
    Condition,
    ConditionEvaluator,
)
from intentflow.graph.executor import IntentExecutor
from intentflow.graph.intent_graph import IntentGraph
from intentflow.graph.node import IntentNode, IntentType, NodeError, NodeStatus
from intentflow.graph.retry import RetryCoordinator, RetryPolicy
from intentflow.graph.templates import (
    PlanTemplate,
    build_from_template,
    get_template,
    list_templates,
)
from intentflow.graph.templating import ParameterTemplate

__all__ = [
    # Node
    "IntentNode",
    "IntentType",
    "NodeStatus",
    "NodeError",
    # Graph
    "IntentGraph",
    "DependencyGraphBuilder",
    "ValidatedGraph",
    # Conditions and templating
    "Condition",
    "ComparisonOperator",
    "CompiledCondition",
    "ConditionEvaluator",
    "ParameterTemplate",
    # Execution
    "IntentExecutor",
    "RetryPolicy",
    "RetryCoordinator",
    # Plan templates
    "PlanTemplate",
    "get_template",
    "list_templates",
    "build_from_template",
]
