"""
DependencyGraphBuilder - turns a draft IntentGraph into an executable one.

Checks, in order:
0. node IDs are unique
1. every depends_on ID exists in the graph
2. the graph is acyclic (Kahn's algorithm)
3. the graph is not larger than the configured maximum
4. every condition and parameter template compiles
5. every node referenced by a condition or template is an ancestor

Validation is pure: the draft is never mutated, the ValidatedGraph holds a
deep copy.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from intentflow.errors import ExpressionError, GraphValidationError, GraphValidationKind
from intentflow.graph.condition import CompiledCondition
from intentflow.graph.intent_graph import IntentGraph
from intentflow.graph.node import IntentNode
from intentflow.graph.templating import ParameterTemplate

logger = logging.getLogger(__name__)

DEFAULT_MAX_NODES = 32


@dataclass
class ValidatedGraph:
    """An executable graph plus everything the scheduler needs precomputed."""

    graph: IntentGraph
    order: list[str]  # Topological order, ties broken by declaration order
    dependents: dict[str, list[str]]  # node_id -> direct dependents
    ancestors: dict[str, frozenset[str]]  # node_id -> transitive dependencies
    conditions: dict[str, CompiledCondition] = field(default_factory=dict)
    templates: dict[str, ParameterTemplate] = field(default_factory=dict)

    @property
    def nodes(self) -> list[IntentNode]:
        return self.graph.nodes

    def get_node(self, node_id: str) -> IntentNode | None:
        return self.graph.get_node(node_id)

    def references(self, node_id: str) -> frozenset[str]:
        """Nodes whose results this node's condition and parameters read."""
        refs: frozenset[str] = frozenset()
        if node_id in self.conditions:
            refs |= self.conditions[node_id].references()
        if node_id in self.templates:
            refs |= self.templates[node_id].references()
        return refs

    def descendants(self, node_id: str) -> list[str]:
        """Transitive dependents of node_id, in topological order."""
        seen: set[str] = set()
        queue = deque(self.dependents.get(node_id, []))
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self.dependents.get(current, []))
        return [nid for nid in self.order if nid in seen]

    def __len__(self) -> int:
        return len(self.graph.nodes)


class DependencyGraphBuilder:
    """
    Validates draft graphs.

    Example:
        builder = DependencyGraphBuilder(max_nodes=32)
        validated = builder.build(draft)
        validated.order  # ["sentiment", "portfolio", "trade", "alert"]
    """

    def __init__(self, max_nodes: int = DEFAULT_MAX_NODES):
        self.max_nodes = max_nodes

    def build(self, draft: IntentGraph | dict[str, Any] | str) -> ValidatedGraph:
        """
        Validate a draft graph.

        Raises:
            GraphValidationError: On the first failed check
        """
        if not isinstance(draft, IntentGraph):
            try:
                draft = IntentGraph.from_json(draft)
            except (ValueError, TypeError) as e:
                # pydantic ValidationError and JSONDecodeError are ValueErrors
                raise GraphValidationError(GraphValidationKind.INVALID_GRAPH, str(e)) from e
        graph = draft.model_copy(deep=True)

        self._check_unique_ids(graph)
        self._check_dangling(graph)
        order = self._topological_order(graph)
        self._check_size(graph)
        conditions, templates = self._compile_expressions(graph)

        dependents: dict[str, list[str]] = {node.id: [] for node in graph.nodes}
        for node in graph.nodes:
            for dep in node.depends_on:
                dependents[dep].append(node.id)

        ancestors = self._ancestors(graph, order)
        validated = ValidatedGraph(
            graph=graph,
            order=order,
            dependents=dependents,
            ancestors=ancestors,
            conditions=conditions,
            templates=templates,
        )
        self._check_references(validated)

        logger.debug(f"Validated graph '{graph.id}' with {len(graph.nodes)} nodes: {order}")
        return validated

    def _check_unique_ids(self, graph: IntentGraph) -> None:
        seen: set[str] = set()
        duplicates: list[str] = []
        for node in graph.nodes:
            if node.id in seen and node.id not in duplicates:
                duplicates.append(node.id)
            seen.add(node.id)
        if duplicates:
            raise GraphValidationError(
                GraphValidationKind.DUPLICATE_NODE_ID,
                f"Duplicate node IDs: {duplicates}",
                duplicates,
            )

    def _check_dangling(self, graph: IntentGraph) -> None:
        known = set(graph.node_ids())
        for node in graph.nodes:
            missing = [dep for dep in node.depends_on if dep not in known]
            if missing:
                raise GraphValidationError(
                    GraphValidationKind.DANGLING_REFERENCE,
                    f"Node '{node.id}' depends on unknown nodes {missing}",
                    [node.id, *missing],
                )

    def _topological_order(self, graph: IntentGraph) -> list[str]:
        """Kahn's algorithm; among ready nodes the earliest declared goes first."""
        position = {node_id: i for i, node_id in enumerate(graph.node_ids())}
        in_degree = {node.id: len(node.depends_on) for node in graph.nodes}
        dependents: dict[str, list[str]] = {node.id: [] for node in graph.nodes}
        for node in graph.nodes:
            for dep in node.depends_on:
                dependents[dep].append(node.id)

        available = sorted((nid for nid, deg in in_degree.items() if deg == 0), key=position.get)
        order: list[str] = []
        while available:
            current = available.pop(0)
            order.append(current)
            for dependent in dependents[current]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    available.append(dependent)
            available.sort(key=position.get)

        if len(order) != len(graph.nodes):
            cycle = self._find_cycle(graph, {nid for nid, deg in in_degree.items() if deg > 0})
            raise GraphValidationError(
                GraphValidationKind.CYCLE_DETECTED,
                f"Circular dependency: {' -> '.join(cycle)}",
                cycle,
            )
        return order

    def _find_cycle(self, graph: IntentGraph, remaining: set[str]) -> list[str]:
        """Walk dependency edges inside the unsorted remainder until a node repeats."""
        deps = {node.id: [d for d in node.depends_on if d in remaining] for node in graph.nodes}
        start = next(nid for nid in graph.node_ids() if nid in remaining)
        path: list[str] = []
        index: dict[str, int] = {}
        current = start
        while current not in index:
            index[current] = len(path)
            path.append(current)
            current = deps[current][0]
        cycle = path[index[current] :] + [current]
        cycle.reverse()
        return cycle

    def _check_size(self, graph: IntentGraph) -> None:
        if len(graph.nodes) > self.max_nodes:
            raise GraphValidationError(
                GraphValidationKind.GRAPH_TOO_LARGE,
                f"Graph has {len(graph.nodes)} nodes, maximum is {self.max_nodes}",
            )

    def _compile_expressions(
        self, graph: IntentGraph
    ) -> tuple[dict[str, CompiledCondition], dict[str, ParameterTemplate]]:
        conditions: dict[str, CompiledCondition] = {}
        templates: dict[str, ParameterTemplate] = {}
        for node in graph.nodes:
            try:
                if node.condition is not None:
                    conditions[node.id] = node.condition.compile()
                template = ParameterTemplate.compile(node.parameters)
            except ExpressionError as e:
                raise GraphValidationError(
                    GraphValidationKind.INVALID_EXPRESSION,
                    f"Node '{node.id}': {e}",
                    [node.id],
                ) from e
            if template.references():
                templates[node.id] = template
        return conditions, templates

    def _ancestors(self, graph: IntentGraph, order: list[str]) -> dict[str, frozenset[str]]:
        ancestors: dict[str, frozenset[str]] = {}
        for node_id in order:
            node = graph.get_node(node_id)
            acc: set[str] = set()
            for dep in node.depends_on:
                acc.add(dep)
                acc |= ancestors[dep]
            ancestors[node_id] = frozenset(acc)
        return ancestors

    def _check_references(self, validated: ValidatedGraph) -> None:
        for node_id in validated.order:
            undeclared = sorted(validated.references(node_id) - validated.ancestors[node_id])
            if undeclared:
                raise GraphValidationError(
                    GraphValidationKind.UNDECLARED_REFERENCE,
                    f"Node '{node_id}' reads results of {undeclared} "
                    "without depending on them",
                    [node_id, *undeclared],
                )
