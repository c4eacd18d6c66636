"""
Tests for DependencyGraphBuilder validation and ordering.
"""

import json

import pytest

from intentflow.errors import GraphValidationError, GraphValidationKind
from intentflow.graph.builder import DependencyGraphBuilder
from intentflow.graph.intent_graph import IntentGraph
from intentflow.graph.node import NodeStatus


def node(node_id, deps=(), **fields):
    return {"id": node_id, "type": "price_alert", "depends_on": list(deps), **fields}


def graph(*nodes):
    return {"id": "g", "nodes": list(nodes)}


@pytest.fixture
def builder():
    return DependencyGraphBuilder()


class TestOrdering:
    def test_topological_order_breaks_ties_by_declaration(self, builder):
        validated = builder.build(
            graph(
                node("alert", ["trade"]),
                node("trade", ["sentiment"]),
                node("sentiment"),
                node("portfolio"),
            )
        )
        assert validated.order == ["sentiment", "trade", "alert", "portfolio"]

    def test_descendants_in_order(self, builder):
        validated = builder.build(
            graph(node("a"), node("b", ["a"]), node("c", ["b"]), node("d", ["a"]))
        )
        assert validated.descendants("a") == ["b", "c", "d"]
        assert validated.descendants("c") == []
        assert validated.ancestors["c"] == frozenset({"a", "b"})

    def test_empty_graph(self, builder):
        validated = builder.build(graph())
        assert validated.order == []
        assert len(validated) == 0


class TestRejections:
    @pytest.mark.parametrize(
        "draft",
        [
            {"nodes": [{"id": "a"}]},
            {"nodes": [{"id": "a", "type": "price_alert", "depends_on": "b"}]},
            "{not json",
            42,
        ],
    )
    def test_malformed_draft(self, builder, draft):
        with pytest.raises(GraphValidationError) as exc_info:
            builder.build(draft)
        assert exc_info.value.kind == GraphValidationKind.INVALID_GRAPH

    def test_two_node_cycle(self, builder):
        with pytest.raises(GraphValidationError) as exc_info:
            builder.build(graph(node("a", ["b"]), node("b", ["a"])))
        error = exc_info.value
        assert error.kind == GraphValidationKind.CYCLE_DETECTED
        assert set(error.node_ids) == {"a", "b"}
        assert error.node_ids[0] == error.node_ids[-1]

    def test_cycle_excludes_upstream_nodes(self, builder):
        with pytest.raises(GraphValidationError) as exc_info:
            builder.build(
                graph(node("x"), node("a", ["x", "c"]), node("b", ["a"]), node("c", ["b"]))
            )
        assert set(exc_info.value.node_ids) == {"a", "b", "c"}

    def test_self_dependency(self, builder):
        with pytest.raises(GraphValidationError) as exc_info:
            builder.build(graph(node("a", ["a"])))
        assert exc_info.value.kind == GraphValidationKind.CYCLE_DETECTED

    def test_dangling_reference(self, builder):
        with pytest.raises(GraphValidationError) as exc_info:
            builder.build(graph(node("a", ["ghost"])))
        assert exc_info.value.kind == GraphValidationKind.DANGLING_REFERENCE
        assert "ghost" in exc_info.value.node_ids

    def test_duplicate_ids(self, builder):
        with pytest.raises(GraphValidationError) as exc_info:
            builder.build(graph(node("a"), node("a")))
        assert exc_info.value.kind == GraphValidationKind.DUPLICATE_NODE_ID
        assert exc_info.value.node_ids == ["a"]

    def test_graph_too_large(self):
        with pytest.raises(GraphValidationError) as exc_info:
            DependencyGraphBuilder(max_nodes=3).build(graph(*(node(f"n{i}") for i in range(4))))
        assert exc_info.value.kind == GraphValidationKind.GRAPH_TOO_LARGE

    def test_invalid_condition(self, builder):
        with pytest.raises(GraphValidationError) as exc_info:
            builder.build(
                graph(node("a"), node("b", ["a"], condition="a.__class__ == 'x'"))
            )
        assert exc_info.value.kind == GraphValidationKind.INVALID_EXPRESSION
        assert exc_info.value.node_ids == ["b"]

    def test_invalid_parameter_template(self, builder):
        with pytest.raises(GraphValidationError) as exc_info:
            builder.build(graph(node("a"), node("b", ["a"], parameters={"x": "{{ a.run() }}"})))
        assert exc_info.value.kind == GraphValidationKind.INVALID_EXPRESSION

    @pytest.mark.parametrize(
        "fields",
        [
            {"condition": "a.x" + " + 1" * 5000 + " > 0"},
            {"parameters": {"target": "{{ a.x" + " * 1" * 5000 + " }}"}},
        ],
    )
    def test_oversized_expression_rejected(self, builder, fields):
        with pytest.raises(GraphValidationError) as exc_info:
            builder.build(graph(node("a"), node("b", ["a"], **fields)))
        assert exc_info.value.kind == GraphValidationKind.INVALID_EXPRESSION
        assert exc_info.value.node_ids == ["b"]

    def test_condition_on_undeclared_node(self, builder):
        with pytest.raises(GraphValidationError) as exc_info:
            builder.build(graph(node("sentiment"), node("trade", condition="sentiment.label == 'x'")))
        assert exc_info.value.kind == GraphValidationKind.UNDECLARED_REFERENCE
        assert exc_info.value.node_ids == ["trade", "sentiment"]

    def test_transitive_reference_is_allowed(self, builder):
        validated = builder.build(
            graph(
                node("sentiment"),
                node("trade", ["sentiment"]),
                node("alert", ["trade"], parameters={"note": "score {{ sentiment.score }}"}),
            )
        )
        assert validated.references("alert") == frozenset({"sentiment"})


class TestInputs:
    def test_json_string_and_camel_case(self, builder):
        raw = json.dumps(
            {"plan": {"intents": [node("a"), {"id": "b", "type": "reminder", "dependsOn": ["a"]}]}}
        )
        validated = builder.build(raw)
        assert validated.order == ["a", "b"]
        assert validated.get_node("b").depends_on == ["a"]

    def test_draft_is_not_mutated(self, builder):
        draft = IntentGraph.model_validate(graph(node("a"), node("b", ["a"])))
        validated = builder.build(draft)
        validated.get_node("a").status = NodeStatus.SUCCEEDED
        assert draft.get_node("a").status == NodeStatus.PENDING
        assert validated.graph is not draft
