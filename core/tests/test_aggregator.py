"""
Tests for ResponseAggregator and the overall status rule.
"""

import json

import pytest

from intentflow.graph.builder import DependencyGraphBuilder
from intentflow.graph.node import NodeError, NodeStatus
from intentflow.runtime.aggregator import OverallStatus, ResponseAggregator, overall_status
from intentflow.runtime.context import ExecutionContext

S, F, K = NodeStatus.SUCCEEDED, NodeStatus.FAILED, NodeStatus.SKIPPED


@pytest.mark.parametrize(
    "statuses,expected",
    [
        ([], OverallStatus.COMPLETED),
        ([S, S], OverallStatus.COMPLETED),
        ([S, K], OverallStatus.PARTIAL_FAILURE),
        ([S, F], OverallStatus.PARTIAL_FAILURE),
        ([F, K], OverallStatus.FAILED),
        ([K, K], OverallStatus.FAILED),
    ],
)
def test_overall_status(statuses, expected):
    assert overall_status(statuses) == expected


@pytest.fixture
def ctx():
    validated = DependencyGraphBuilder().build(
        {
            "nodes": [
                {"id": "alert", "type": "price_alert", "depends_on": ["quote"]},
                {"id": "quote", "type": "portfolio_view"},
                {"id": "late", "type": "reminder"},
            ]
        }
    )
    return ExecutionContext.create(validated, deadline_seconds=5)


def test_nodes_in_topological_order(ctx):
    ctx.nodes["quote"].status = S
    ctx.nodes["quote"].result = {"price": 1}
    ctx.nodes["quote"].attempts = 1
    ctx.nodes["alert"].status = F
    ctx.nodes["alert"].error = NodeError(kind="network", message="down", attempts=4)
    ctx.nodes["late"].status = K
    ctx.nodes["late"].skip_reason = "request cancelled"

    response = ResponseAggregator().build(ctx)

    assert [n.id for n in response.nodes] == ["quote", "alert", "late"]
    assert response.request_id == ctx.id
    assert response.overall_status == OverallStatus.PARTIAL_FAILURE
    assert response.get_node("quote").result == {"price": 1}
    assert response.get_node("alert").error.kind == "network"
    assert response.get_node("late").skip_reason == "request cancelled"
    assert [o.id for o in response.errors()] == ["alert"]


def test_excluded_results_are_withheld(ctx):
    for node in ctx.nodes.values():
        node.status = S
        node.result = {"ok": True}
    ctx.excluded.add("late")
    ctx.cancellation.cancel()

    response = ResponseAggregator().build(ctx)

    late = response.get_node("late")
    assert late.excluded is True
    assert late.result is None
    assert late.status == S
    assert response.cancelled is True


def test_to_dict_is_json_ready(ctx):
    data = ResponseAggregator().build(ctx).to_dict()
    json.dumps(data)
    assert set(data) == {
        "request_id",
        "overall_status",
        "nodes",
        "started_at",
        "ended_at",
        "cancelled",
        "timed_out",
    }
    assert set(data["nodes"][0]) == {
        "id",
        "type",
        "status",
        "result",
        "error",
        "attempts",
        "skip_reason",
        "excluded",
    }
    assert data["overall_status"] == "failed"
