"""
Tests for the IntentEngine facade: context isolation and the shared pool.
"""

import asyncio

import pytest

from intentflow.config import EngineConfig
from intentflow.errors import GraphValidationError, GraphValidationKind
from intentflow.graph.node import NodeStatus
from intentflow.runner.handler_registry import OperationHandlerRegistry
from intentflow.runtime.aggregator import OverallStatus
from intentflow.runtime.engine import IntentEngine
from intentflow.runtime.progress import ProgressEvent, ProgressStatus
from intentflow.runtime.worker_pool import WorkerPool

GRAPH = {
    "id": "review",
    "nodes": [
        {"id": "portfolio", "type": "portfolio_view", "parameters": {"wallet": "main"}},
        {
            "id": "alert",
            "type": "price_alert",
            "depends_on": ["portfolio"],
            "parameters": {"token": "SOL", "target_price": "{{ portfolio.sol_price * 1.2 }}"},
        },
    ],
}


@pytest.fixture
def registry():
    registry = OperationHandlerRegistry()

    @registry.handler("portfolio_view")
    async def portfolio(params):
        await asyncio.sleep(0.05)
        return {"sol_price": 100}

    @registry.handler("price_alert")
    async def alert(params):
        await asyncio.sleep(0.05)
        return {"target": params["target_price"]}

    return registry


def test_create_context_uses_default_deadline(registry):
    engine = IntentEngine(registry, config=EngineConfig(default_deadline_seconds=12))
    ctx = engine.create_context(engine.validate(GRAPH))
    assert 11 < ctx.remaining() <= 12
    assert ctx.nodes["portfolio"].status == NodeStatus.PENDING


def test_create_context_keeps_zero_deadline(registry):
    engine = IntentEngine(registry, config=EngineConfig(default_deadline_seconds=60))
    ctx = engine.create_context(engine.validate(GRAPH), deadline_seconds=0.0)
    assert ctx.remaining() <= 0


@pytest.mark.asyncio
async def test_expired_deadline_fails_every_node(registry):
    engine = IntentEngine(registry, config=EngineConfig(default_deadline_seconds=60))

    response = await engine.run(GRAPH, deadline_seconds=0)

    assert response.timed_out is True
    assert response.overall_status == OverallStatus.FAILED
    for outcome in response.nodes:
        assert outcome.status == NodeStatus.FAILED
        assert outcome.error.kind == "timeout"
        assert outcome.attempts == 0


def test_progress_channel_sized_from_config(registry):
    engine = IntentEngine(registry, config=EngineConfig(progress_buffer_size=2))
    channel = engine.progress_channel()
    for _ in range(3):
        channel.emit(ProgressEvent(node_id="n", status=ProgressStatus.PENDING))
    assert channel.dropped == 1


def test_rejects_empty_pool():
    with pytest.raises(ValueError):
        WorkerPool(max_workers=0)


@pytest.mark.asyncio
async def test_concurrent_requests_are_isolated(registry):
    engine = IntentEngine(registry)

    first, second = await asyncio.gather(engine.run(GRAPH), engine.run(GRAPH))

    assert first.request_id != second.request_id
    for response in (first, second):
        assert response.overall_status == OverallStatus.COMPLETED
        assert response.get_node("alert").result == {"target": pytest.approx(120.0)}


@pytest.mark.asyncio
async def test_shared_pool_bounds_all_requests(registry):
    engine = IntentEngine(registry, config=EngineConfig(worker_pool_size=1))

    responses = await asyncio.gather(*(engine.run(GRAPH) for _ in range(3)))

    assert all(r.overall_status == OverallStatus.COMPLETED for r in responses)
    assert engine.pool.peak == 1
    assert engine.pool.active == 0


@pytest.mark.asyncio
async def test_malformed_draft_raises_graph_validation_error(registry):
    engine = IntentEngine(registry)

    with pytest.raises(GraphValidationError) as exc_info:
        await engine.run({"nodes": [{"id": "a"}]})

    assert exc_info.value.kind == GraphValidationKind.INVALID_GRAPH
