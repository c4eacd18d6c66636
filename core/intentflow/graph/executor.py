"""
Intent Executor - drives a validated graph to completion.

The executor:
1. Recomputes the ready set (dependencies succeeded or skipped)
2. Gates each ready node on its references and condition, cascading skips
3. Resolves parameter templates and dispatches the node to the worker pool
4. Records results, retries retryable failures after a backoff
5. Stops on completion, cancellation or deadline expiry
6. Returns the aggregated response

All node state belongs to the ExecutionContext and is only mutated from the
coroutines of one execute() call.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from intentflow.errors import (
    ConditionEvaluationWarning,
    ErrorKind,
    OperationError,
    UnresolvedReferenceError,
)
from intentflow.graph.condition import ConditionEvaluator
from intentflow.graph.node import IntentNode, NodeError, NodeStatus
from intentflow.graph.retry import RetryCoordinator
from intentflow.observability import reset_trace_context, set_trace_context
from intentflow.runner.handler_registry import OperationHandlerRegistry
from intentflow.runtime.aggregator import ExecutionResponse, ResponseAggregator
from intentflow.runtime.context import ExecutionContext
from intentflow.runtime.progress import ProgressStatus
from intentflow.runtime.worker_pool import WorkerPool

DEFAULT_MAX_CONCURRENCY = 8
DEFAULT_CANCEL_GRACE_SECONDS = 0.1


class _Phase:
    WAITING = "waiting"  # Queued for a slot
    RUNNING = "running"  # Handler in flight
    BACKOFF = "backoff"  # Between attempts, slot released


@dataclass
class _NodeRun:
    """Book-keeping for one dispatched node."""

    node: IntentNode
    params: dict[str, Any]
    phase: str = _Phase.WAITING


@dataclass
class _Outcome:
    result: Any = None
    error: OperationError | None = None
    skipped: str | None = None  # Skip reason


class IntentExecutor:
    """
    Executes validated intent graphs.

    Example:
        executor = IntentExecutor(registry=registry, pool=WorkerPool(8))
        ctx = ExecutionContext.create(validated, deadline_seconds=30)
        response = await executor.execute(ctx)
        response.overall_status  # "partial_failure"
    """

    def __init__(
        self,
        registry: OperationHandlerRegistry,
        retries: RetryCoordinator | None = None,
        pool: WorkerPool | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        cancel_grace_seconds: float = DEFAULT_CANCEL_GRACE_SECONDS,
        aggregator: ResponseAggregator | None = None,
    ):
        self.registry = registry
        self.retries = retries or RetryCoordinator(policies=registry.retry_policies())
        self.pool = pool or WorkerPool()
        self.max_concurrency = max_concurrency
        self.cancel_grace_seconds = cancel_grace_seconds
        self.aggregator = aggregator or ResponseAggregator()
        self.logger = logging.getLogger(__name__)

    async def execute(self, ctx: ExecutionContext) -> ExecutionResponse:
        """
        Run every node of the context to a terminal state.

        Never raises for node failures, cancellation or timeout; those are
        reported in the response.
        """
        token = set_trace_context(request_id=ctx.id, graph_id=ctx.graph.graph.id)
        try:
            return await self._execute(ctx)
        finally:
            reset_trace_context(token)

    async def _execute(self, ctx: ExecutionContext) -> ExecutionResponse:
        self.logger.info(f"🚀 Executing graph '{ctx.graph.graph.id}' ({len(ctx.nodes)} nodes)")
        for node in ctx.ordered_nodes():
            ctx.emit(node.id, ProgressStatus.PENDING)

        limit = max(1, min(self.max_concurrency, len(ctx.nodes)))
        local_slots = asyncio.Semaphore(limit)
        inflight: dict[asyncio.Task, _NodeRun] = {}
        cancel_waiter = asyncio.create_task(ctx.cancellation.wait())

        try:
            while True:
                if ctx.cancelled:
                    self._stop_dispatching(ctx, inflight)
                else:
                    self._dispatch_ready(ctx, inflight, local_slots)

                if not inflight:
                    break

                remaining = ctx.remaining()
                if remaining <= 0:
                    await self._expire(ctx, inflight)
                    break

                waitset: set[asyncio.Future] = set(inflight)
                if not ctx.cancelled:
                    waitset.add(cancel_waiter)
                done, _ = await asyncio.wait(
                    waitset, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                if not done:
                    await self._expire(ctx, inflight)
                    break

                for task in done:
                    if task is cancel_waiter:
                        self.logger.info(f"⏹ Cancellation requested: {ctx.cancellation.reason}")
                        continue
                    self._settle(ctx, inflight.pop(task), task.result())
        finally:
            cancel_waiter.cancel()
            for task in inflight:
                task.cancel()
            ctx.ended_at = datetime.now()
            if ctx.progress is not None:
                ctx.progress.close()

        response = self.aggregator.build(ctx)
        self.logger.info(
            f"🏁 Graph '{ctx.graph.graph.id}' finished: {response.overall_status}",
            extra={"event": "graph_finished"},
        )
        return response

    # ------------------------------------------------------------------
    # Ready set
    # ------------------------------------------------------------------

    def _dispatch_ready(
        self,
        ctx: ExecutionContext,
        inflight: dict[asyncio.Task, _NodeRun],
        local_slots: asyncio.Semaphore,
    ) -> None:
        for node_id in ctx.graph.order:
            node = ctx.nodes[node_id]
            if not node.is_ready(ctx.statuses()):
                continue

            blocked = sorted(
                ref
                for ref in ctx.graph.references(node_id)
                if ctx.nodes[ref].status != NodeStatus.SUCCEEDED
            )
            if blocked:
                self._skip(ctx, node, f"referenced node '{blocked[0]}' did not succeed")
                continue

            condition = ctx.graph.conditions.get(node_id)
            if condition is not None:
                evaluator = ConditionEvaluator(ctx.results.lookup)
                if not evaluator.evaluate(condition):
                    reason = f"condition '{condition}' is false"
                    if evaluator.warnings:
                        reason = evaluator.warnings[-1]
                    self._skip(ctx, node, reason)
                    continue

            try:
                params = self._resolve_parameters(ctx, node)
            except (UnresolvedReferenceError, ConditionEvaluationWarning) as e:
                self._fail(ctx, node, OperationError(ErrorKind.PARAMETER_RESOLUTION, str(e)))
                continue

            node.status = NodeStatus.READY
            ctx.emit(node.id, ProgressStatus.READY)
            run = _NodeRun(node=node, params=params)
            task = asyncio.create_task(self._run_node(ctx, run, local_slots), name=node.id)
            inflight[task] = run

    def _resolve_parameters(self, ctx: ExecutionContext, node: IntentNode) -> dict[str, Any]:
        template = ctx.graph.templates.get(node.id)
        if template is None:
            return dict(node.parameters)
        return template.render(ctx.results.lookup)

    # ------------------------------------------------------------------
    # Node task
    # ------------------------------------------------------------------

    async def _run_node(
        self, ctx: ExecutionContext, run: _NodeRun, local_slots: asyncio.Semaphore
    ) -> _Outcome:
        node = run.node
        set_trace_context(node_id=node.id)

        while True:
            async with local_slots, self.pool.slot():
                if ctx.cancelled:
                    return _Outcome(skipped="cancelled before dispatch")
                run.phase = _Phase.RUNNING
                if node.status == NodeStatus.READY:
                    node.status = NodeStatus.RUNNING
                    node.started_at = datetime.now()
                    ctx.emit(node.id, ProgressStatus.RUNNING)
                node.attempts += 1
                self.logger.info(
                    f"▶ {node.id} ({node.type}) attempt {node.attempts}",
                    extra={"intent_type": node.type, "attempt": node.attempts},
                )
                started = time.monotonic()
                try:
                    result = await self.registry.invoke(
                        node.type, run.params, cancellation=ctx.cancellation
                    )
                    self.logger.info(
                        f"✓ {node.id} succeeded",
                        extra={"latency_ms": int((time.monotonic() - started) * 1000)},
                    )
                    return _Outcome(result=result)
                except OperationError as e:
                    error = e

            if ctx.cancelled:
                return _Outcome(skipped="cancelled before retry")
            if not self.retries.should_retry(node.type, error, node.attempts):
                return _Outcome(error=error)

            delay = self.retries.backoff_delay(node.type, node.attempts)
            self.logger.warning(f"↻ {node.id} failed ({error.kind}), retrying in {delay:.2f}s")
            ctx.emit(
                node.id,
                ProgressStatus.RETRYING,
                str(error.message),
                attempt=node.attempts,
                delay=delay,
            )
            run.phase = _Phase.BACKOFF
            await asyncio.sleep(delay)
            run.phase = _Phase.WAITING

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _settle(self, ctx: ExecutionContext, run: _NodeRun, outcome: _Outcome) -> None:
        node = run.node
        if ctx.cancelled and run.phase == _Phase.RUNNING:
            ctx.excluded.add(node.id)

        if outcome.skipped is not None:
            self._skip(ctx, node, outcome.skipped)
        elif outcome.error is not None:
            self._fail(ctx, node, outcome.error)
        else:
            ctx.results.put(node.id, outcome.result)
            node.result = outcome.result
            node.status = NodeStatus.SUCCEEDED
            node.completed_at = datetime.now()
            ctx.emit(node.id, ProgressStatus.SUCCEEDED)

    def _skip(self, ctx: ExecutionContext, node: IntentNode, reason: str) -> None:
        self._mark_skipped(ctx, node, reason)
        self._cascade(ctx, node.id, f"upstream node '{node.id}' was skipped")

    def _fail(self, ctx: ExecutionContext, node: IntentNode, error: OperationError) -> None:
        node.status = NodeStatus.FAILED
        node.completed_at = datetime.now()
        node.error = NodeError(
            kind=error.kind.value,
            message=error.message,
            retryable=error.retryable,
            attempts=node.attempts,
        )
        self.logger.error(f"✗ {node.id} failed: {error}", extra={"intent_type": node.type})
        ctx.emit(node.id, ProgressStatus.FAILED, error.message, kind=error.kind.value)
        self._cascade(ctx, node.id, f"upstream node '{node.id}' failed")

    def _mark_skipped(self, ctx: ExecutionContext, node: IntentNode, reason: str) -> None:
        node.status = NodeStatus.SKIPPED
        node.skip_reason = reason
        node.completed_at = datetime.now()
        self.logger.info(f"⏭ {node.id} skipped: {reason}")
        ctx.emit(node.id, ProgressStatus.SKIPPED, reason)

    def _cascade(self, ctx: ExecutionContext, node_id: str, reason: str) -> None:
        for descendant in ctx.graph.descendants(node_id):
            node = ctx.nodes[descendant]
            if not node.status.is_terminal():
                self._mark_skipped(ctx, node, reason)

    def _stop_dispatching(
        self, ctx: ExecutionContext, inflight: dict[asyncio.Task, _NodeRun]
    ) -> None:
        """Skip everything that has not reached a handler; let running handlers finish."""
        for task, run in list(inflight.items()):
            if run.phase != _Phase.RUNNING:
                task.cancel()
                del inflight[task]
                self._mark_skipped(ctx, run.node, "request cancelled")
        for node in ctx.ordered_nodes():
            if node.status in (NodeStatus.PENDING, NodeStatus.READY):
                self._mark_skipped(ctx, node, "request cancelled")

    async def _expire(self, ctx: ExecutionContext, inflight: dict[asyncio.Task, _NodeRun]) -> None:
        """Deadline reached: fail every unfinished node and cancel running handlers."""
        ctx.timed_out = True
        self.logger.warning(f"⏱ Deadline exceeded, {len(inflight)} node(s) still in flight")
        tasks = list(inflight)
        for task in tasks:
            task.cancel()
        for node in ctx.ordered_nodes():
            if not node.status.is_terminal():
                node.status = NodeStatus.FAILED
                node.completed_at = datetime.now()
                node.error = NodeError(
                    kind=ErrorKind.TIMEOUT.value,
                    message="execution deadline exceeded",
                    retryable=False,
                    attempts=node.attempts,
                )
                ctx.emit(node.id, ProgressStatus.FAILED, "execution deadline exceeded")
        inflight.clear()
        if tasks:
            await asyncio.wait(tasks, timeout=self.cancel_grace_seconds)
