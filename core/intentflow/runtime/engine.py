"""
Intent Engine - the entry point the chat front end talks to.

One engine per process. It owns the shared WorkerPool and the retry
coordinator; every request gets its own ExecutionContext.

Example:
    engine = IntentEngine(registry)
    response = await engine.run(draft_graph, deadline_seconds=20)
    if response.overall_status != "completed":
        ...

A GraphValidationError raised by run() means nothing was executed.
"""

import logging
import random
from typing import Any

from intentflow.config import EngineConfig
from intentflow.graph.builder import DependencyGraphBuilder, ValidatedGraph
from intentflow.graph.executor import IntentExecutor
from intentflow.graph.intent_graph import IntentGraph
from intentflow.graph.retry import RetryCoordinator
from intentflow.runner.handler_registry import OperationHandlerRegistry
from intentflow.runtime.aggregator import ExecutionResponse
from intentflow.runtime.context import CancellationToken, ExecutionContext
from intentflow.runtime.progress import ProgressChannel
from intentflow.runtime.worker_pool import WorkerPool

logger = logging.getLogger(__name__)


class IntentEngine:
    """Validates and executes intent graphs against a handler registry."""

    def __init__(
        self,
        registry: OperationHandlerRegistry,
        config: EngineConfig | None = None,
        pool: WorkerPool | None = None,
        rng: random.Random | None = None,
    ):
        self.registry = registry
        self.config = config or EngineConfig()
        self.pool = pool or WorkerPool(self.config.worker_pool_size)
        self.builder = DependencyGraphBuilder(max_nodes=self.config.max_nodes)
        self._rng = rng

    def validate(self, draft: IntentGraph | dict[str, Any] | str) -> ValidatedGraph:
        """
        Raises:
            GraphValidationError: If the draft cannot be executed
        """
        return self.builder.build(draft)

    def progress_channel(self) -> ProgressChannel:
        """A progress channel sized from the engine config, for one request."""
        return ProgressChannel(maxsize=self.config.progress_buffer_size)

    def create_context(
        self,
        graph: ValidatedGraph,
        deadline_seconds: float | None = None,
        cancellation: CancellationToken | None = None,
        progress: ProgressChannel | None = None,
    ) -> ExecutionContext:
        if deadline_seconds is None:
            deadline_seconds = self.config.default_deadline_seconds
        return ExecutionContext.create(
            graph,
            deadline_seconds=deadline_seconds,
            cancellation=cancellation,
            progress=progress,
        )

    def _retry_coordinator(self) -> RetryCoordinator:
        # Registration-time policies win over configured ones
        policies = {**self.config.retry_policies, **self.registry.retry_policies()}
        return RetryCoordinator(default_policy=self.config.retry, policies=policies, rng=self._rng)

    async def execute(self, ctx: ExecutionContext) -> ExecutionResponse:
        executor = IntentExecutor(
            registry=self.registry,
            retries=self._retry_coordinator(),
            pool=self.pool,
            max_concurrency=self.config.max_concurrency,
            cancel_grace_seconds=self.config.cancel_grace_seconds,
        )
        return await executor.execute(ctx)

    async def run(
        self,
        draft: IntentGraph | dict[str, Any] | str,
        deadline_seconds: float | None = None,
        cancellation: CancellationToken | None = None,
        progress: ProgressChannel | None = None,
    ) -> ExecutionResponse:
        """
        Validate and execute a draft graph.

        Args:
            draft: IntentGraph, dict or JSON string
            deadline_seconds: Overrides config.default_deadline_seconds
            cancellation: Token the caller may trigger from any thread
            progress: Channel to receive node status events (closed at the end)

        Raises:
            GraphValidationError: Before any node runs
        """
        validated = self.validate(draft)
        ctx = self.create_context(validated, deadline_seconds, cancellation, progress)
        return await self.execute(ctx)
