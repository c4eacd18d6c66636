"""
Execution Context - the isolated runtime state of one user request.

A context owns its own copy of the graph's nodes, the result store, the
cancellation token, the deadline and the progress channel. It is created at
request start, discarded once the response is built, and never shared.
"""

import asyncio
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from intentflow.graph.builder import ValidatedGraph
from intentflow.graph.node import IntentNode, NodeStatus
from intentflow.runtime.progress import ProgressChannel, ProgressEvent, ProgressStatus
from intentflow.runtime.result_store import ResultStore


class CancellationToken:
    """
    Cooperative cancellation flag.

    cancel() is safe to call from any thread; waiters on the event loop are
    woken via call_soon_threadsafe.
    """

    def __init__(self) -> None:
        self._flag = threading.Event()
        self._event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._flag.is_set()

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if self._flag.is_set():
            return
        self.reason = reason
        self._flag.set()
        if self._event is None or self._loop is None or self._loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._event.set()
        else:
            self._loop.call_soon_threadsafe(self._event.set)

    async def wait(self) -> None:
        """Block until cancel() is called."""
        if self._event is None:
            self._loop = asyncio.get_running_loop()
            self._event = asyncio.Event()
        if self._flag.is_set():
            return
        await self._event.wait()


@dataclass
class ExecutionContext:
    """Runtime state for a single request."""

    id: str
    graph: ValidatedGraph
    nodes: dict[str, IntentNode]  # Private copies, mutated only by the executor
    results: ResultStore
    cancellation: CancellationToken
    deadline: float  # time.monotonic() value
    progress: ProgressChannel | None = None
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: datetime | None = None
    timed_out: bool = False
    excluded: set[str] = field(default_factory=set)  # Finished after cancellation

    @classmethod
    def create(
        cls,
        graph: ValidatedGraph,
        deadline_seconds: float,
        cancellation: CancellationToken | None = None,
        progress: ProgressChannel | None = None,
        request_id: str | None = None,
    ) -> "ExecutionContext":
        nodes = {node.id: node.model_copy(deep=True) for node in graph.nodes}
        return cls(
            id=request_id or uuid.uuid4().hex,
            graph=graph,
            nodes=nodes,
            results=ResultStore(),
            cancellation=cancellation or CancellationToken(),
            deadline=time.monotonic() + deadline_seconds,
            progress=progress,
        )

    @property
    def cancelled(self) -> bool:
        return self.cancellation.cancelled

    def remaining(self) -> float:
        """Seconds left before the deadline (negative once expired)."""
        return self.deadline - time.monotonic()

    def statuses(self) -> dict[str, NodeStatus]:
        return {node_id: node.status for node_id, node in self.nodes.items()}

    def ordered_nodes(self) -> list[IntentNode]:
        """Nodes in topological-submission order."""
        return [self.nodes[node_id] for node_id in self.graph.order]

    def emit(
        self,
        node_id: str,
        status: ProgressStatus | NodeStatus,
        message: str = "",
        **data,
    ) -> None:
        if self.progress is None:
            return
        self.progress.emit(
            ProgressEvent(
                node_id=node_id,
                status=ProgressStatus(status.value),
                message=message,
                request_id=self.id,
                data=data,
            )
        )
