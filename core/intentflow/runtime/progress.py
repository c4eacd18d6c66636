"""
Progress Channel - best-effort node status notifications for one request.

The presentation layer consumes these to show "analyzing token...",
"trade executed" and so on. Emitting never blocks the scheduler: the buffer
is bounded and drops its oldest event when full.

Example:
    channel = ProgressChannel(maxsize=64)

    async def render():
        async for event in channel:
            print(event.node_id, event.status, event.message)

    consumer = asyncio.create_task(render())
    await engine.run(graph, progress=channel)  # closes the channel when done
    await consumer
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 256


class ProgressStatus(StrEnum):
    """Statuses carried by progress events: node statuses plus retrying."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ProgressEvent:
    """A single node status notification."""

    node_id: str
    status: ProgressStatus
    message: str = ""
    request_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "node_id": self.node_id,
            "status": self.status.value,
            "message": self.message,
            "request_id": self.request_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


class ProgressChannel:
    """
    Bounded, non-blocking event queue owned by one execution context.

    Features:
    - emit() never blocks and never raises
    - overflow drops the oldest buffered event
    - async iteration until close()
    """

    def __init__(self, maxsize: int = DEFAULT_BUFFER_SIZE):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self._buffer: deque[ProgressEvent] = deque()
        self._maxsize = maxsize
        self._dropped = 0
        self._closed = False
        self._wakeup: asyncio.Event | None = None

    @property
    def dropped(self) -> int:
        """Number of events discarded because the buffer was full."""
        return self._dropped

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: ProgressEvent) -> None:
        """Buffer an event, discarding the oldest one on overflow."""
        if self._closed:
            logger.debug(f"Progress event for {event.node_id} after close, ignored")
            return
        if len(self._buffer) >= self._maxsize:
            self._buffer.popleft()
            self._dropped += 1
        self._buffer.append(event)
        if self._wakeup is not None:
            self._wakeup.set()

    def drain(self) -> list[ProgressEvent]:
        """Take every buffered event without waiting."""
        events = list(self._buffer)
        self._buffer.clear()
        return events

    def close(self) -> None:
        """Signal that no further events will be emitted."""
        self._closed = True
        if self._wakeup is not None:
            self._wakeup.set()

    async def get(self) -> ProgressEvent | None:
        """Wait for the next event; None once closed and empty."""
        while True:
            if self._buffer:
                return self._buffer.popleft()
            if self._closed:
                return None
            if self._wakeup is None:
                self._wakeup = asyncio.Event()
            self._wakeup.clear()
            await self._wakeup.wait()

    def __aiter__(self) -> "ProgressChannel":
        return self

    async def __anext__(self) -> ProgressEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event
