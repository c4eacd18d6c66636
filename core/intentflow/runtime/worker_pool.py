"""
Worker Pool - the process-wide bound on concurrently running handlers.

One pool is owned by the IntentEngine and shared by every execution context
it runs. Each context additionally limits itself to min(max_concurrency,
node count) slots.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 8


class WorkerPool:
    """
    Bounded pool of handler slots.

    Example:
        pool = WorkerPool(max_workers=8)
        async with pool.slot():
            await handler(params)
    """

    def __init__(self, max_workers: int = DEFAULT_POOL_SIZE):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self._semaphore = asyncio.Semaphore(max_workers)
        self._active = 0
        self._peak = 0

    @property
    def active(self) -> int:
        """Slots currently held."""
        return self._active

    @property
    def peak(self) -> int:
        """Highest number of slots held at once since creation."""
        return self._peak

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        async with self._semaphore:
            self._active += 1
            self._peak = max(self._peak, self._active)
            try:
                yield
            finally:
                self._active -= 1
