"""
Concurrency Limiter.

Admission gate over the per-batch current_concurrent_trades counter. The
counter lives in the store so the cap holds across processes; in-process
waiters are woken through an asyncio.Condition when a slot is released, and
re-poll on a bounded interval to notice slots released elsewhere.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from batch_settlement.domain.errors import AdmissionTimeoutError
from batch_settlement.domain.models import DEFAULT_MAX_CONCURRENT_TRADES
from batch_settlement.observability.logging import get_logger
from batch_settlement.ports.store import BatchStorePort

logger = get_logger(__name__)

StopCheck = Callable[[], Awaitable[bool]]


class ConcurrencyLimiter:
    """Bounds simultaneous in-flight trades per batch."""

    def __init__(
        self,
        store: BatchStorePort,
        default_max: int = DEFAULT_MAX_CONCURRENT_TRADES,
        poll_interval: float = 0.1,
        timeout: float | None = 300.0,
    ):
        self.store = store
        self.default_max = default_max
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._released = asyncio.Condition()

    async def try_enter(self, batch_id: int) -> bool:
        """Atomically take a slot if current < max."""
        return await self.store.try_increment_concurrency(batch_id, self.default_max)

    async def leave(self, batch_id: int) -> None:
        """Give a slot back (floored at zero) and wake local waiters."""
        await self.store.decrement_concurrency(batch_id)
        async with self._released:
            self._released.notify_all()

    async def enter(
        self,
        batch_id: int,
        should_stop: StopCheck | None = None,
        timeout: float | None = None,
    ) -> bool:
        """
        Wait for a slot.

        Returns:
            True once admitted, False if should_stop() reported cancellation first.

        Raises:
            AdmissionTimeoutError: no slot within the timeout.
        """
        loop = asyncio.get_running_loop()
        limit = self.timeout if timeout is None else timeout
        deadline = None if limit is None else loop.time() + limit

        while True:
            if await self.try_enter(batch_id):
                return True
            if should_stop is not None and await should_stop():
                return False

            wait_for = self.poll_interval
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise AdmissionTimeoutError(
                        f"No concurrency slot for batch {batch_id} within {limit}s", batch_id=batch_id
                    )
                wait_for = min(wait_for, remaining)

            async with self._released:
                try:
                    await asyncio.wait_for(self._released.wait(), timeout=wait_for)
                except TimeoutError:
                    pass

    @asynccontextmanager
    async def slot(self, batch_id: int, should_stop: StopCheck | None = None) -> AsyncIterator[bool]:
        """
        Hold a slot for the duration of the block.

        Yields False (without holding a slot) if the wait was cancelled.
        """
        admitted = await self.enter(batch_id, should_stop=should_stop)
        try:
            yield admitted
        finally:
            if admitted:
                await self.leave(batch_id)
