"""
Unit tests for ConcurrencyLimiter admission control.

The cap must hold with many concurrent callers on one batch; waiters wake
when a slot is released, stop on request, and time out with a typed error.
"""

from __future__ import annotations

import asyncio

import pytest

from batch_settlement.domain.errors import AdmissionTimeoutError
from batch_settlement.services.concurrency import ConcurrencyLimiter
from tests.mocks import stage_batch


@pytest.fixture
def limiter(store) -> ConcurrencyLimiter:
    return ConcurrencyLimiter(store, default_max=5, poll_interval=0.01, timeout=5.0)


class TestConcurrencyLimiter:
    async def test_cap_holds_under_concurrent_callers(self, store, limiter):
        batch = await stage_batch(store, 20, max_concurrent=3)
        active = 0
        peak = 0

        async def job() -> None:
            nonlocal active, peak
            async with limiter.slot(batch.batch_id) as admitted:
                assert admitted
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.05)
                active -= 1

        await asyncio.gather(*(job() for _ in range(20)))

        assert peak == 3
        assert (await store.get_batch(batch.batch_id)).current_concurrent_trades == 0

    async def test_try_enter_respects_cap(self, store, limiter):
        batch = await stage_batch(store, 2, max_concurrent=1)

        assert await limiter.try_enter(batch.batch_id)
        assert not await limiter.try_enter(batch.batch_id)

        await limiter.leave(batch.batch_id)
        assert await limiter.try_enter(batch.batch_id)

    async def test_waiter_is_woken_by_leave(self, store):
        limiter = ConcurrencyLimiter(store, poll_interval=10.0, timeout=5.0)
        batch = await stage_batch(store, 2, max_concurrent=1)
        assert await limiter.try_enter(batch.batch_id)

        waiter = asyncio.create_task(limiter.enter(batch.batch_id))
        await asyncio.sleep(0.05)
        assert not waiter.done()

        await limiter.leave(batch.batch_id)
        assert await asyncio.wait_for(waiter, timeout=1.0) is True

    async def test_should_stop_aborts_wait(self, store, limiter):
        batch = await stage_batch(store, 2, max_concurrent=1)
        assert await limiter.try_enter(batch.batch_id)
        stop = asyncio.Event()

        async def should_stop() -> bool:
            return stop.is_set()

        waiter = asyncio.create_task(limiter.enter(batch.batch_id, should_stop=should_stop))
        await asyncio.sleep(0.03)
        stop.set()

        assert await asyncio.wait_for(waiter, timeout=1.0) is False

    async def test_slot_not_released_when_not_admitted(self, store, limiter):
        batch = await stage_batch(store, 2, max_concurrent=1)
        assert await limiter.try_enter(batch.batch_id)

        async def stop_now() -> bool:
            return True

        async with limiter.slot(batch.batch_id, should_stop=stop_now) as admitted:
            assert admitted is False

        assert (await store.get_batch(batch.batch_id)).current_concurrent_trades == 1

    async def test_timeout_raises(self, store, limiter):
        batch = await stage_batch(store, 2, max_concurrent=1)
        assert await limiter.try_enter(batch.batch_id)

        with pytest.raises(AdmissionTimeoutError) as exc_info:
            await limiter.enter(batch.batch_id, timeout=0.05)

        assert exc_info.value.batch_id == batch.batch_id
