"""
Unit tests for ProgressAggregator: counters are recomputed from trade rows and
the final status is applied exactly once.
"""

from __future__ import annotations

import asyncio

import pytest

from batch_settlement.domain.errors import BatchNotFoundError
from batch_settlement.domain.models import BatchStatus, TradeStatus
from batch_settlement.services.progress import ProgressAggregator
from tests.mocks import stage_batch


async def _finish(store, trade, status: TradeStatus) -> None:
    if status == TradeStatus.SUCCESS:
        await store.transition_trade(trade.trade_id, TradeStatus.PENDING, TradeStatus.QUOTED)
        await store.transition_trade(trade.trade_id, TradeStatus.QUOTED, TradeStatus.EXECUTING)
        await store.transition_trade(trade.trade_id, TradeStatus.EXECUTING, TradeStatus.SUCCESS)
    else:
        await store.transition_trade(trade.trade_id, TradeStatus.PENDING, status)


async def _running_batch(store, count: int):
    batch = await stage_batch(store, count)
    await store.transition_batch_status(batch.batch_id, BatchStatus.PENDING, BatchStatus.RUNNING)
    return batch


class TestRecompute:
    async def test_counts_terminal_trades(self, store):
        progress = ProgressAggregator(store)
        batch = await _running_batch(store, 4)
        t1, t2, t3, _ = await store.list_trades_by_batch(batch.batch_id)
        await _finish(store, t1, TradeStatus.SUCCESS)
        await _finish(store, t2, TradeStatus.FAILED)
        await _finish(store, t3, TradeStatus.CANCELLED)

        snapshot = await progress.recompute(batch.batch_id)

        assert snapshot.processed == 3
        assert snapshot.failed == 1
        assert snapshot.percent == 75.0
        persisted = await store.get_batch(batch.batch_id)
        assert persisted.processed_trades == 3
        assert persisted.failed_trades == 1

    async def test_recompute_is_idempotent(self, store):
        progress = ProgressAggregator(store)
        batch = await _running_batch(store, 2)
        t1, _ = await store.list_trades_by_batch(batch.batch_id)
        await _finish(store, t1, TradeStatus.FAILED)

        first = await progress.recompute(batch.batch_id)
        second = await progress.recompute(batch.batch_id)

        assert first == second

    async def test_concurrent_recomputes_settle_on_final_counts(self, store):
        progress = ProgressAggregator(store)
        batch = await _running_batch(store, 6)
        trades = await store.list_trades_by_batch(batch.batch_id)

        async def finish_and_recompute(index, trade):
            await _finish(store, trade, TradeStatus.FAILED if index % 3 == 0 else TradeStatus.SUCCESS)
            return await progress.recompute(batch.batch_id)

        await asyncio.gather(*(finish_and_recompute(i, t) for i, t in enumerate(trades)))

        persisted = await store.get_batch(batch.batch_id)
        assert (persisted.processed_trades, persisted.failed_trades) == (6, 2)

    async def test_unknown_batch(self, store):
        with pytest.raises(BatchNotFoundError):
            await ProgressAggregator(store).recompute(12345)


class TestDeriveFinalStatus:
    async def test_none_while_trades_open(self, store):
        progress = ProgressAggregator(store)
        batch = await _running_batch(store, 2)
        t1, _ = await store.list_trades_by_batch(batch.batch_id)
        await _finish(store, t1, TradeStatus.SUCCESS)

        assert await progress.derive_final_status(batch.batch_id) is None
        assert (await store.get_batch(batch.batch_id)).status == BatchStatus.RUNNING

    async def test_one_failure_of_three_is_partial_success(self, store):
        progress = ProgressAggregator(store)
        batch = await _running_batch(store, 3)
        t1, t2, t3 = await store.list_trades_by_batch(batch.batch_id)
        await _finish(store, t1, TradeStatus.SUCCESS)
        await _finish(store, t2, TradeStatus.FAILED)
        await _finish(store, t3, TradeStatus.SUCCESS)

        await progress.recompute(batch.batch_id)
        assert await progress.derive_final_status(batch.batch_id) == BatchStatus.PARTIAL_SUCCESS

        final = await store.get_batch(batch.batch_id)
        assert final.status == BatchStatus.PARTIAL_SUCCESS
        assert final.processed_trades == 3
        assert final.failed_trades == 1
        assert final.completed_at is not None

    async def test_all_failed(self, store):
        progress = ProgressAggregator(store)
        batch = await _running_batch(store, 2)
        for trade in await store.list_trades_by_batch(batch.batch_id):
            await _finish(store, trade, TradeStatus.FAILED)

        await progress.recompute(batch.batch_id)
        assert await progress.derive_final_status(batch.batch_id) == BatchStatus.FAILED

        final = await store.get_batch(batch.batch_id)
        assert final.status == BatchStatus.FAILED
        assert final.failed_trades == 2

    async def test_empty_running_batch_fails(self, store):
        progress = ProgressAggregator(store)
        batch = await _running_batch(store, 0)

        assert await progress.derive_final_status(batch.batch_id) == BatchStatus.FAILED
        assert (await store.get_batch(batch.batch_id)).status == BatchStatus.FAILED

    async def test_terminal_batch_is_left_alone(self, store):
        progress = ProgressAggregator(store)
        batch = await _running_batch(store, 1)
        (trade,) = await store.list_trades_by_batch(batch.batch_id)
        await _finish(store, trade, TradeStatus.SUCCESS)
        await store.transition_batch_status(batch.batch_id, BatchStatus.RUNNING, BatchStatus.CANCELLED)

        # Classification is still reported, but CANCELLED is never overwritten
        assert await progress.derive_final_status(batch.batch_id) == BatchStatus.SUCCESS
        assert (await store.get_batch(batch.batch_id)).status == BatchStatus.CANCELLED
