"""
Integration tests: two workers with separate connections to one database file.

Mirrors the multi-process deployment, where the only shared state is the
SQLite file and every race is resolved by conditional UPDATEs.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from batch_settlement.adapters.store.sqlite import SQLiteBatchStore
from batch_settlement.domain.models import BatchStatus, Client, RunOutcome, TradeStatus, utc_now
from batch_settlement.services.batch_service import BatchService
from tests.mocks import ScriptedGateway, make_settings, stage_batch

pytestmark = pytest.mark.integration


@pytest.fixture
async def two_stores(tmp_path):
    settings = make_settings(str(tmp_path / "shared.db"))
    first = SQLiteBatchStore(settings)
    second = SQLiteBatchStore(settings)
    await first.initialize()
    await second.initialize()
    await first.upsert_client(Client(client_ref="CL-001", account_number="ACC-1"))
    yield settings, first, second
    await first.close()
    await second.close()


async def test_exactly_one_worker_wins_the_lock(two_stores):
    _, first, second = two_stores
    batch = await stage_batch(first, 1)
    now = utc_now()
    expires = now + timedelta(seconds=300)

    results = await asyncio.gather(
        first.acquire_lock(batch.batch_id, "worker_a", now, expires),
        second.acquire_lock(batch.batch_id, "worker_b", now, expires),
    )

    assert sorted(results) == [False, True]
    holder = (await second.get_batch(batch.batch_id)).lock.holder_id
    assert holder == ("worker_a" if results[0] else "worker_b")


async def test_concurrent_runs_process_each_trade_once(two_stores):
    settings, first, second = two_stores
    batch = await stage_batch(first, 6, max_concurrent=2)

    gateway_a = ScriptedGateway(delay=0.01)
    gateway_b = ScriptedGateway(delay=0.01)
    service_a = BatchService(settings, first, gateway_a, holder_id="worker_a")
    service_b = BatchService(settings, second, gateway_b, holder_id="worker_b")

    result_a, result_b = await asyncio.gather(
        service_a.run_batch(batch.batch_id),
        service_b.run_batch(batch.batch_id),
    )

    outcomes = [result_a.outcome, result_b.outcome]
    # The loser either saw the lock (BUSY) or arrived after the winner finished
    assert outcomes.count(RunOutcome.COMPLETED) == 1
    assert set(outcomes) <= {RunOutcome.COMPLETED, RunOutcome.BUSY, RunOutcome.ALREADY_TERMINAL}

    executed = gateway_a.calls_of("execute") + gateway_b.calls_of("execute")
    assert sorted(executed) == sorted(set(executed))
    assert len(executed) == 6

    final = await first.get_batch(batch.batch_id)
    assert final.status == BatchStatus.SUCCESS
    assert final.processed_trades == 6
    assert final.lock is None
    trades = await first.list_trades_by_batch(batch.batch_id)
    assert all(t.status == TradeStatus.SUCCESS for t in trades)
