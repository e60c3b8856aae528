"""
Worker smoke test: a started BatchWorker picks up a staged batch from a
file-backed database, settles it, delivers its notifications and stops cleanly.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from batch_settlement.adapters.store.sqlite import SQLiteBatchStore
from batch_settlement.app.worker import BatchWorker
from batch_settlement.domain.models import BatchStatus, Client
from tests.mocks import make_settings, stage_batch

pytestmark = pytest.mark.integration


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not await predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.02)


async def test_worker_runs_queued_batch(tmp_path):
    settings = make_settings(
        str(tmp_path / "batches.db"),
        gateway={"success_rate": Decimal("1"), "seed": 7},
        worker={
            "poll_interval_seconds": Decimal("0.01"),
            "idle_backoff_seconds": Decimal("0.02"),
            "notification_interval_seconds": Decimal("0.02"),
        },
    )
    staging = SQLiteBatchStore(settings)
    await staging.initialize()
    await staging.upsert_client(Client(client_ref="CL-001", account_number="ACC-0001"))
    batch = await stage_batch(staging, 3)

    worker = BatchWorker(settings, holder_id="smoke_worker")
    await worker.start()
    try:
        async def batch_done() -> bool:
            return (await staging.get_batch(batch.batch_id)).is_terminal()

        async def worker_caught_up() -> bool:
            stats = worker.stats
            return stats["batches_run"] == 1 and stats["notifications_delivered"] == 4

        await _wait_for(batch_done)
        await _wait_for(worker_caught_up)
    finally:
        await worker.stop()

    final = await staging.get_batch(batch.batch_id)
    await staging.close()

    assert final.status == BatchStatus.SUCCESS
    assert final.lock is None
    assert worker.stats["batches_run"] == 1
    assert worker.stats["notifications_delivered"] == 4
    assert worker.stats["errors"] == 0
    assert not worker.is_running
