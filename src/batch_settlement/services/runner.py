"""
Batch Runner.

Top-level orchestration of one batch run:

    IDLE -> LOCKING -> RUNNING -> FINALIZING -> DONE

LOCKING fails fast with RunOutcome.BUSY. RUNNING drains the PENDING trades
through a bounded pool of asyncio workers, each gated by the concurrency
limiter. FINALIZING recomputes progress and applies the final status. The
lock is released on every exit path, including persistence failures.
"""

from __future__ import annotations

import asyncio
import time
import uuid

from batch_settlement.domain.errors import AdmissionTimeoutError, BatchNotFoundError
from batch_settlement.domain.models import (
    DEFAULT_MAX_CONCURRENT_TRADES,
    Batch,
    BatchStatus,
    NotificationType,
    RunOutcome,
    RunResult,
    Trade,
    TradeStatus,
    utc_now,
)
from batch_settlement.domain.rules import BATCH_TABLE, TRADE_TABLE
from batch_settlement.observability.logging import LOG_TAG_BATCH, get_logger
from batch_settlement.observability.metrics import record_batch_run, update_in_flight
from batch_settlement.ports.store import BatchStorePort
from batch_settlement.services.concurrency import ConcurrencyLimiter
from batch_settlement.services.executor import TradeExecutor
from batch_settlement.services.locking import LockManager
from batch_settlement.services.notifications.emitter import NotificationEmitter
from batch_settlement.services.progress import ProgressAggregator

logger = get_logger(__name__)

MSG_ADMISSION_TIMEOUT = "admission timeout"
MSG_INTERRUPTED = "interrupted: previous run lost its lock"

# Left behind by a run that died mid-trade; nobody else can be working on them once we hold the lock
ORPHANED_TRADE_STATUSES = (TradeStatus.QUOTED, TradeStatus.EXECUTING)


def run_holder_id(holder_id: str) -> str:
    """Lease holder for a single run of holder_id."""
    return f"{holder_id}:{uuid.uuid4().hex[:8]}"


class BatchRunner:
    def __init__(
        self,
        store: BatchStorePort,
        locks: LockManager,
        limiter: ConcurrencyLimiter,
        executor: TradeExecutor,
        progress: ProgressAggregator,
        emitter: NotificationEmitter,
        default_max_concurrent: int = DEFAULT_MAX_CONCURRENT_TRADES,
    ):
        self.store = store
        self.locks = locks
        self.limiter = limiter
        self.executor = executor
        self.progress = progress
        self.emitter = emitter
        self.default_max_concurrent = default_max_concurrent

    async def run(self, batch_id: int, holder_id: str) -> RunResult:
        """
        Run a batch to completion under a lease owned by this call alone.

        The lease holder is holder_id plus a per-run suffix, so a second run of
        the same batch from the same process is BUSY instead of re-entering
        the lease. Holding the lease therefore means no other live run exists.

        Raises:
            BatchNotFoundError: unknown batch id.
            PersistenceError: storage failure (the lock is still released).
        """
        batch = await self._require_batch(batch_id)
        if batch.status.is_terminal():
            record_batch_run(RunOutcome.ALREADY_TERMINAL.value)
            return RunResult(batch_id, RunOutcome.ALREADY_TERMINAL, batch.status, "Batch already finished")

        holder_id = run_holder_id(holder_id)
        if not await self.locks.acquire(batch_id, holder_id):
            record_batch_run(RunOutcome.BUSY.value)
            return RunResult(batch_id, RunOutcome.BUSY, batch.status, "Batch is locked by another worker")

        started = time.monotonic()
        try:
            result = await self._run_locked(batch_id, holder_id)
        finally:
            await self.locks.release(batch_id, holder_id)
            update_in_flight(batch_id, 0)

        record_batch_run(
            result.outcome.value,
            result.status.value if result.status else "",
            time.monotonic() - started,
        )
        return result

    # =========================================================================
    # Phases
    # =========================================================================

    async def _run_locked(self, batch_id: int, holder_id: str) -> RunResult:
        # Fresh read: state may have changed between the first read and the lock
        batch = await self._require_batch(batch_id)
        if batch.status.is_terminal():
            return RunResult(batch_id, RunOutcome.ALREADY_TERMINAL, batch.status, "Batch already finished")

        if batch.status == BatchStatus.PENDING:
            if not await self._start(batch):
                batch = await self._require_batch(batch_id)
                return self._stopped_result(batch)
        else:
            logger.warning(
                f"{LOG_TAG_BATCH} Resuming batch {batch_id} left RUNNING by a previous holder",
                extra={"batch_id": batch_id, "holder_id": holder_id},
            )
            await self._fail_orphaned_trades(batch_id)

        # We hold the lock, so any in-flight count is stale
        await self.store.reset_concurrency(batch_id)

        pending = await self.store.list_trades_by_batch(batch_id, [TradeStatus.PENDING])
        if pending:
            await self._drain(batch, pending, holder_id)

        return await self._finalize(batch_id)

    async def _start(self, batch: Batch) -> bool:
        BATCH_TABLE.transition(batch.status, BatchStatus.RUNNING)
        started = await self.store.transition_batch_status(
            batch.batch_id, BatchStatus.PENDING, BatchStatus.RUNNING, {"started_at": utc_now()}
        )
        if not started:
            return False

        logger.info(
            f"{LOG_TAG_BATCH} Batch {batch.batch_id} running ({batch.total_trades} trades)",
            extra={"batch_id": batch.batch_id, "status": BatchStatus.RUNNING.value},
        )
        await self.emitter.emit(batch.batch_id, NotificationType.STATUS_CHANGE)
        await self.emitter.emit(batch.batch_id, NotificationType.STARTED)
        return True

    async def _fail_orphaned_trades(self, batch_id: int) -> None:
        for trade in await self.store.list_trades_by_batch(batch_id, ORPHANED_TRADE_STATUSES):
            TRADE_TABLE.transition(trade.status, TradeStatus.FAILED)
            await self.store.transition_trade(
                trade.trade_id, trade.status, TradeStatus.FAILED, {"status_message": MSG_INTERRUPTED}
            )

    async def _drain(self, batch: Batch, pending: list[Trade], holder_id: str) -> None:
        """Run pending trades through a bounded worker pool."""
        batch_id = batch.batch_id
        queue: asyncio.Queue[Trade] = asyncio.Queue()
        for trade in pending:
            queue.put_nowait(trade)

        stop = asyncio.Event()
        in_flight = 0

        async def should_stop() -> bool:
            if stop.is_set():
                return True
            if await self._is_cancelled(batch_id):
                stop.set()
            return stop.is_set()

        async def worker() -> None:
            nonlocal in_flight
            while not stop.is_set():
                try:
                    trade = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return

                if await should_stop():
                    return

                # Refresh our lease (re-entrant acquire); fails only if another holder took over
                if not await self.locks.acquire(batch_id, holder_id):
                    logger.error(
                        f"{LOG_TAG_BATCH} Lost lock on batch {batch_id}, stopping",
                        extra={"batch_id": batch_id, "holder_id": holder_id},
                    )
                    stop.set()
                    return

                try:
                    admitted = await self.limiter.enter(batch_id, should_stop=should_stop)
                except AdmissionTimeoutError as e:
                    logger.error(f"{e.message}; failing trade {trade.trade_id}", extra={"batch_id": batch_id})
                    TRADE_TABLE.transition(TradeStatus.PENDING, TradeStatus.FAILED)
                    if await self.store.transition_trade(
                        trade.trade_id, TradeStatus.PENDING, TradeStatus.FAILED, {"status_message": MSG_ADMISSION_TIMEOUT}
                    ):
                        await self.progress.recompute(batch_id)
                    continue
                if not admitted:
                    return

                in_flight += 1
                update_in_flight(batch_id, in_flight)
                try:
                    await self.executor.execute(trade)
                finally:
                    in_flight -= 1
                    update_in_flight(batch_id, in_flight)
                    await self.limiter.leave(batch_id)

        pool_size = min(batch.concurrency_cap(self.default_max_concurrent), len(pending))
        tasks = [asyncio.create_task(worker(), name=f"batch_{batch_id}_worker_{i}") for i in range(pool_size)]
        try:
            await asyncio.gather(*tasks)
        finally:
            # First failure propagates; the rest of the pool is torn down
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _finalize(self, batch_id: int) -> RunResult:
        await self.progress.recompute(batch_id)
        before = await self._require_batch(batch_id)
        await self.progress.derive_final_status(batch_id)
        batch = await self._require_batch(batch_id)

        if batch.status == BatchStatus.CANCELLED:
            return self._stopped_result(batch)

        if not batch.status.is_terminal():
            # Trades still open (lock lost mid-run); another holder picks it up
            return RunResult(batch_id, RunOutcome.COMPLETED, batch.status, "Run stopped before all trades finished")

        if before.status != batch.status:
            await self.emitter.emit(batch_id, NotificationType.STATUS_CHANGE)
            await self.emitter.emit(batch_id, NotificationType.COMPLETION)

        return RunResult(
            batch_id,
            RunOutcome.COMPLETED,
            batch.status,
            f"Processed {batch.processed_trades}/{batch.total_trades} trades, {batch.failed_trades} failed",
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _require_batch(self, batch_id: int) -> Batch:
        batch = await self.store.get_batch(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    async def _is_cancelled(self, batch_id: int) -> bool:
        batch = await self.store.get_batch(batch_id)
        return batch is None or batch.status == BatchStatus.CANCELLED

    @staticmethod
    def _stopped_result(batch: Batch) -> RunResult:
        if batch.status == BatchStatus.CANCELLED:
            return RunResult(batch.batch_id, RunOutcome.CANCELLED, batch.status, "Batch was cancelled")
        return RunResult(batch.batch_id, RunOutcome.ALREADY_TERMINAL, batch.status, "Batch already finished")
