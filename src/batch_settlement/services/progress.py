"""
Progress Aggregator.

Recomputes batch counters from the trade rows (the source of truth) and
applies the derived final status once every trade is terminal.
"""

from __future__ import annotations

from batch_settlement.domain.errors import BatchNotFoundError
from batch_settlement.domain.models import Batch, BatchProgress, BatchStatus, utc_now
from batch_settlement.domain.rules import BATCH_TABLE, classify_trade_counts
from batch_settlement.observability.logging import LOG_TAG_BATCH, get_logger
from batch_settlement.ports.store import BatchStorePort

logger = get_logger(__name__)


class ProgressAggregator:
    def __init__(self, store: BatchStorePort):
        self.store = store

    async def _require_batch(self, batch_id: int) -> Batch:
        batch = await self.store.get_batch(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    async def recompute(self, batch_id: int) -> BatchProgress:
        """
        Count terminal trades as processed and FAILED trades as failed, then persist.

        failed <= processed <= total holds by construction: FAILED is a
        terminal status and every counted trade belongs to the batch. Counts are
        taken and written in one statement.
        """
        batch = await self.store.recompute_batch_counters(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return BatchProgress.from_batch(batch)

    async def derive_final_status(self, batch_id: int) -> BatchStatus | None:
        """
        Classify and apply the final status.

        Returns None while non-terminal trades remain. Otherwise returns the
        derived status; applying it is a silent no-op when the batch is
        already terminal (or was moved concurrently).
        """
        batch = await self._require_batch(batch_id)
        counts = await self.store.count_trades_by_status(batch_id)

        if any(n for status, n in counts.items() if not status.is_terminal()):
            return None

        final = classify_trade_counts(counts)

        if not BATCH_TABLE.is_valid(batch.status, final):
            logger.debug(f"Batch {batch_id} is {batch.status.value}, final status {final.value} not applied")
            return final

        applied = await self.store.transition_batch_status(
            batch_id, batch.status, final, {"completed_at": utc_now()}
        )
        if applied:
            logger.info(
                f"{LOG_TAG_BATCH} Batch {batch_id} finished: {final.value}",
                extra={"batch_id": batch_id, "status": final.value},
            )
        return final

    async def snapshot(self, batch_id: int) -> BatchProgress:
        """Progress as currently persisted (no recompute)."""
        return BatchProgress.from_batch(await self._require_batch(batch_id))
