"""
Batch Queue.

Pure selection of the next runnable batch; callers still have to win the
lock before acting on the result.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from batch_settlement.domain.errors import BatchNotFoundError
from batch_settlement.domain.models import utc_now
from batch_settlement.observability.logging import get_logger
from batch_settlement.ports.store import BatchStorePort

logger = get_logger(__name__)


class BatchQueue:
    """Priority ordering: priority DESC, queue_position ASC, created_at ASC."""

    def __init__(
        self,
        store: BatchStorePort,
        min_priority: int = 1,
        max_priority: int = 10,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.min_priority = min_priority
        self.max_priority = max_priority
        self._clock = clock

    def clamp(self, priority: int) -> int:
        return max(self.min_priority, min(self.max_priority, int(priority)))

    async def next_eligible(self) -> int | None:
        """Id of the best PENDING batch without a live lock, or None."""
        batch = await self.store.next_eligible_batch(self._clock())
        return batch.batch_id if batch else None

    async def set_priority(self, batch_id: int, priority: int) -> int:
        """Persist the clamped priority and return the value actually stored."""
        clamped = self.clamp(priority)
        if not await self.store.update_batch(batch_id, {"priority": clamped}):
            raise BatchNotFoundError(batch_id)

        if clamped != priority:
            logger.info(f"Priority {priority} for batch {batch_id} clamped to {clamped}")
        return clamped
