"""
Lock Manager.

Time-boxed exclusive lease per batch, stored in the batch row itself.
Failing to acquire is a normal "busy" signal, never an exception.

Lease expiry is wall-clock based; clock skew between machines is an accepted
risk and no fencing token is issued.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from batch_settlement.domain.models import Batch, utc_now
from batch_settlement.observability.logging import LOG_TAG_LOCK, get_logger
from batch_settlement.observability.metrics import record_lock_attempt, record_locks_swept
from batch_settlement.ports.store import BatchStorePort

logger = get_logger(__name__)

DEFAULT_LOCK_TTL_SECONDS = 300


class LockManager:
    """Acquire, refresh, release and sweep batch leases."""

    def __init__(
        self,
        store: BatchStorePort,
        ttl_seconds: float = DEFAULT_LOCK_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def acquire(self, batch_id: int, holder_id: str, ttl_seconds: float | None = None) -> bool:
        """
        Take the lease, or refresh it if holder_id already holds it.

        Returns False if another holder has a live lease.
        """
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        now = self._clock()
        acquired = await self.store.acquire_lock(batch_id, holder_id, now, now + timedelta(seconds=ttl))
        record_lock_attempt(acquired)

        if acquired:
            logger.debug(
                f"{LOG_TAG_LOCK} Batch {batch_id} locked by {holder_id} (ttl={ttl}s)",
                extra={"batch_id": batch_id, "holder_id": holder_id},
            )
        else:
            logger.debug(
                f"{LOG_TAG_LOCK} Batch {batch_id} busy, {holder_id} did not get the lock",
                extra={"batch_id": batch_id, "holder_id": holder_id},
            )
        return acquired

    async def release(self, batch_id: int, holder_id: str) -> bool:
        """Clear the lease only if holder_id holds it."""
        released = await self.store.release_lock(batch_id, holder_id)
        if released:
            logger.debug(
                f"{LOG_TAG_LOCK} Batch {batch_id} released by {holder_id}",
                extra={"batch_id": batch_id, "holder_id": holder_id},
            )
        return released

    async def sweep_expired(self) -> int:
        """Clear every expired lease regardless of holder."""
        count = await self.store.sweep_expired_locks(self._clock())
        record_locks_swept(count)
        return count

    async def list_locked(self) -> list[Batch]:
        return await self.store.list_locked_batches(self._clock())
