"""
Batch lease (lock) and concurrency counter primitives.

Every mutation is a single conditional UPDATE, so competing connections
(and processes) resolve races inside SQLite rather than in Python.
"""

from __future__ import annotations

from datetime import datetime

from batch_settlement.adapters.store.sqlite.utils import _iso
from batch_settlement.domain.models import Batch, utc_now
from batch_settlement.observability.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Lease
# =============================================================================


async def acquire_lock(
    self,
    batch_id: int,
    holder_id: str,
    now: datetime,
    expires_at: datetime,
) -> bool:
    now_iso = _iso(now)
    async with self._transaction() as conn:
        cursor = await conn.execute(
            """
            UPDATE batches
            SET lock_holder = ?, lock_acquired_at = ?, lock_expires_at = ?, updated_at = ?
            WHERE id = ?
              AND (lock_holder IS NULL
                   OR lock_expires_at IS NULL
                   OR lock_expires_at <= ?
                   OR lock_holder = ?)
            """,
            (holder_id, now_iso, _iso(expires_at), now_iso, batch_id, now_iso, holder_id),
        )
        return cursor.rowcount > 0


async def release_lock(self, batch_id: int, holder_id: str) -> bool:
    async with self._transaction() as conn:
        cursor = await conn.execute(
            """
            UPDATE batches
            SET lock_holder = NULL, lock_acquired_at = NULL, lock_expires_at = NULL, updated_at = ?
            WHERE id = ? AND lock_holder = ?
            """,
            (_iso(utc_now()), batch_id, holder_id),
        )
        return cursor.rowcount > 0


async def sweep_expired_locks(self, now: datetime) -> int:
    now_iso = _iso(now)
    async with self._transaction() as conn:
        cursor = await conn.execute(
            """
            UPDATE batches
            SET lock_holder = NULL, lock_acquired_at = NULL, lock_expires_at = NULL, updated_at = ?
            WHERE lock_holder IS NOT NULL
              AND (lock_expires_at IS NULL OR lock_expires_at <= ?)
            """,
            (now_iso, now_iso),
        )
        swept = cursor.rowcount

    if swept:
        logger.info(f"Swept {swept} expired batch lock(s)")
    return swept


async def list_locked_batches(self, now: datetime) -> list[Batch]:
    rows = await self._fetch_all(
        """
        SELECT * FROM batches
        WHERE lock_holder IS NOT NULL AND lock_expires_at > ?
        ORDER BY lock_acquired_at ASC, id ASC
        """,
        (_iso(now),),
    )
    return [self._row_to_batch(r) for r in rows]


# =============================================================================
# Concurrency counter
# =============================================================================


async def try_increment_concurrency(self, batch_id: int, default_max: int) -> bool:
    async with self._transaction() as conn:
        cursor = await conn.execute(
            """
            UPDATE batches
            SET current_concurrent_trades = current_concurrent_trades + 1
            WHERE id = ?
              AND current_concurrent_trades < COALESCE(NULLIF(max_concurrent_trades, 0), ?)
            """,
            (batch_id, default_max),
        )
        return cursor.rowcount > 0


async def decrement_concurrency(self, batch_id: int) -> None:
    async with self._transaction() as conn:
        await conn.execute(
            """
            UPDATE batches
            SET current_concurrent_trades = MAX(current_concurrent_trades - 1, 0)
            WHERE id = ?
            """,
            (batch_id,),
        )


async def reset_concurrency(self, batch_id: int) -> None:
    async with self._transaction() as conn:
        await conn.execute("UPDATE batches SET current_concurrent_trades = 0 WHERE id = ?", (batch_id,))
