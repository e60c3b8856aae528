"""
Batch CRUD, status compare-and-set and queue selection.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from batch_settlement.adapters.store.sqlite.utils import (
    _build_set_clause,
    _iso,
    _parse_dt,
    _placeholders,
)
from batch_settlement.domain.errors import PersistenceError
from batch_settlement.domain.models import (
    Batch,
    BatchStatus,
    LockInfo,
    NewTrade,
    TradeStatus,
    utc_now,
)
from batch_settlement.domain.rules import BATCH_TABLE
from batch_settlement.observability.logging import get_logger

logger = get_logger(__name__)

BATCH_UPDATABLE_COLUMNS = frozenset({
    "processed_trades",
    "failed_trades",
    "priority",
    "queue_position",
    "max_concurrent_trades",
    "started_at",
    "completed_at",
})


BATCH_SORT_COLUMNS = frozenset({"created_at", "updated_at", "status", "priority", "total_trades", "processed_trades"})


def _row_to_batch(self, row: Any) -> Batch:
    """Convert a database row to a Batch object."""
    data = dict(row)

    lock = None
    if data.get("lock_holder"):
        lock = LockInfo(
            holder_id=data["lock_holder"],
            acquired_at=_parse_dt(data["lock_acquired_at"]) or utc_now(),
            expires_at=_parse_dt(data["lock_expires_at"]) or utc_now(),
        )

    return Batch(
        batch_id=int(data["id"]),
        batch_uid=data["batch_uid"],
        status=BATCH_TABLE.coerce(data["status"]),
        total_trades=int(data["total_trades"] or 0),
        processed_trades=int(data["processed_trades"] or 0),
        failed_trades=int(data["failed_trades"] or 0),
        priority=int(data["priority"]),
        queue_position=int(data["queue_position"] or 0),
        max_concurrent_trades=data["max_concurrent_trades"],
        current_concurrent_trades=int(data["current_concurrent_trades"] or 0),
        lock=lock,
        started_at=_parse_dt(data["started_at"]),
        completed_at=_parse_dt(data["completed_at"]),
        created_at=_parse_dt(data["created_at"]) or utc_now(),
        updated_at=_parse_dt(data["updated_at"]) or utc_now(),
    )


async def create_batch(
    self,
    trades: Sequence[NewTrade],
    *,
    batch_uid: str,
    priority: int,
    max_concurrent_trades: int | None,
    queue_position: int | None = None,
) -> Batch:
    """Insert the batch row and all of its trades in one transaction."""
    now = _iso(utc_now())

    async with self._transaction() as conn:
        if queue_position is None:
            cursor = await conn.execute("SELECT COALESCE(MAX(queue_position), 0) + 1 FROM batches")
            row = await cursor.fetchone()
            queue_position = int(row[0])

        cursor = await conn.execute(
            """
            INSERT INTO batches (
                batch_uid, status, total_trades, priority, queue_position,
                max_concurrent_trades, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                batch_uid,
                BatchStatus.PENDING.value,
                len(trades),
                priority,
                queue_position,
                max_concurrent_trades,
                now,
                now,
            ),
        )
        batch_id = int(cursor.lastrowid)

        await conn.executemany(
            """
            INSERT INTO trades (batch_id, client_ref, amount, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [(batch_id, t.client_ref, str(t.amount), TradeStatus.PENDING.value, now, now) for t in trades],
        )

    logger.debug(f"Created batch {batch_id} ({batch_uid}) with {len(trades)} trades")
    batch = await self.get_batch(batch_id)
    if batch is None:
        raise PersistenceError(f"Batch {batch_id} vanished after insert", batch_id=batch_id)
    return batch


async def get_batch(self, batch_id: int) -> Batch | None:
    row = await self._fetch_one("SELECT * FROM batches WHERE id = ?", (batch_id,))
    return self._row_to_batch(row) if row else None


async def get_batch_by_uid(self, batch_uid: str) -> Batch | None:
    row = await self._fetch_one("SELECT * FROM batches WHERE batch_uid = ?", (batch_uid,))
    return self._row_to_batch(row) if row else None


async def update_batch(self, batch_id: int, updates: dict[str, Any]) -> bool:
    """Update non-status batch fields. Status changes go through transition_batch_status."""
    if not updates:
        return False

    clause, params = _build_set_clause(updates, BATCH_UPDATABLE_COLUMNS)
    async with self._transaction() as conn:
        cursor = await conn.execute(
            f"UPDATE batches SET {clause}, updated_at = ? WHERE id = ?",
            (*params, _iso(utc_now()), batch_id),
        )
        return cursor.rowcount > 0


async def recompute_batch_counters(self, batch_id: int) -> Batch | None:
    marks, terminal = _placeholders(s for s in TradeStatus if s.is_terminal())
    async with self._transaction() as conn:
        cursor = await conn.execute(
            f"""
            UPDATE batches
            SET processed_trades = (
                    SELECT COUNT(*) FROM trades WHERE trades.batch_id = batches.id AND trades.status IN ({marks})
                ),
                failed_trades = (
                    SELECT COUNT(*) FROM trades WHERE trades.batch_id = batches.id AND trades.status = ?
                ),
                updated_at = ?
            WHERE id = ?
            """,
            (*terminal, TradeStatus.FAILED.value, _iso(utc_now()), batch_id),
        )
        found = cursor.rowcount > 0

    return await self.get_batch(batch_id) if found else None


async def transition_batch_status(
    self,
    batch_id: int,
    expected: BatchStatus,
    new_status: BatchStatus,
    updates: dict[str, Any] | None = None,
) -> bool:
    clause, params = _build_set_clause(updates or {}, BATCH_UPDATABLE_COLUMNS)
    extra = f", {clause}" if clause else ""

    async with self._transaction() as conn:
        cursor = await conn.execute(
            f"UPDATE batches SET status = ?, updated_at = ?{extra} WHERE id = ? AND status = ?",
            (new_status.value, _iso(utc_now()), *params, batch_id, expected.value),
        )
        return cursor.rowcount > 0


async def list_batches(
    self,
    statuses: Iterable[BatchStatus] | None = None,
    limit: int | None = None,
    newest_first: bool = False,
) -> list[Batch]:
    sql = "SELECT * FROM batches"
    params: list[Any] = []

    if statuses is not None:
        marks, values = _placeholders(statuses)
        if not values:
            return []
        sql += f" WHERE status IN ({marks})"
        params.extend(values)

    if newest_first:
        sql += " ORDER BY COALESCE(completed_at, updated_at) DESC, id DESC"
    else:
        sql += " ORDER BY created_at ASC, id ASC"

    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)

    rows = await self._fetch_all(sql, params)
    return [self._row_to_batch(r) for r in rows]


async def search_batches(
    self,
    status: BatchStatus | None = None,
    created_from: datetime | None = None,
    created_before: datetime | None = None,
    sort_by: str = "created_at",
    descending: bool = True,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Batch], int]:
    """
    One page of batches matching the filters, plus the total number of matches.

    Raises:
        ValueError: sort_by is not a sortable column.
    """
    if sort_by not in BATCH_SORT_COLUMNS:
        raise ValueError(f"Cannot sort batches by {sort_by!r}")

    conditions: list[str] = []
    params: list[Any] = []
    if status is not None:
        conditions.append("status = ?")
        params.append(status.value)
    if created_from is not None:
        conditions.append("created_at >= ?")
        params.append(_iso(created_from))
    if created_before is not None:
        conditions.append("created_at < ?")
        params.append(_iso(created_before))
    where = f" WHERE {' AND '.join(conditions)}" if conditions else ""

    total_row = await self._fetch_one(f"SELECT COUNT(*) AS n FROM batches{where}", params)
    direction = "DESC" if descending else "ASC"
    rows = await self._fetch_all(
        f"SELECT * FROM batches{where} ORDER BY {sort_by} {direction}, id {direction} LIMIT ? OFFSET ?",
        [*params, limit, offset],
    )
    total = int(total_row["n"]) if total_row else 0
    return [self._row_to_batch(r) for r in rows], total


async def delete_batch(self, batch_id: int) -> bool:
    """Delete a batch and cascade to its trades and notifications."""
    async with self._transaction() as conn:
        await conn.execute("DELETE FROM batch_notifications WHERE batch_id = ?", (batch_id,))
        await conn.execute("DELETE FROM trades WHERE batch_id = ?", (batch_id,))
        cursor = await conn.execute("DELETE FROM batches WHERE id = ?", (batch_id,))
        return cursor.rowcount > 0


async def next_eligible_batch(self, now: datetime) -> Batch | None:
    row = await self._fetch_one(
        """
        SELECT * FROM batches
        WHERE status = ?
          AND (lock_holder IS NULL OR lock_expires_at IS NULL OR lock_expires_at <= ?)
        ORDER BY priority DESC, queue_position ASC, created_at ASC, id ASC
        LIMIT 1
        """,
        (BatchStatus.PENDING.value, _iso(now)),
    )
    return self._row_to_batch(row) if row else None
