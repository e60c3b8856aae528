"""
Trade reads, status compare-and-set and per-batch aggregates.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Any

from batch_settlement.adapters.store.sqlite.utils import (
    _build_set_clause,
    _iso,
    _maybe_decimal,
    _parse_dt,
    _placeholders,
)
from batch_settlement.domain.models import Trade, TradeStatus, utc_now
from batch_settlement.domain.rules import TRADE_TABLE

TRADE_UPDATABLE_COLUMNS = frozenset({
    "status_message",
    "quote_id",
    "quote_rate",
    "settlement_id",
    "settlement_reference",
})


def _row_to_trade(self, row: Any) -> Trade:
    """Convert a database row to a Trade object."""
    data = dict(row)
    return Trade(
        trade_id=int(data["id"]),
        batch_id=int(data["batch_id"]),
        client_ref=data["client_ref"],
        amount=_maybe_decimal(data["amount"]) or Decimal("0"),
        status=TRADE_TABLE.coerce(data["status"]),
        status_message=data["status_message"] or "",
        quote_id=data["quote_id"],
        quote_rate=_maybe_decimal(data["quote_rate"]),
        settlement_id=data["settlement_id"],
        settlement_reference=data["settlement_reference"],
        created_at=_parse_dt(data["created_at"]) or utc_now(),
        updated_at=_parse_dt(data["updated_at"]) or utc_now(),
    )


async def get_trade(self, trade_id: int) -> Trade | None:
    row = await self._fetch_one("SELECT * FROM trades WHERE id = ?", (trade_id,))
    return self._row_to_trade(row) if row else None


async def list_trades_by_batch(
    self,
    batch_id: int,
    statuses: Iterable[TradeStatus] | None = None,
) -> list[Trade]:
    sql = "SELECT * FROM trades WHERE batch_id = ?"
    params: list[Any] = [batch_id]

    if statuses is not None:
        marks, values = _placeholders(statuses)
        if not values:
            return []
        sql += f" AND status IN ({marks})"
        params.extend(values)

    sql += " ORDER BY id ASC"
    rows = await self._fetch_all(sql, params)
    return [self._row_to_trade(r) for r in rows]


async def transition_trade(
    self,
    trade_id: int,
    expected: TradeStatus,
    new_status: TradeStatus,
    updates: dict[str, Any] | None = None,
) -> bool:
    clause, params = _build_set_clause(updates or {}, TRADE_UPDATABLE_COLUMNS)
    extra = f", {clause}" if clause else ""

    async with self._transaction() as conn:
        cursor = await conn.execute(
            f"UPDATE trades SET status = ?, updated_at = ?{extra} WHERE id = ? AND status = ?",
            (new_status.value, _iso(utc_now()), *params, trade_id, expected.value),
        )
        return cursor.rowcount > 0


async def cancel_open_trades(
    self,
    batch_id: int,
    statuses: Iterable[TradeStatus],
    message: str,
) -> int:
    marks, values = _placeholders(statuses)
    if not values:
        return 0

    async with self._transaction() as conn:
        cursor = await conn.execute(
            f"""
            UPDATE trades SET status = ?, status_message = ?, updated_at = ?
            WHERE batch_id = ? AND status IN ({marks})
            """,
            (TradeStatus.CANCELLED.value, message, _iso(utc_now()), batch_id, *values),
        )
        return cursor.rowcount


async def count_trades_by_status(self, batch_id: int) -> dict[TradeStatus, int]:
    rows = await self._fetch_all(
        "SELECT status, COUNT(*) AS n FROM trades WHERE batch_id = ? GROUP BY status",
        (batch_id,),
    )
    counts = dict.fromkeys(TradeStatus, 0)
    for row in rows:
        counts[TRADE_TABLE.coerce(row["status"])] = int(row["n"])
    return counts


async def summarize_trades(self, batch_id: int) -> dict[str, Any]:
    """Counts by status plus total amount (summed as Decimal)."""
    counts = await self.count_trades_by_status(batch_id)
    rows = await self._fetch_all("SELECT amount FROM trades WHERE batch_id = ?", (batch_id,))
    total_amount = sum((_maybe_decimal(r["amount"]) or Decimal("0") for r in rows), Decimal("0"))

    return {
        "total": sum(counts.values()),
        "success": counts[TradeStatus.SUCCESS],
        "failed": counts[TradeStatus.FAILED],
        "cancelled": counts[TradeStatus.CANCELLED],
        "pending": sum(n for status, n in counts.items() if not status.is_terminal()),
        "total_amount": total_amount,
    }


async def list_failed_trade_messages(self, batch_id: int) -> list[tuple[str, int]]:
    rows = await self._fetch_all(
        """
        SELECT status_message, COUNT(*) AS n FROM trades
        WHERE batch_id = ? AND status = ?
        GROUP BY status_message
        ORDER BY n DESC, status_message ASC
        """,
        (batch_id, TradeStatus.FAILED.value),
    )
    return [(r["status_message"] or "", int(r["n"])) for r in rows]
