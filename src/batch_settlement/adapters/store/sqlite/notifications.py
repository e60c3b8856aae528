"""
Append-only batch notification records.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from batch_settlement.adapters.store.sqlite.utils import _iso, _parse_dt
from batch_settlement.domain.models import Notification, NotificationType, utc_now


def _row_to_notification(self, row: Any) -> Notification:
    data = dict(row)
    return Notification(
        notification_id=int(data["id"]),
        batch_id=int(data["batch_id"]),
        event_type=NotificationType(data["type"]),
        payload=json.loads(data["data"]) if data["data"] else {},
        created_at=_parse_dt(data["created_at"]) or utc_now(),
        delivered_at=_parse_dt(data["delivered_at"]),
    )


async def append_notification(self, notification: Notification) -> int:
    async with self._transaction() as conn:
        cursor = await conn.execute(
            """
            INSERT INTO batch_notifications (batch_id, type, data, created_at, delivered_at)
            VALUES (?, ?, ?, ?, NULL)
            """,
            (
                notification.batch_id,
                notification.event_type.value,
                json.dumps(notification.payload, default=str),
                _iso(notification.created_at),
            ),
        )
        return int(cursor.lastrowid)


async def list_notifications(self, batch_id: int) -> list[Notification]:
    rows = await self._fetch_all(
        "SELECT * FROM batch_notifications WHERE batch_id = ? ORDER BY id ASC",
        (batch_id,),
    )
    return [self._row_to_notification(r) for r in rows]


async def list_pending_notifications(self, limit: int = 50) -> list[Notification]:
    rows = await self._fetch_all(
        "SELECT * FROM batch_notifications WHERE delivered_at IS NULL ORDER BY created_at ASC, id ASC LIMIT ?",
        (limit,),
    )
    return [self._row_to_notification(r) for r in rows]


async def mark_notification_delivered(self, notification_id: int, delivered_at: datetime) -> bool:
    async with self._transaction() as conn:
        cursor = await conn.execute(
            "UPDATE batch_notifications SET delivered_at = ? WHERE id = ? AND delivered_at IS NULL",
            (_iso(delivered_at), notification_id),
        )
        return cursor.rowcount > 0
