"""
Minimal client registry used to resolve a trade's client.
"""

from __future__ import annotations

from batch_settlement.adapters.store.sqlite.utils import _iso
from batch_settlement.domain.models import Client, utc_now


async def get_client(self, client_ref: str) -> Client | None:
    row = await self._fetch_one("SELECT * FROM clients WHERE client_ref = ?", (client_ref,))
    if not row:
        return None
    return Client(
        client_ref=row["client_ref"],
        name=row["name"] or "",
        account_number=row["account_number"] or "",
        active=bool(row["active"]),
    )


async def upsert_client(self, client: Client) -> None:
    now = _iso(utc_now())
    async with self._transaction() as conn:
        await conn.execute(
            """
            INSERT INTO clients (client_ref, name, account_number, active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(client_ref) DO UPDATE SET
                name = excluded.name,
                account_number = excluded.account_number,
                active = excluded.active,
                updated_at = excluded.updated_at
            """,
            (client.client_ref, client.name, client.account_number, int(client.active), now, now),
        )
