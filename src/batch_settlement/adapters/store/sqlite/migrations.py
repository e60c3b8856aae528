"""
SQLite schema migrations.
"""

from __future__ import annotations

from batch_settlement.adapters.store.sqlite.schema import SCHEMA_VERSION
from batch_settlement.observability.logging import get_logger

logger = get_logger(__name__)

# Columns added after the first batches schema shipped: (name, DDL fragment)
BATCH_COLUMN_MIGRATIONS: tuple[tuple[str, str], ...] = (
    ("priority", "INTEGER NOT NULL DEFAULT 5"),
    ("queue_position", "INTEGER NOT NULL DEFAULT 0"),
    ("max_concurrent_trades", "INTEGER DEFAULT 5"),
    ("current_concurrent_trades", "INTEGER NOT NULL DEFAULT 0"),
    ("lock_holder", "TEXT"),
    ("lock_acquired_at", "TEXT"),
    ("lock_expires_at", "TEXT"),
    ("started_at", "TEXT"),
    ("completed_at", "TEXT"),
)

TRADE_COLUMN_MIGRATIONS: tuple[tuple[str, str], ...] = (
    ("quote_id", "TEXT"),
    ("quote_rate", "DECIMAL"),
    ("settlement_id", "TEXT"),
    ("settlement_reference", "TEXT"),
)


async def _table_columns(self, table: str) -> set[str]:
    cursor = await self._conn.execute(f"PRAGMA table_info({table})")
    rows = await cursor.fetchall()
    return {row[1] for row in rows}  # row[1] = column name


async def _apply_schema_migrations(self) -> None:
    """Apply additive schema migrations (safe on existing DBs)."""
    if not self._conn:
        return

    for table, migrations in (("batches", BATCH_COLUMN_MIGRATIONS), ("trades", TRADE_COLUMN_MIGRATIONS)):
        columns = await self._table_columns(table)
        for name, ddl in migrations:
            if name not in columns:
                logger.info(f"Applying schema migration: add {table}.{name}")
                await self._conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}")
        await self._conn.commit()

    cursor = await self._conn.execute("PRAGMA user_version")
    (version,) = await cursor.fetchone()
    if version != SCHEMA_VERSION:
        logger.info(f"Schema version {version} -> {SCHEMA_VERSION}")
        await self._conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")
        await self._conn.commit()
