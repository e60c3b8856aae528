"""
SQLite Batch Store Implementation.

Features:
- WAL mode and busy timeout for multi-process access
- Single-statement conditional updates for locks, counters and status CAS
- Automatic additive schema migrations
- Decimal precision handling
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from batch_settlement.adapters.store.sqlite.batches import (
    _row_to_batch,
    create_batch,
    delete_batch,
    get_batch,
    get_batch_by_uid,
    list_batches,
    search_batches,
    recompute_batch_counters,
    next_eligible_batch,
    transition_batch_status,
    update_batch,
)
from batch_settlement.adapters.store.sqlite.clients import get_client, upsert_client
from batch_settlement.adapters.store.sqlite.locks import (
    acquire_lock,
    decrement_concurrency,
    list_locked_batches,
    release_lock,
    reset_concurrency,
    sweep_expired_locks,
    try_increment_concurrency,
)
from batch_settlement.adapters.store.sqlite.migrations import _apply_schema_migrations, _table_columns
from batch_settlement.adapters.store.sqlite.notifications import (
    _row_to_notification,
    append_notification,
    list_notifications,
    list_pending_notifications,
    mark_notification_delivered,
)
from batch_settlement.adapters.store.sqlite.schema import POST_MIGRATION_SQL, SCHEMA_SQL
from batch_settlement.adapters.store.sqlite.trades import (
    _row_to_trade,
    cancel_open_trades,
    count_trades_by_status,
    get_trade,
    list_failed_trade_messages,
    list_trades_by_batch,
    summarize_trades,
    transition_trade,
)
from batch_settlement.config.settings import Settings
from batch_settlement.domain.errors import PersistenceError
from batch_settlement.observability.logging import get_logger
from batch_settlement.ports.store import BatchStorePort

logger = get_logger(__name__)

MEMORY_PATH = ":memory:"


class SQLiteBatchStore(BatchStorePort):
    """
    SQLite-based batch store.

    One connection per store instance. Every statement on that connection,
    reads included, runs under one asyncio lock: a transaction commits as a
    unit and concurrent readers never share a half-consumed cursor. Other
    processes coordinate through SQLite's own locking.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.db_path = settings.database.path
        self._conn: aiosqlite.Connection | None = None
        self._conn_lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Open the connection and create/migrate the schema."""
        if self._initialized:
            return

        logger.info(f"Initializing SQLite store: {self.db_path}")

        if self.db_path != MEMORY_PATH:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(
                self.db_path,
                detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
            )
            self._conn.row_factory = aiosqlite.Row

            if self.settings.database.wal_mode and self.db_path != MEMORY_PATH:
                await self._conn.execute("PRAGMA journal_mode=WAL")
                await self._conn.execute("PRAGMA synchronous=NORMAL")

            await self._conn.execute(f"PRAGMA busy_timeout={int(self.settings.database.busy_timeout_ms)}")
            await self._conn.execute("PRAGMA foreign_keys=ON")

            await self._conn.executescript(SCHEMA_SQL)
            await self._conn.commit()
            await self._apply_schema_migrations()
            await self._conn.executescript(POST_MIGRATION_SQL)
            await self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to initialize SQLite store at {self.db_path}: {e}") from e

        self._initialized = True
        logger.info("SQLite store initialized")

    async def close(self) -> None:
        if not self._initialized:
            return

        if self._conn:
            await self._conn.close()
            self._conn = None

        self._initialized = False
        logger.info("SQLite store closed")

    # =========================================================================
    # Connection helpers
    # =========================================================================

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise PersistenceError("SQLite store is not initialized")
        return self._conn

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run the enclosed statements as one committed unit, rolling back on failure."""
        conn = self._require_conn()
        async with self._conn_lock:
            try:
                yield conn
                await conn.commit()
            except sqlite3.Error as e:
                await conn.rollback()
                raise PersistenceError(f"SQLite write failed: {e}") from e
            except BaseException:
                await conn.rollback()
                raise

    async def _fetch_all(self, sql: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        """Execute and fetch in one call on the connection thread."""
        conn = self._require_conn()
        async with self._conn_lock:
            try:
                return list(await conn.execute_fetchall(sql, tuple(params)))
            except sqlite3.Error as e:
                raise PersistenceError(f"SQLite read failed: {e}") from e

    async def _fetch_one(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Row | None:
        rows = await self._fetch_all(sql, params)
        return rows[0] if rows else None

    # Attach split-out methods to the class
    _apply_schema_migrations = _apply_schema_migrations
    _table_columns = _table_columns

    _row_to_batch = _row_to_batch
    create_batch = create_batch
    get_batch = get_batch
    get_batch_by_uid = get_batch_by_uid
    update_batch = update_batch
    recompute_batch_counters = recompute_batch_counters
    transition_batch_status = transition_batch_status
    list_batches = list_batches
    search_batches = search_batches
    delete_batch = delete_batch
    next_eligible_batch = next_eligible_batch

    _row_to_trade = _row_to_trade
    get_trade = get_trade
    list_trades_by_batch = list_trades_by_batch
    transition_trade = transition_trade
    cancel_open_trades = cancel_open_trades
    count_trades_by_status = count_trades_by_status
    summarize_trades = summarize_trades
    list_failed_trade_messages = list_failed_trade_messages

    acquire_lock = acquire_lock
    release_lock = release_lock
    sweep_expired_locks = sweep_expired_locks
    list_locked_batches = list_locked_batches
    try_increment_concurrency = try_increment_concurrency
    decrement_concurrency = decrement_concurrency
    reset_concurrency = reset_concurrency

    _row_to_notification = _row_to_notification
    append_notification = append_notification
    list_notifications = list_notifications
    list_pending_notifications = list_pending_notifications
    mark_notification_delivered = mark_notification_delivered

    get_client = get_client
    upsert_client = upsert_client
