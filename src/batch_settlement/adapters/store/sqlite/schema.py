"""
SQLite schema and adapters.
"""

from __future__ import annotations

import sqlite3
from decimal import Decimal


def _adapt_decimal(value: Decimal) -> str:
    """Convert Decimal to string for SQLite storage."""
    return str(value)


def _convert_decimal(data: bytes) -> Decimal:
    """Convert SQLite string back to Decimal."""
    return Decimal(data.decode("utf-8"))


# Register adapters globally
sqlite3.register_adapter(Decimal, _adapt_decimal)
sqlite3.register_converter("DECIMAL", _convert_decimal)


SCHEMA_VERSION = 3

# Timestamps are stored as fixed-width UTC ISO strings, so lexicographic
# comparison in SQL matches chronological order.
SCHEMA_SQL = """
-- Clients (minimal registry used for trade client resolution)
CREATE TABLE IF NOT EXISTS clients (
    client_ref TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    account_number TEXT NOT NULL DEFAULT '',
    active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Batches
CREATE TABLE IF NOT EXISTS batches (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    batch_uid TEXT NOT NULL UNIQUE,
    status TEXT NOT NULL DEFAULT 'PENDING',
    total_trades INTEGER NOT NULL DEFAULT 0,
    processed_trades INTEGER NOT NULL DEFAULT 0,
    failed_trades INTEGER NOT NULL DEFAULT 0,

    -- Queue
    priority INTEGER NOT NULL DEFAULT 5,
    queue_position INTEGER NOT NULL DEFAULT 0,

    -- Concurrency
    max_concurrent_trades INTEGER DEFAULT 5,
    current_concurrent_trades INTEGER NOT NULL DEFAULT 0,

    -- Lease
    lock_holder TEXT,
    lock_acquired_at TEXT,
    lock_expires_at TEXT,

    started_at TEXT,
    completed_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,

    CHECK (failed_trades <= processed_trades AND processed_trades <= total_trades)
);

CREATE INDEX IF NOT EXISTS idx_batches_status ON batches(status);

-- Trades
CREATE TABLE IF NOT EXISTS trades (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    batch_id INTEGER NOT NULL REFERENCES batches(id) ON DELETE CASCADE,
    client_ref TEXT NOT NULL,
    amount DECIMAL NOT NULL DEFAULT '0',
    status TEXT NOT NULL DEFAULT 'PENDING',
    status_message TEXT NOT NULL DEFAULT '',

    -- Quote
    quote_id TEXT,
    quote_rate DECIMAL,

    -- Settlement
    settlement_id TEXT,
    settlement_reference TEXT,

    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_trades_batch_status ON trades(batch_id, status);

-- Batch notifications (append-only, only delivered_at is stamped later)
CREATE TABLE IF NOT EXISTS batch_notifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    batch_id INTEGER NOT NULL REFERENCES batches(id) ON DELETE CASCADE,
    type TEXT NOT NULL,
    data TEXT NOT NULL,
    created_at TEXT NOT NULL,
    delivered_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_batch_notifications_batch ON batch_notifications(batch_id);
CREATE INDEX IF NOT EXISTS idx_batch_notifications_delivered ON batch_notifications(delivered_at);
"""

# Indexes over columns that older databases may only gain through migrations.
POST_MIGRATION_SQL = """
CREATE INDEX IF NOT EXISTS idx_batches_queue ON batches(priority DESC, queue_position ASC, created_at ASC);
CREATE INDEX IF NOT EXISTS idx_batches_lock ON batches(lock_holder, lock_expires_at);
"""
