"""
SQLite batch store package (facade).
"""

from __future__ import annotations

from batch_settlement.adapters.store.sqlite.store import SQLiteBatchStore

__all__ = ["SQLiteBatchStore"]
