"""
Batch Store Port: Abstract interface for batch/trade persistence.

The store owns the shared mutable state (batch rows, trade rows, lock fields,
concurrency counters). Every conditional write here is a single atomic
statement so that independent processes can coordinate through it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from batch_settlement.domain.models import (
    Batch,
    BatchStatus,
    Client,
    NewTrade,
    Notification,
    Trade,
    TradeStatus,
)


class BatchStorePort(ABC):
    """
    Abstract interface for batch storage.

    Implementations can be in-memory, SQLite, or any other storage that
    supports atomic conditional updates.
    """

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the store (create tables, etc)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close connections and cleanup."""
        ...

    # =========================================================================
    # Batches
    # =========================================================================

    @abstractmethod
    async def create_batch(
        self,
        trades: Sequence[NewTrade],
        *,
        batch_uid: str,
        priority: int,
        max_concurrent_trades: int | None,
        queue_position: int | None = None,
    ) -> Batch:
        """
        Create a PENDING batch together with its PENDING trades in one transaction.

        queue_position defaults to one past the current maximum.
        """
        ...

    @abstractmethod
    async def get_batch(self, batch_id: int) -> Batch | None:
        """Get a batch by ID."""
        ...

    @abstractmethod
    async def get_batch_by_uid(self, batch_uid: str) -> Batch | None:
        ...

    @abstractmethod
    async def update_batch(self, batch_id: int, updates: dict[str, Any]) -> bool:
        """
        Update non-status batch fields (counters, priority, timestamps).

        Returns:
            True if the batch was found and updated.
        """
        ...

    @abstractmethod
    async def recompute_batch_counters(self, batch_id: int) -> Batch | None:
        """
        Set processed_trades (terminal trades) and failed_trades (FAILED trades)
        from the trade rows in a single statement.

        Returns the refreshed batch, or None if it does not exist.
        """
        ...

    @abstractmethod
    async def transition_batch_status(
        self,
        batch_id: int,
        expected: BatchStatus,
        new_status: BatchStatus,
        updates: dict[str, Any] | None = None,
    ) -> bool:
        """
        Compare-and-set the batch status.

        Applies new_status (plus optional extra fields) only while the stored
        status still equals expected. Returns False if it did not.
        """
        ...

    @abstractmethod
    async def list_batches(
        self,
        statuses: Iterable[BatchStatus] | None = None,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[Batch]:
        ...

    @abstractmethod
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
        Filter by status and creation time window [created_from, created_before).

        Returns one page of batches and the total number of matches.
        """
        ...

    @abstractmethod
    async def delete_batch(self, batch_id: int) -> bool:
        """Delete a batch with its trades and notifications."""
        ...

    # =========================================================================
    # Trades
    # =========================================================================

    @abstractmethod
    async def get_trade(self, trade_id: int) -> Trade | None:
        ...

    @abstractmethod
    async def list_trades_by_batch(
        self,
        batch_id: int,
        statuses: Iterable[TradeStatus] | None = None,
    ) -> list[Trade]:
        """List the batch's trades in insertion order, optionally filtered by status."""
        ...

    @abstractmethod
    async def transition_trade(
        self,
        trade_id: int,
        expected: TradeStatus,
        new_status: TradeStatus,
        updates: dict[str, Any] | None = None,
    ) -> bool:
        """
        Compare-and-set the trade status.

        Terminal trades can never match an expected non-terminal status, which
        keeps their status and settlement fields immutable.
        """
        ...

    @abstractmethod
    async def cancel_open_trades(
        self,
        batch_id: int,
        statuses: Iterable[TradeStatus],
        message: str,
    ) -> int:
        """Move every trade of the batch currently in one of `statuses` to CANCELLED."""
        ...

    @abstractmethod
    async def count_trades_by_status(self, batch_id: int) -> dict[TradeStatus, int]:
        ...

    @abstractmethod
    async def summarize_trades(self, batch_id: int) -> dict[str, Any]:
        """Counts by status plus total amount for reporting."""
        ...

    @abstractmethod
    async def list_failed_trade_messages(self, batch_id: int) -> list[tuple[str, int]]:
        """Failed trades grouped by status_message, most frequent first."""
        ...

    # =========================================================================
    # Locks
    # =========================================================================

    @abstractmethod
    async def acquire_lock(
        self,
        batch_id: int,
        holder_id: str,
        now: datetime,
        expires_at: datetime,
    ) -> bool:
        """
        Atomically take (or refresh) the batch lock.

        Succeeds only if no lock is held, the held lock has expired, or the
        current holder equals holder_id.
        """
        ...

    @abstractmethod
    async def release_lock(self, batch_id: int, holder_id: str) -> bool:
        """Clear the lock fields only if holder_id currently holds the lock."""
        ...

    @abstractmethod
    async def sweep_expired_locks(self, now: datetime) -> int:
        """Clear every lock whose expiry has passed. Returns the count."""
        ...

    @abstractmethod
    async def list_locked_batches(self, now: datetime) -> list[Batch]:
        """Batches holding a live lock."""
        ...

    # =========================================================================
    # Concurrency counter
    # =========================================================================

    @abstractmethod
    async def try_increment_concurrency(self, batch_id: int, default_max: int) -> bool:
        """Increment current_concurrent_trades only while it is below the cap."""
        ...

    @abstractmethod
    async def decrement_concurrency(self, batch_id: int) -> None:
        """Decrement current_concurrent_trades, floored at zero."""
        ...

    @abstractmethod
    async def reset_concurrency(self, batch_id: int) -> None:
        """Zero the counter (used by a fresh lock holder after a crashed run)."""
        ...

    # =========================================================================
    # Queue
    # =========================================================================

    @abstractmethod
    async def next_eligible_batch(self, now: datetime) -> Batch | None:
        """
        Highest priority PENDING batch without a live lock.

        Ordering: priority DESC, queue_position ASC, created_at ASC.
        """
        ...

    # =========================================================================
    # Notifications
    # =========================================================================

    @abstractmethod
    async def append_notification(self, notification: Notification) -> int:
        """Append a notification record. Returns its id."""
        ...

    @abstractmethod
    async def list_notifications(self, batch_id: int) -> list[Notification]:
        ...

    @abstractmethod
    async def list_pending_notifications(self, limit: int = 50) -> list[Notification]:
        """Undelivered notifications, oldest first."""
        ...

    @abstractmethod
    async def mark_notification_delivered(self, notification_id: int, delivered_at: datetime) -> bool:
        """Stamp delivered_at once. Returns False if already delivered or missing."""
        ...

    # =========================================================================
    # Clients
    # =========================================================================

    @abstractmethod
    async def get_client(self, client_ref: str) -> Client | None:
        ...

    @abstractmethod
    async def upsert_client(self, client: Client) -> None:
        ...
