"""
Canonical Domain Models.

Plain value objects for batches, trades and notification records.
Entities never hold a reference back to storage: every read returns a fresh
snapshot and every write goes through the store port.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

DEFAULT_MAX_CONCURRENT_TRADES = 5
DEFAULT_PRIORITY = 5

# =============================================================================
# ENUMS
# =============================================================================


class BatchStatus(str, Enum):
    """Batch lifecycle status."""

    PENDING = "PENDING"  # Staged, waiting for a worker
    RUNNING = "RUNNING"  # Lock held, trades being executed
    SUCCESS = "SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    def is_terminal(self) -> bool:
        """Check if this is a final state."""
        return self in BATCH_TERMINAL_STATUSES

    def is_active(self) -> bool:
        return self in (BatchStatus.PENDING, BatchStatus.RUNNING)


class TradeStatus(str, Enum):
    """Settlement instruction lifecycle status."""

    PENDING = "PENDING"
    QUOTED = "QUOTED"
    EXECUTING = "EXECUTING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    def is_terminal(self) -> bool:
        """Check if this is a final state."""
        return self in TRADE_TERMINAL_STATUSES


BATCH_TERMINAL_STATUSES = frozenset({
    BatchStatus.SUCCESS,
    BatchStatus.PARTIAL_SUCCESS,
    BatchStatus.FAILED,
    BatchStatus.CANCELLED,
})

TRADE_TERMINAL_STATUSES = frozenset({
    TradeStatus.SUCCESS,
    TradeStatus.FAILED,
    TradeStatus.CANCELLED,
})


class NotificationType(str, Enum):
    """Lifecycle events recorded for downstream delivery."""

    STARTED = "started"
    STATUS_CHANGE = "status_change"
    COMPLETION = "completion"
    CANCELLED = "cancelled"


class RunOutcome(str, Enum):
    """Typed result of batch-level operations (expected conditions, not errors)."""

    COMPLETED = "COMPLETED"
    BUSY = "BUSY"  # Lock held by another worker
    ALREADY_TERMINAL = "ALREADY_TERMINAL"
    CANCELLED = "CANCELLED"


# =============================================================================
# VALUE OBJECTS & MODELS
# =============================================================================


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class LockInfo:
    """Lease fields embedded in a batch row."""

    holder_id: str
    acquired_at: datetime
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        """A lock is live while now < expires_at (ttl=0 is born expired)."""
        return now < self.expires_at


@dataclass(frozen=True, slots=True)
class Batch:
    """A unit of work containing N trades."""

    batch_id: int
    batch_uid: str
    status: BatchStatus = BatchStatus.PENDING
    total_trades: int = 0
    processed_trades: int = 0
    failed_trades: int = 0

    # Queue
    priority: int = DEFAULT_PRIORITY
    queue_position: int = 0

    # Concurrency
    max_concurrent_trades: int | None = DEFAULT_MAX_CONCURRENT_TRADES
    current_concurrent_trades: int = 0

    # Lease
    lock: LockInfo | None = None

    # Timestamps
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def concurrency_cap(self, default: int = DEFAULT_MAX_CONCURRENT_TRADES) -> int:
        """Per-batch cap; unset or 0 falls back to default."""
        return self.max_concurrent_trades or default

    @property
    def percent(self) -> float:
        if self.total_trades <= 0:
            return 0.0
        return round(self.processed_trades / self.total_trades * 100, 2)

    def with_updates(self, **changes: Any) -> Batch:
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class Trade:
    """One settlement instruction owned by exactly one batch."""

    trade_id: int
    batch_id: int
    client_ref: str
    amount: Decimal = Decimal("0")
    status: TradeStatus = TradeStatus.PENDING
    status_message: str = ""

    # Quote
    quote_id: str | None = None
    quote_rate: Decimal | None = None

    # Settlement
    settlement_id: str | None = None
    settlement_reference: str | None = None

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def is_terminal(self) -> bool:
        return self.status.is_terminal()


@dataclass(frozen=True, slots=True)
class NewTrade:
    """Trade instruction staged into a new batch (not persisted yet)."""

    client_ref: str
    amount: Decimal


@dataclass(frozen=True, slots=True)
class Client:
    """Minimal client view needed to settle a trade."""

    client_ref: str
    name: str = ""
    account_number: str = ""
    active: bool = True


@dataclass(frozen=True, slots=True)
class Quote:
    """Price obtained from the settlement gateway prior to execution."""

    quote_id: str
    rate: Decimal


@dataclass(frozen=True, slots=True)
class Settlement:
    """Result of a committed (executed) trade."""

    settlement_id: str
    reference: str


@dataclass(frozen=True, slots=True)
class Notification:
    """Append-only lifecycle record; only delivered_at is ever stamped later."""

    batch_id: int
    event_type: NotificationType
    payload: dict[str, Any]
    notification_id: int | None = None
    created_at: datetime = field(default_factory=utc_now)
    delivered_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class BatchProgress:
    """Progress snapshot exposed to callers."""

    batch_id: int
    status: BatchStatus
    total: int
    processed: int
    failed: int
    percent: float

    @property
    def is_completed(self) -> bool:
        return self.status.is_terminal()

    @property
    def is_active(self) -> bool:
        return self.status.is_active()

    @classmethod
    def from_batch(cls, batch: Batch) -> BatchProgress:
        return cls(
            batch_id=batch.batch_id,
            status=batch.status,
            total=batch.total_trades,
            processed=batch.processed_trades,
            failed=batch.failed_trades,
            percent=batch.percent,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "status": self.status.value,
            "total": self.total,
            "processed": self.processed,
            "failed": self.failed,
            "percent": self.percent,
        }


@dataclass(frozen=True, slots=True)
class RunResult:
    """Outcome of BatchRunner.run / BatchService.cancel_batch."""

    batch_id: int
    outcome: RunOutcome
    status: BatchStatus | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome in (RunOutcome.COMPLETED, RunOutcome.CANCELLED)


def new_holder_id(prefix: str = "worker") -> str:
    """Generate a unique lock holder id for this process."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"
