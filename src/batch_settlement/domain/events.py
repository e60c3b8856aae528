"""
Domain Events.

Events are immutable records of things that happened in the domain.
They are used for:
- Audit logging
- Fan-out to notification delivery
- Metrics hooks
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from batch_settlement.domain.models import BatchStatus, NotificationType, TradeStatus


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """Base class for all domain events."""

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def event_type(self) -> str:
        return self.__class__.__name__


@dataclass(frozen=True, slots=True)
class BatchNotificationRecorded(DomainEvent):
    """Emitted after a notification record was appended to the store."""

    notification_id: int | None = None
    batch_id: int = 0
    notification_type: NotificationType = NotificationType.STATUS_CHANGE
    status: BatchStatus = BatchStatus.PENDING
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TradeSettled(DomainEvent):
    """Emitted when a trade reaches SUCCESS."""

    trade_id: int = 0
    batch_id: int = 0
    settlement_id: str = ""
    reference: str = ""


@dataclass(frozen=True, slots=True)
class TradeFailed(DomainEvent):
    """Emitted when a trade is marked FAILED."""

    trade_id: int = 0
    batch_id: int = 0
    from_status: TradeStatus = TradeStatus.PENDING
    reason: str = ""


@dataclass(frozen=True, slots=True)
class AlertEvent(DomainEvent):
    """Generic alert for notifications."""

    level: str = "INFO"  # INFO, WARNING, ERROR, CRITICAL
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
