"""
Domain Layer: Core business entities, value objects, and rules.

This layer has NO external dependencies (no DB types, no gateway types).
All types here are canonical and used throughout the application.
"""

from batch_settlement.domain.errors import (
    BatchActiveError,
    BatchNotFoundError,
    DomainError,
    GatewayError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    TradeNotFoundError,
    UnknownStatusError,
)
from batch_settlement.domain.events import (
    AlertEvent,
    BatchNotificationRecorded,
    DomainEvent,
    TradeFailed,
    TradeSettled,
)
from batch_settlement.domain.models import (
    Batch,
    BatchProgress,
    BatchStatus,
    Client,
    LockInfo,
    NewTrade,
    Notification,
    NotificationType,
    Quote,
    RunOutcome,
    RunResult,
    Settlement,
    Trade,
    TradeStatus,
)
from batch_settlement.domain.rules import BATCH_TABLE, TRADE_TABLE, StatusTransitionTable

__all__ = [
    # Enums
    "BatchStatus",
    "TradeStatus",
    "NotificationType",
    "RunOutcome",
    # Models
    "Batch",
    "Trade",
    "NewTrade",
    "Client",
    "Quote",
    "Settlement",
    "LockInfo",
    "Notification",
    "BatchProgress",
    "RunResult",
    # Rules
    "StatusTransitionTable",
    "BATCH_TABLE",
    "TRADE_TABLE",
    # Events
    "DomainEvent",
    "BatchNotificationRecorded",
    "TradeSettled",
    "TradeFailed",
    "AlertEvent",
    # Errors
    "DomainError",
    "InvalidTransitionError",
    "UnknownStatusError",
    "NotFoundError",
    "BatchNotFoundError",
    "TradeNotFoundError",
    "BatchActiveError",
    "GatewayError",
    "PersistenceError",
]
