"""Observability: logging, metrics."""

from batch_settlement.observability.logging import (
    LOG_TAG_BATCH,
    LOG_TAG_LOCK,
    LOG_TAG_TRADE,
    get_logger,
    setup_logging,
)
from batch_settlement.observability.metrics import (
    record_batch_run,
    record_lock_attempt,
    record_locks_swept,
    record_trade_result,
    track_trade_duration,
    update_in_flight,
)

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "LOG_TAG_BATCH",
    "LOG_TAG_TRADE",
    "LOG_TAG_LOCK",
    # Metrics helpers
    "record_batch_run",
    "record_trade_result",
    "track_trade_duration",
    "record_lock_attempt",
    "record_locks_swept",
    "update_in_flight",
]
