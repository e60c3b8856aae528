"""
Prometheus metrics for observability.

Provides metrics for monitoring batch runs, trade settlement outcomes,
lock contention and admission control.

Usage:
    from batch_settlement.observability.metrics import (
        record_batch_run,
        track_trade_duration,
    )

    record_batch_run(outcome="COMPLETED", final_status="SUCCESS", duration_seconds=4.2)

    with track_trade_duration() as ctx:
        # settle one trade
        ctx["status"] = "SUCCESS"
"""

from __future__ import annotations

import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Metric Definitions
# =============================================================================

batch_runs_total = Counter(
    "batch_settlement_batch_runs_total",
    "Total batch run attempts",
    ["outcome", "final_status"],  # outcome: COMPLETED, BUSY, ALREADY_TERMINAL, CANCELLED
)

batch_run_duration_seconds = Histogram(
    "batch_settlement_batch_run_duration_seconds",
    "Duration of completed batch runs in seconds",
    ["final_status"],
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0),
)

trades_total = Counter(
    "batch_settlement_trades_total",
    "Total trades reaching a terminal status",
    ["status"],
)

trade_duration_seconds = Histogram(
    "batch_settlement_trade_duration_seconds",
    "Duration of a single trade (quote + execute) in seconds",
    ["status"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

lock_attempts_total = Counter(
    "batch_settlement_lock_attempts_total",
    "Total batch lock acquisition attempts",
    ["acquired"],
)

locks_swept_total = Counter(
    "batch_settlement_locks_swept_total",
    "Total expired batch locks cleared by the sweeper",
)

trades_in_flight = Gauge(
    "batch_settlement_trades_in_flight",
    "Trades currently holding a concurrency slot",
    ["batch_id"],
)


# =============================================================================
# Helper Functions
# =============================================================================


def record_batch_run(outcome: str, final_status: str = "", duration_seconds: float = 0.0) -> None:
    """
    Record a batch run attempt.

    Args:
        outcome: RunOutcome value
        final_status: Batch status after the run (empty when no run happened)
        duration_seconds: Wall time of the run, observed only for completed runs
    """
    batch_runs_total.labels(outcome=outcome, final_status=final_status or "none").inc()
    if final_status and duration_seconds > 0:
        batch_run_duration_seconds.labels(final_status=final_status).observe(duration_seconds)


def record_trade_result(status: str, duration_seconds: float = 0.0) -> None:
    """Record a trade that reached a terminal status."""
    trades_total.labels(status=status).inc()
    if duration_seconds > 0:
        trade_duration_seconds.labels(status=status).observe(duration_seconds)


@contextmanager
def track_trade_duration() -> Generator[dict[str, Any], None, None]:
    """
    Context manager to track trade settlement duration.

    Usage:
        with track_trade_duration() as ctx:
            ...
            ctx["status"] = "SUCCESS"

    Yields:
        Dict to store the terminal status. Nothing is recorded if it is left unset.
    """
    start_time = time.monotonic()
    ctx: dict[str, Any] = {"status": None}

    try:
        yield ctx
    finally:
        status = ctx.get("status")
        if status:
            record_trade_result(str(status), time.monotonic() - start_time)


def record_lock_attempt(acquired: bool) -> None:
    lock_attempts_total.labels(acquired=str(acquired).lower()).inc()


def record_locks_swept(count: int) -> None:
    if count > 0:
        locks_swept_total.inc(count)


def update_in_flight(batch_id: int, count: int) -> None:
    """Update the in-flight trades gauge for a batch."""
    trades_in_flight.labels(batch_id=str(batch_id)).set(count)
