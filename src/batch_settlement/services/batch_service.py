"""
Batch Service.

Wires the engine components together and exposes the operations callers
(CLI, worker loop, an API layer) use. Expected conditions come back as typed
results; exceptions are reserved for state machine, lookup and persistence
failures.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Sequence
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from typing import Any

from batch_settlement.config.settings import Settings
from batch_settlement.domain.errors import BatchActiveError, BatchNotFoundError, ValidationError
from batch_settlement.domain.models import (
    Batch,
    BatchProgress,
    BatchStatus,
    Client,
    NewTrade,
    Notification,
    NotificationType,
    RunOutcome,
    RunResult,
    Trade,
    TradeStatus,
    new_holder_id,
    utc_now,
)
from batch_settlement.domain.rules import BATCH_TABLE
from batch_settlement.observability.logging import LOG_TAG_BATCH, get_logger
from batch_settlement.ports.event_bus import EventBusPort
from batch_settlement.ports.gateway import SettlementGatewayPort
from batch_settlement.ports.store import BatchStorePort
from batch_settlement.services.concurrency import ConcurrencyLimiter
from batch_settlement.services.executor import TradeExecutor
from batch_settlement.services.locking import LockManager
from batch_settlement.services.notifications.emitter import NotificationEmitter
from batch_settlement.services.progress import ProgressAggregator
from batch_settlement.services.queue import BatchQueue
from batch_settlement.services.runner import BatchRunner

logger = get_logger(__name__)

MSG_BATCH_CANCELLED = "batch cancelled"

# EXECUTING trades are in flight at the gateway and are left to finish
CANCELLABLE_TRADE_STATUSES = (TradeStatus.PENDING, TradeStatus.QUOTED)

CANCEL_ATTEMPTS = 3

SEARCH_SORT_FIELDS = ("created_at", "updated_at", "status", "priority", "total_trades", "processed_trades")


class BatchService:
    """Facade over the batch settlement engine."""

    def __init__(
        self,
        settings: Settings,
        store: BatchStorePort,
        gateway: SettlementGatewayPort,
        event_bus: EventBusPort | None = None,
        holder_id: str | None = None,
    ):
        self.settings = settings
        self.store = store
        self.holder_id = holder_id or settings.worker.holder_id or new_holder_id()

        execution = settings.execution
        gateway_timeout = execution.gateway_timeout_seconds
        admission_timeout = execution.admission_timeout_seconds

        self.locks = LockManager(store, ttl_seconds=settings.locking.ttl_seconds)
        self.limiter = ConcurrencyLimiter(
            store,
            default_max=execution.default_max_concurrent_trades,
            poll_interval=float(execution.admission_poll_seconds),
            timeout=float(admission_timeout) if admission_timeout is not None else None,
        )
        self.queue = BatchQueue(
            store,
            min_priority=settings.queue.min_priority,
            max_priority=settings.queue.max_priority,
        )
        self.progress = ProgressAggregator(store)
        self.emitter = NotificationEmitter(store, event_bus)
        self.executor = TradeExecutor(
            store,
            gateway,
            self.progress,
            gateway_timeout=float(gateway_timeout) if gateway_timeout is not None else None,
            event_bus=event_bus,
        )
        self.runner = BatchRunner(
            store,
            self.locks,
            self.limiter,
            self.executor,
            self.progress,
            self.emitter,
            default_max_concurrent=execution.default_max_concurrent_trades,
        )

    # =========================================================================
    # Engine operations
    # =========================================================================

    async def run_batch(self, batch_id: int, holder_id: str | None = None) -> RunResult:
        return await self.runner.run(batch_id, holder_id or self.holder_id)

    async def cancel_batch(self, batch_id: int) -> RunResult:
        """
        Cancel a PENDING or RUNNING batch.

        PENDING and QUOTED trades become CANCELLED; EXECUTING trades finish on
        their own. Cancelling a terminal batch changes nothing.
        """
        for _ in range(CANCEL_ATTEMPTS):
            batch = await self._require_batch(batch_id)
            if batch.status.is_terminal():
                return RunResult(batch_id, RunOutcome.ALREADY_TERMINAL, batch.status, "Batch already finished")

            BATCH_TABLE.transition(batch.status, BatchStatus.CANCELLED)
            if await self.store.transition_batch_status(
                batch_id, batch.status, BatchStatus.CANCELLED, {"completed_at": utc_now()}
            ):
                break
        else:
            # Status kept moving underneath us; report whatever it is now
            batch = await self._require_batch(batch_id)
            return RunResult(batch_id, RunOutcome.ALREADY_TERMINAL, batch.status, "Batch status changed concurrently")

        cancelled = await self.store.cancel_open_trades(batch_id, CANCELLABLE_TRADE_STATUSES, MSG_BATCH_CANCELLED)
        await self.progress.recompute(batch_id)
        await self.emitter.emit(batch_id, NotificationType.STATUS_CHANGE)
        await self.emitter.emit(batch_id, NotificationType.CANCELLED)

        logger.info(
            f"{LOG_TAG_BATCH} Batch {batch_id} cancelled ({cancelled} trades cancelled)",
            extra={"batch_id": batch_id, "status": BatchStatus.CANCELLED.value},
        )
        return RunResult(batch_id, RunOutcome.CANCELLED, BatchStatus.CANCELLED, f"Cancelled {cancelled} trades")

    async def get_progress(self, batch_id: int) -> BatchProgress:
        return await self.progress.snapshot(batch_id)

    async def next_eligible_batch(self) -> int | None:
        return await self.queue.next_eligible()

    async def set_priority(self, batch_id: int, priority: int) -> int:
        return await self.queue.set_priority(batch_id, priority)

    async def sweep_expired_locks(self) -> int:
        return await self.locks.sweep_expired()

    async def list_locked_batches(self) -> list[Batch]:
        return await self.locks.list_locked()

    # =========================================================================
    # Batch management
    # =========================================================================

    async def create_batch(
        self,
        trades: Sequence[NewTrade],
        *,
        batch_uid: str | None = None,
        priority: int | None = None,
        max_concurrent_trades: int | None = None,
        queue_position: int | None = None,
    ) -> Batch:
        """Stage a PENDING batch with its PENDING trades."""
        for trade in trades:
            if not trade.client_ref:
                raise ValidationError("Every trade needs a client reference")
        if max_concurrent_trades is not None and max_concurrent_trades < 1:
            raise ValidationError("max_concurrent_trades must be at least 1")

        batch = await self.store.create_batch(
            trades,
            batch_uid=batch_uid or _generate_batch_uid(),
            priority=self.queue.clamp(self.settings.queue.default_priority if priority is None else priority),
            max_concurrent_trades=max_concurrent_trades or self.settings.execution.default_max_concurrent_trades,
            queue_position=queue_position,
        )
        logger.info(
            f"{LOG_TAG_BATCH} Batch {batch.batch_id} ({batch.batch_uid}) staged with {batch.total_trades} trades",
            extra={"batch_id": batch.batch_id, "status": batch.status.value},
        )
        return batch

    async def get_batch(self, batch_id: int) -> Batch:
        return await self._require_batch(batch_id)

    async def get_batch_by_uid(self, batch_uid: str) -> Batch | None:
        return await self.store.get_batch_by_uid(batch_uid)

    async def list_batch_trades(self, batch_id: int) -> list[Trade]:
        await self._require_batch(batch_id)
        return await self.store.list_trades_by_batch(batch_id)

    async def list_active_batches(self) -> list[Batch]:
        return await self.store.list_batches([BatchStatus.PENDING, BatchStatus.RUNNING])

    async def list_recent_completed(self, limit: int = 10) -> list[Batch]:
        return await self.store.list_batches(
            [BatchStatus.SUCCESS, BatchStatus.PARTIAL_SUCCESS, BatchStatus.FAILED, BatchStatus.CANCELLED],
            limit=limit,
            newest_first=True,
        )

    async def get_batch_summary(self, batch_id: int) -> dict[str, Any]:
        batch = await self._require_batch(batch_id)
        summary = await self.store.summarize_trades(batch_id)
        total_amount: Decimal = summary["total_amount"]
        return {
            "batch_id": batch.batch_id,
            "batch_uid": batch.batch_uid,
            "status": batch.status.value,
            "total_trades": summary["total"],
            "success_count": summary["success"],
            "failed_count": summary["failed"],
            "cancelled_count": summary["cancelled"],
            "pending_count": summary["pending"],
            "total_amount": str(total_amount),
            "progress_percentage": batch.percent,
            "created_at": batch.created_at.isoformat(),
            "updated_at": batch.updated_at.isoformat(),
        }

    async def get_batch_errors(self, batch_id: int) -> dict[str, Any]:
        """Failed trades grouped by status message, most frequent first."""
        await self._require_batch(batch_id)
        groups = await self.store.list_failed_trade_messages(batch_id)
        failed = await self.store.list_trades_by_batch(batch_id, [TradeStatus.FAILED])
        return {
            "batch_id": batch_id,
            "total_failed": len(failed),
            "error_summary": [{"message": message or "Unknown Error", "count": count} for message, count in groups],
            "failed_trades": failed,
        }

    async def get_batch_results(self, batch_id: int) -> dict[str, Any]:
        """Batch summary, a summary of every trade and the current progress."""
        summary = await self.get_batch_summary(batch_id)
        trades = await self.store.list_trades_by_batch(batch_id)
        progress = await self.progress.snapshot(batch_id)
        return {
            "batch": summary,
            "trades": [_trade_summary(t) for t in trades],
            "progress": progress.to_dict(),
        }

    async def search_batches(
        self,
        *,
        status: BatchStatus | str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "DESC",
    ) -> dict[str, Any]:
        """
        Page through batches filtered by status and creation date.

        date_from and date_to are whole UTC days, both inclusive. An unknown
        sort field falls back to created_at; any order other than ASC is DESC.

        Raises:
            ValidationError: page or limit below 1.
            UnknownStatusError: status is not a batch status.
        """
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be at least 1")
        if sort_by not in SEARCH_SORT_FIELDS:
            sort_by = "created_at"
        descending = sort_order.upper() != "ASC"

        batches, total = await self.store.search_batches(
            status=BATCH_TABLE.coerce(status) if status is not None else None,
            created_from=_start_of_day(date_from) if date_from else None,
            created_before=_start_of_day(date_to + timedelta(days=1)) if date_to else None,
            sort_by=sort_by,
            descending=descending,
            limit=limit,
            offset=(page - 1) * limit,
        )
        total_pages = math.ceil(total / limit)
        return {
            "batches": batches,
            "pagination": {
                "current_page": page,
                "total_pages": total_pages,
                "total_records": total,
                "limit": limit,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
            "sort": {"field": sort_by, "order": "DESC" if descending else "ASC"},
        }

    async def delete_batch(self, batch_id: int) -> None:
        """Delete a terminal batch with its trades and notifications."""
        batch = await self._require_batch(batch_id)
        if not batch.status.is_terminal():
            raise BatchActiveError("Cannot delete active batch. Cancel it first.", batch_id=batch_id)

        await self.store.delete_batch(batch_id)
        logger.info(f"{LOG_TAG_BATCH} Batch {batch_id} deleted", extra={"batch_id": batch_id})

    # =========================================================================
    # Notifications & clients
    # =========================================================================

    async def list_pending_notifications(self, limit: int = 50) -> list[Notification]:
        return await self.store.list_pending_notifications(limit)

    async def mark_notification_delivered(self, notification_id: int) -> bool:
        return await self.store.mark_notification_delivered(notification_id, utc_now())

    async def upsert_client(self, client: Client) -> None:
        if not client.client_ref:
            raise ValidationError("client_ref is required")
        await self.store.upsert_client(client)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _require_batch(self, batch_id: int) -> Batch:
        batch = await self.store.get_batch(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch


def _generate_batch_uid() -> str:
    return f"batch_{datetime.now(UTC).strftime('%Y%m%d%H%M%S')}_{uuid.uuid4().hex[:8]}"


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


def _trade_summary(trade: Trade) -> dict[str, Any]:
    return {
        "trade_id": trade.trade_id,
        "client_ref": trade.client_ref,
        "amount": str(trade.amount),
        "status": trade.status.value,
        "status_message": trade.status_message,
        "quote_rate": str(trade.quote_rate) if trade.quote_rate is not None else None,
        "settlement_reference": trade.settlement_reference,
        "updated_at": trade.updated_at.isoformat(),
    }
