"""
Notification Dispatcher.

Delivery consumer for the append-only notification records: reads pending
records, sends them through a NotificationPort and stamps delivered_at.
Also forwards AlertEvents from the event bus directly.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime

from batch_settlement.domain.events import AlertEvent
from batch_settlement.domain.models import Notification, NotificationType, utc_now
from batch_settlement.observability.logging import get_logger
from batch_settlement.ports.event_bus import EventBusPort
from batch_settlement.ports.notification import NotificationPort
from batch_settlement.ports.store import BatchStorePort

logger = get_logger(__name__)

_HEADLINES = {
    NotificationType.STARTED: "▶️ <b>Batch started</b>",
    NotificationType.STATUS_CHANGE: "🔄 <b>Batch status changed</b>",
    NotificationType.COMPLETION: "✅ <b>Batch completed</b>",
    NotificationType.CANCELLED: "🛑 <b>Batch cancelled</b>",
}

# Telegram hard limit is 4096 chars
MAX_DETAILS_CHARS = 3200


def format_notification(notification: Notification) -> str:
    payload = notification.payload
    uid = payload.get("batch_uid", notification.batch_id)
    return (
        f"{_HEADLINES[notification.event_type]}: {uid}\n"
        f"Status: <b>{payload.get('status', '?')}</b>\n"
        f"Processed: {payload.get('processed_trades', 0)}/{payload.get('total_trades', 0)} "
        f"({payload.get('percent', 0.0)}%)\n"
        f"Failed: {payload.get('failed_trades', 0)}"
    )


def format_alert(event: AlertEvent) -> str:
    text = f"⚠️ <b>{event.level}</b>: {event.message}"
    if event.details:
        details = json.dumps(event.details, ensure_ascii=False, sort_keys=True, indent=2, default=str)
        if len(details) > MAX_DETAILS_CHARS:
            details = details[:MAX_DETAILS_CHARS] + "\n..."
        text += f"\n<code>{details}</code>"
    return text


class NotificationDispatcher:
    def __init__(
        self,
        store: BatchStorePort,
        notifier: NotificationPort,
        event_bus: EventBusPort | None = None,
        batch_size: int = 50,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.notifier = notifier
        self.event_bus = event_bus
        self.batch_size = batch_size
        self._clock = clock
        self._running = False

    async def start(self) -> None:
        if self._running:
            return

        if hasattr(self.notifier, "start"):
            await self.notifier.start()
        if self.event_bus is not None:
            self.event_bus.subscribe(AlertEvent, self._on_alert)

        self._running = True
        logger.info("NotificationDispatcher started")

    async def stop(self) -> None:
        if not self._running:
            return

        if self.event_bus is not None:
            self.event_bus.unsubscribe(AlertEvent, self._on_alert)
        if hasattr(self.notifier, "stop"):
            await self.notifier.stop()

        self._running = False
        logger.info("NotificationDispatcher stopped")

    async def dispatch_pending(self, limit: int | None = None) -> int:
        """
        Deliver up to `limit` undelivered records, oldest first.

        A record whose send fails stays pending and is retried on the next call.
        Returns the number delivered.
        """
        pending = await self.store.list_pending_notifications(limit or self.batch_size)
        delivered = 0

        for notification in pending:
            if notification.notification_id is None:
                continue
            if not await self.notifier.send_message(format_notification(notification)):
                logger.warning(f"Delivery failed for notification {notification.notification_id}, will retry")
                continue
            if await self.store.mark_notification_delivered(notification.notification_id, self._clock()):
                delivered += 1

        if delivered:
            logger.debug(f"Delivered {delivered}/{len(pending)} pending notification(s)")
        return delivered

    async def _on_alert(self, event: AlertEvent) -> None:
        await self.notifier.send_message(format_alert(event))
