"""
Notification Emitter.

Snapshots batch counters/status into an append-only notification record.
Repeated emission simply appends another record; dedup and delivery belong
to the consumer (see NotificationDispatcher).
"""

from __future__ import annotations

import time
from dataclasses import replace
from typing import Any

from batch_settlement.domain.errors import BatchNotFoundError
from batch_settlement.domain.events import BatchNotificationRecorded
from batch_settlement.domain.models import Batch, Notification, NotificationType
from batch_settlement.observability.logging import get_logger
from batch_settlement.ports.event_bus import EventBusPort
from batch_settlement.ports.store import BatchStorePort

logger = get_logger(__name__)


def build_payload(batch: Batch, event_type: NotificationType) -> dict[str, Any]:
    return {
        "type": "batch_notification",
        "batch_id": batch.batch_id,
        "batch_uid": batch.batch_uid,
        "notification_type": event_type.value,
        "status": batch.status.value,
        "total_trades": batch.total_trades,
        "processed_trades": batch.processed_trades,
        "failed_trades": batch.failed_trades,
        "percent": batch.percent,
        "timestamp": int(time.time()),
    }


class NotificationEmitter:
    def __init__(self, store: BatchStorePort, event_bus: EventBusPort | None = None):
        self.store = store
        self.event_bus = event_bus

    async def emit(self, batch_id: int, event_type: NotificationType | str) -> Notification:
        """Append a snapshot record for the batch and publish it on the bus (if wired)."""
        event_type = NotificationType(event_type)
        batch = await self.store.get_batch(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)

        record = Notification(batch_id=batch_id, event_type=event_type, payload=build_payload(batch, event_type))
        notification_id = await self.store.append_notification(record)
        logger.debug(f"Recorded {event_type.value} notification {notification_id} for batch {batch_id}")

        if self.event_bus is not None:
            await self.event_bus.publish(
                BatchNotificationRecorded(
                    notification_id=notification_id,
                    batch_id=batch_id,
                    notification_type=event_type,
                    status=batch.status,
                    payload=record.payload,
                )
            )

        return replace(record, notification_id=notification_id)
