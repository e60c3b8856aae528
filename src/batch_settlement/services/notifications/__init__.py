"""Batch notification recording and delivery."""

from batch_settlement.services.notifications.dispatcher import NotificationDispatcher
from batch_settlement.services.notifications.emitter import NotificationEmitter

__all__ = ["NotificationEmitter", "NotificationDispatcher"]
