"""
Notification Port.

Delivery channel for batch lifecycle notifications.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Interface for notification adapters."""

    async def send_message(self, message: str) -> bool:
        """
        Deliver one message.

        Returns:
            True if delivered, False otherwise.
        """
        ...
