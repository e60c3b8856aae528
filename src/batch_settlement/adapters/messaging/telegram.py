"""
Telegram Adapter.

Delivers batch notifications via the Telegram Bot API.
"""

from __future__ import annotations

from html import escape as _html_escape

import aiohttp

from batch_settlement.config.settings import TelegramSettings
from batch_settlement.observability.logging import get_logger
from batch_settlement.ports.notification import NotificationPort

logger = get_logger(__name__)

_ALLOWED_HTML_TAGS: tuple[str, ...] = ("<b>", "</b>", "<i>", "</i>", "<code>", "</code>")

REQUEST_TIMEOUT_SECONDS = 10


def _sanitize_html_message(message: str) -> str:
    """Escape everything except the small tag set the dispatcher emits."""
    escaped = _html_escape(message, quote=False)
    for tag in _ALLOWED_HTML_TAGS:
        escaped = escaped.replace(_html_escape(tag, quote=False), tag)
    return escaped


class TelegramAdapter(NotificationPort):
    """Telegram implementation of NotificationPort."""

    def __init__(self, settings: TelegramSettings):
        self.settings = settings
        self._session: aiohttp.ClientSession | None = None
        self._base_url = f"https://api.telegram.org/bot{settings.bot_token}"

    @property
    def configured(self) -> bool:
        return bool(self.settings.enabled and self.settings.bot_token and self.settings.chat_id)

    async def start(self) -> None:
        if not self.configured:
            return
        self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS))

    async def stop(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def send_message(self, message: str) -> bool:
        if not self.configured:
            return False

        if not self._session or self._session.closed:
            await self.start()

        payload = {
            "chat_id": self.settings.chat_id,
            "text": _sanitize_html_message(message),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }

        try:
            async with self._session.post(f"{self._base_url}/sendMessage", json=payload) as resp:
                if resp.status == 200:
                    return True
                text = await resp.text()
                logger.error(f"Telegram send failed ({resp.status}): {text}")
                return False
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error(f"Telegram error: {e}")
            return False


class LogNotifier(NotificationPort):
    """Fallback channel: writes notifications to the log."""

    async def send_message(self, message: str) -> bool:
        logger.info(f"[BATCH] {message}")
        return True
