"""
Structured logging setup.

Console output is coloured and tag-aware; the JSON-lines file carries the
batch/trade context passed through ``extra=``. Secrets and account numbers
are masked before any handler sees them.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from batch_settlement.config.settings import LoggingSettings, Settings

# =============================================================================
# Constants
# =============================================================================

# Log tags for special message handling
LOG_TAG_BATCH = "[BATCH]"
LOG_TAG_TRADE = "[TRADE]"
LOG_TAG_LOCK = "[LOCK]"

# LogRecord attributes copied into JSON lines when passed via `extra=`
CONTEXT_FIELDS = ("batch_id", "trade_id", "holder_id", "status", "outcome")

CONSOLE_DATEFMT = "%H:%M:%S"

# Libraries that are chatty at DEBUG/INFO
QUIET_LOGGERS = ("asyncio", "aiosqlite", "aiohttp")

__all__ = [
    "setup_logging",
    "get_logger",
    "SensitiveDataFilter",
    "JSONFormatter",
    "ConsoleFormatter",
    "LOG_TAG_BATCH",
    "LOG_TAG_TRADE",
    "LOG_TAG_LOCK",
]


class SensitiveDataFilter(logging.Filter):
    """Mask bot tokens, secrets and settlement account numbers in log messages."""

    SENSITIVE_PATTERNS = [
        # Telegram bot URLs: bot<id>:<token>
        (re.compile(r"(bot)(\d{6,}:[A-Za-z0-9_-]{20,})"), r"\1***MASKED***"),
        (re.compile(r"((?:secret|token)['\"]?\s*[:=]\s*['\"]?)([A-Za-z0-9:_-]{16,})", re.IGNORECASE), r"\1***MASKED***"),
        # Keep the last 4 digits so operators can still tell accounts apart
        (re.compile(r"(account[_-]?number['\"]?\s*[:=]\s*['\"]?)[A-Za-z0-9-]*?(\d{4})\b", re.IGNORECASE), r"\1****\2"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = message
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            masked = pattern.sub(replacement, masked)

        if masked != message:
            record.msg = masked
            record.args = ()
        return True


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with batch/trade context when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value not in (None, ""):
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_json_default)


class ConsoleFormatter(logging.Formatter):
    """
    Console formatter with colors and simplified structure.

    Special tags:
    - [BATCH]: Cyan
    - [TRADE]: Blue
    - [LOCK]: Grey (dimmed)
    """

    RESET = "\033[0m"
    GREY = "\033[90m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BOLD_RED = "\033[1;91m"
    CYAN = "\033[96m"
    BLUE = "\033[94m"

    def __init__(self):
        super().__init__(datefmt=CONSOLE_DATEFMT)
        # (label, colour, whole line coloured?)
        styles = {
            "DEBUG": ("DEBUG", self.GREY, True),
            "INFO": ("INFO", self.GREEN, False),
            "WARNING": ("WARN", self.YELLOW, True),
            "ERROR": ("ERROR", self.RED, True),
            "CRITICAL": ("CRITICAL", self.BOLD_RED, True),
            LOG_TAG_BATCH: ("BATCH", self.CYAN, False),
            LOG_TAG_TRADE: ("TRADE", self.BLUE, False),
            LOG_TAG_LOCK: ("LOCK", self.GREY, False),
        }
        self._formatters = {key: self._build(*style) for key, style in styles.items()}

    def _build(self, label: str, colour: str, whole_line: bool) -> logging.Formatter:
        if whole_line:
            fmt = f"{colour}%(asctime)s [{label}] %(message)s{self.RESET}"
        else:
            fmt = f"{colour}%(asctime)s [{label}]{self.RESET} %(message)s"
        return logging.Formatter(fmt, datefmt=CONSOLE_DATEFMT)

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()

        for tag in (LOG_TAG_BATCH, LOG_TAG_TRADE, LOG_TAG_LOCK):
            if tag in message:
                # Format a copy; file handlers must still see the tag
                tagged = logging.makeLogRecord(record.__dict__)
                tagged.msg = message.replace(tag, "").strip()
                tagged.args = ()
                return self._formatters[tag].format(tagged)

        formatter = self._formatters.get(record.levelname, self._formatters["INFO"])
        return formatter.format(record)


def _file_handler(path: Path, max_bytes: int, backup_count: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    if max_bytes > 0 and backup_count > 0:
        return RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    return logging.FileHandler(path, encoding="utf-8")


def _build_handlers(config: LoggingSettings) -> list[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ConsoleFormatter())
    handlers: list[logging.Handler] = [console]

    if config.file_enabled:
        timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
        text = _file_handler(Path(config.log_dir) / f"batch_settlement_{timestamp}.log", 0, 0)
        text.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        handlers.append(text)

    if config.json_enabled:
        json_handler = _file_handler(
            Path(config.json_file),
            int(config.json_max_bytes or 0),
            int(config.json_backup_count or 0),
        )
        json_handler.setFormatter(JSONFormatter())
        handlers.append(json_handler)

    return handlers


def setup_logging(settings: Settings | None = None) -> logging.Logger:
    """
    Install console, text file and JSON file handlers on the root logger.

    Existing root handlers are replaced, so calling this twice is safe.
    Returns the root logger.
    """
    if settings is None:
        from batch_settlement.config.settings import get_settings

        settings = get_settings()

    level = getattr(logging, settings.logging.level.upper(), logging.INFO)
    if settings.testing_mode:
        level = logging.DEBUG

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    sensitive_filter = SensitiveDataFilter()
    for handler in _build_handlers(settings.logging):
        handler.setLevel(level)
        handler.addFilter(sensitive_filter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a named logger."""
    return logging.getLogger(name)
