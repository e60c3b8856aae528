"""
Settings management using Pydantic.

Loads configuration from YAML files and environment variables.
Environment variables override YAML values.
"""

from __future__ import annotations

import logging
import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class DatabaseSettings(BaseModel):
    """Database settings."""

    path: str = "data/batches.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class LockingSettings(BaseModel):
    """Batch lease settings."""

    # Lease lifetime; a crashed worker's batch becomes eligible again after this.
    ttl_seconds: int = Field(default=300, ge=0)
    sweep_interval_seconds: Decimal = Decimal("60")


class QueueSettings(BaseModel):
    """Priority queue policy."""

    min_priority: int = 1
    max_priority: int = 10
    default_priority: int = 5


class ExecutionSettings(BaseModel):
    """Trade execution and admission control."""

    default_max_concurrent_trades: int = Field(default=5, ge=1)
    # Re-poll interval while waiting for a slot (covers slots freed by other processes)
    admission_poll_seconds: Decimal = Decimal("0.1")
    admission_timeout_seconds: Decimal = Decimal("300")
    # None disables the timeout (gateway call may then block indefinitely)
    gateway_timeout_seconds: Decimal | None = Decimal("30")


class GatewaySettings(BaseModel):
    """Simulated settlement gateway knobs (paper mode)."""

    success_rate: Decimal = Field(default=Decimal("0.9"), ge=Decimal("0"), le=Decimal("1"))
    base_rate: Decimal = Decimal("18.50")
    rate_jitter: Decimal = Decimal("0.05")
    latency_seconds: Decimal = Decimal("0")
    seed: int | None = None


class LoggingSettings(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    log_dir: str = "logs"
    file_enabled: bool = True
    json_enabled: bool = True
    json_file: str = "logs/batch_settlement.jsonl"
    # Rotate JSONL log to prevent unbounded growth. Set to 0 to disable rotation.
    json_max_bytes: int = 50_000_000
    json_backup_count: int = 3


class TelegramSettings(BaseModel):
    """Telegram notification settings."""

    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""


class WorkerSettings(BaseModel):
    """Batch worker loop settings."""

    holder_id: str = ""  # empty = generated per process
    poll_interval_seconds: Decimal = Decimal("2.0")
    idle_backoff_seconds: Decimal = Decimal("5.0")
    notification_interval_seconds: Decimal = Decimal("10.0")
    notification_batch_size: int = 50


class Settings(BaseSettings):
    """
    Main settings container.

    Loads from YAML file based on environment, then applies env var overrides.
    """

    env: str = Field(default="development", alias="BATCH_ENV")
    testing_mode: bool = False

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    locking: LockingSettings = Field(default_factory=LockingSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)

    model_config = {
        "env_prefix": "BATCH_",
        "env_nested_delimiter": "__",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs; BATCH_* env vars must win over them.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    def validate_for_run(self) -> list[str]:
        """
        Validate cross-field constraints.

        Returns:
            List of validation error messages. Empty list means all validations passed.
        """
        errors = []

        if not self.database.path:
            errors.append("database.path is required")

        if self.queue.min_priority > self.queue.max_priority:
            errors.append("queue.min_priority must be <= queue.max_priority")

        if not self.queue.min_priority <= self.queue.default_priority <= self.queue.max_priority:
            errors.append("queue.default_priority must lie within [min_priority, max_priority]")

        if self.execution.admission_poll_seconds <= 0:
            errors.append("execution.admission_poll_seconds must be positive")

        if self.execution.gateway_timeout_seconds is not None and self.execution.gateway_timeout_seconds <= 0:
            errors.append("execution.gateway_timeout_seconds must be positive (or null to disable)")

        if self.telegram.enabled and not (self.telegram.bot_token and self.telegram.chat_id):
            errors.append("telegram.bot_token and telegram.chat_id are required when telegram is enabled")

        return errors

    @classmethod
    def from_yaml(cls, env: str = "development", config_dir: Path | None = None) -> Settings:
        """
        Build settings for `env` from the YAML files in config_dir.

        config.yaml wins outright when present; otherwise default.yaml is
        overlaid with <env>.yaml. TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID and
        BATCH_* environment variables are applied on top.
        """
        config_dir = config_dir or Path(__file__).parent

        override = config_dir / "config.yaml"
        if override.exists():
            data = _read_yaml(override)
        else:
            data = _deep_merge(_read_yaml(config_dir / "default.yaml"), _read_yaml(config_dir / f"{env}.yaml"))

        telegram = data.setdefault("telegram", {})
        for key, var in (("bot_token", "TELEGRAM_BOT_TOKEN"), ("chat_id", "TELEGRAM_CHAT_ID")):
            if os.getenv(var):
                telegram[key] = os.getenv(var)
        data["env"] = env

        unknown = sorted(_unknown_keys(data, cls))
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys (typo or outdated config?): {unknown}")

        return cls(**data)


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge nested dicts; values from override win."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        merged[key] = _deep_merge(current, value) if isinstance(current, dict) and isinstance(value, dict) else value
    return merged


def _unknown_keys(data: dict[str, Any], model: type[BaseModel], prefix: str = "") -> set[str]:
    """Dotted paths in `data` that match no field of `model` (nested sections included)."""
    unknown: set[str] = set()
    for key, value in data.items():
        path = f"{prefix}{key}"
        field = model.model_fields.get(key)
        if field is None:
            unknown.add(path)
            continue
        section = field.annotation
        if isinstance(value, dict) and isinstance(section, type) and issubclass(section, BaseModel):
            unknown |= _unknown_keys(value, section, f"{path}.")
    return unknown


@lru_cache(maxsize=4)
def get_settings(env: str | None = None) -> Settings:
    """Get cached settings instance."""
    return Settings.from_yaml(env=env or os.getenv("BATCH_ENV", "development"))
