"""Factories for staging batches and trades in tests."""

from __future__ import annotations

import itertools
from decimal import Decimal

from batch_settlement.config.settings import Settings
from batch_settlement.domain.models import Batch, NewTrade

_uid_counter = itertools.count(1)


def new_trades(count: int, client_ref: str = "CL-001", amount: str = "100.00") -> list[NewTrade]:
    return [NewTrade(client_ref=client_ref, amount=Decimal(amount)) for _ in range(count)]


async def stage_batch(
    store,
    count: int,
    *,
    priority: int = 5,
    max_concurrent: int | None = 5,
    client_ref: str = "CL-001",
    queue_position: int | None = None,
) -> Batch:
    """Insert a PENDING batch of `count` trades straight through the store."""
    return await store.create_batch(
        new_trades(count, client_ref=client_ref),
        batch_uid=f"batch_test_{next(_uid_counter)}",
        priority=priority,
        max_concurrent_trades=max_concurrent,
        queue_position=queue_position,
    )


def make_settings(db_path: str = ":memory:", **overrides) -> Settings:
    """Settings tuned for fast tests (short polls, no log files)."""
    data = {
        "database": {"path": db_path},
        "execution": {
            "default_max_concurrent_trades": 5,
            "admission_poll_seconds": Decimal("0.01"),
            "admission_timeout_seconds": Decimal("5"),
            "gateway_timeout_seconds": Decimal("2"),
        },
        "logging": {"file_enabled": False, "json_enabled": False},
        "worker": {"holder_id": "test_worker"},
    }
    for section, values in overrides.items():
        data.setdefault(section, {}).update(values)
    return Settings(**data)
