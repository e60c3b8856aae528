"""
Shared helpers for SQLite store modules.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


def _iso(value: datetime) -> str:
    """Fixed-width UTC ISO string (sortable as text)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _parse_dt(value: Any) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _maybe_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _to_db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _iso(value)
    if isinstance(value, Decimal):
        return str(value)
    return value


def _build_set_clause(updates: Mapping[str, Any], allowed: Iterable[str]) -> tuple[str, list[Any]]:
    """
    Build "col = ?, ..." for an UPDATE from a field dict.

    Raises:
        ValueError: a key is not an updatable column.
    """
    allowed_set = set(allowed)
    unknown = set(updates) - allowed_set
    if unknown:
        raise ValueError(f"Unknown or non-updatable columns: {sorted(unknown)}")

    columns = list(updates)
    clause = ", ".join(f"{col} = ?" for col in columns)
    return clause, [_to_db_value(updates[col]) for col in columns]


def _placeholders(values: Iterable[Any]) -> tuple[str, list[Any]]:
    params = [_to_db_value(v) for v in values]
    return ", ".join("?" for _ in params), params
