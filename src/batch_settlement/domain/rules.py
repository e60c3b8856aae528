"""
Domain Rules: status transition tables and final-status derivation.

Pure functions with no side effects beyond validation. Callers apply the
new value and persist it.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Generic, TypeVar

from batch_settlement.domain.errors import InvalidTransitionError, UnknownStatusError
from batch_settlement.domain.models import BatchStatus, TradeStatus

S = TypeVar("S", bound=Enum)

# =============================================================================
# Transition Graphs
# =============================================================================

BATCH_TRANSITIONS: Mapping[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.PENDING: frozenset({BatchStatus.RUNNING, BatchStatus.CANCELLED}),
    BatchStatus.RUNNING: frozenset({
        BatchStatus.SUCCESS,
        BatchStatus.PARTIAL_SUCCESS,
        BatchStatus.FAILED,
        BatchStatus.CANCELLED,
    }),
    BatchStatus.SUCCESS: frozenset(),
    BatchStatus.PARTIAL_SUCCESS: frozenset(),
    BatchStatus.FAILED: frozenset(),
    BatchStatus.CANCELLED: frozenset(),
}

TRADE_TRANSITIONS: Mapping[TradeStatus, frozenset[TradeStatus]] = {
    TradeStatus.PENDING: frozenset({TradeStatus.QUOTED, TradeStatus.FAILED, TradeStatus.CANCELLED}),
    TradeStatus.QUOTED: frozenset({TradeStatus.EXECUTING, TradeStatus.FAILED, TradeStatus.CANCELLED}),
    TradeStatus.EXECUTING: frozenset({TradeStatus.SUCCESS, TradeStatus.FAILED, TradeStatus.CANCELLED}),
    TradeStatus.SUCCESS: frozenset(),
    TradeStatus.FAILED: frozenset(),
    TradeStatus.CANCELLED: frozenset(),
}


class StatusTransitionTable(Generic[S]):
    """Validates legal moves through a fixed, acyclic status graph."""

    def __init__(self, entity: str, status_type: type[S], transitions: Mapping[S, frozenset[S]]):
        self.entity = entity
        self.status_type = status_type
        self._transitions = dict(transitions)

    def coerce(self, value: S | str) -> S:
        """Parse a raw value into the status enum, raising UnknownStatusError."""
        if isinstance(value, self.status_type):
            return value
        try:
            return self.status_type(value)
        except ValueError:
            raise UnknownStatusError(self.entity, value) from None

    def allowed(self, from_status: S | str) -> frozenset[S]:
        return self._transitions[self.coerce(from_status)]

    def is_valid(self, from_status: S | str, to_status: S | str) -> bool:
        return self.coerce(to_status) in self.allowed(from_status)

    def is_terminal(self, status: S | str) -> bool:
        return not self.allowed(status)

    def transition(self, from_status: S | str, to_status: S | str) -> S:
        """
        Validate from -> to and return the target status.

        Raises:
            UnknownStatusError: either value is not a recognized member.
            InvalidTransitionError: target is not in the allowed set.
        """
        current = self.coerce(from_status)
        target = self.coerce(to_status)
        if target not in self._transitions[current]:
            raise InvalidTransitionError(self.entity, current.value, target.value)
        return target


BATCH_TABLE = StatusTransitionTable("batch", BatchStatus, BATCH_TRANSITIONS)
TRADE_TABLE = StatusTransitionTable("trade", TradeStatus, TRADE_TRANSITIONS)


def transition(entity: str, from_status: Enum | str, to_status: Enum | str) -> Enum:
    """Module-level entry point: transition("batch" | "trade", from, to)."""
    tables = {"batch": BATCH_TABLE, "trade": TRADE_TABLE}
    table = tables.get(entity)
    if table is None:
        raise ValueError(f"Unknown entity: {entity}")
    return table.transition(from_status, to_status)


# =============================================================================
# Final Status Rules
# =============================================================================


def classify_trade_counts(counts: Mapping[TradeStatus, int]) -> BatchStatus:
    """
    Classify a fully terminal trade set given per-status counts.

    - zero trades -> FAILED (empty batch policy, pending product confirmation)
    - all SUCCESS -> SUCCESS
    - all FAILED -> FAILED
    - at least one SUCCESS and one FAILED/CANCELLED -> PARTIAL_SUCCESS
    - anything else (no SUCCESS at all) -> FAILED
    """
    total = sum(counts.values())
    if total == 0:
        return BatchStatus.FAILED

    success = counts.get(TradeStatus.SUCCESS, 0)
    failed = counts.get(TradeStatus.FAILED, 0)

    if success == total:
        return BatchStatus.SUCCESS
    if failed == total:
        return BatchStatus.FAILED
    if success > 0:
        return BatchStatus.PARTIAL_SUCCESS
    return BatchStatus.FAILED


def derive_final_status(statuses: Iterable[TradeStatus]) -> BatchStatus:
    """Same classification over a sequence of trade statuses."""
    return classify_trade_counts(Counter(statuses))
