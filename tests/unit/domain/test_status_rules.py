"""
Unit tests for status transition tables and final-status classification.

OFFLINE-FIRST: pure functions, no store or event loop required.
"""

from __future__ import annotations

import itertools

import pytest

from batch_settlement.domain.errors import InvalidTransitionError, StateMachineError, UnknownStatusError
from batch_settlement.domain.models import BatchStatus, TradeStatus
from batch_settlement.domain.rules import (
    BATCH_TABLE,
    TRADE_TABLE,
    classify_trade_counts,
    derive_final_status,
    transition,
)

# =============================================================================
# Transition Tables
# =============================================================================

LEGAL_BATCH_MOVES = {
    (BatchStatus.PENDING, BatchStatus.RUNNING),
    (BatchStatus.PENDING, BatchStatus.CANCELLED),
    (BatchStatus.RUNNING, BatchStatus.SUCCESS),
    (BatchStatus.RUNNING, BatchStatus.PARTIAL_SUCCESS),
    (BatchStatus.RUNNING, BatchStatus.FAILED),
    (BatchStatus.RUNNING, BatchStatus.CANCELLED),
}

OPEN_TRADE_STATUSES = (TradeStatus.PENDING, TradeStatus.QUOTED, TradeStatus.EXECUTING)

LEGAL_TRADE_MOVES = {
    (TradeStatus.PENDING, TradeStatus.QUOTED),
    (TradeStatus.QUOTED, TradeStatus.EXECUTING),
    (TradeStatus.EXECUTING, TradeStatus.SUCCESS),
    *((s, TradeStatus.FAILED) for s in OPEN_TRADE_STATUSES),
    *((s, TradeStatus.CANCELLED) for s in OPEN_TRADE_STATUSES),
}


class TestEveryStatusPair:
    @pytest.mark.parametrize(("from_status", "to_status"), list(itertools.product(BatchStatus, BatchStatus)))
    def test_batch_pair(self, from_status, to_status):
        if (from_status, to_status) in LEGAL_BATCH_MOVES:
            assert BATCH_TABLE.transition(from_status, to_status) == to_status
        else:
            with pytest.raises(InvalidTransitionError):
                BATCH_TABLE.transition(from_status, to_status)

    @pytest.mark.parametrize(("from_status", "to_status"), list(itertools.product(TradeStatus, TradeStatus)))
    def test_trade_pair(self, from_status, to_status):
        if (from_status, to_status) in LEGAL_TRADE_MOVES:
            assert TRADE_TABLE.transition(from_status, to_status) == to_status
        else:
            with pytest.raises(InvalidTransitionError):
                TRADE_TABLE.transition(from_status, to_status)


class TestBatchTransitions:
    @pytest.mark.parametrize(
        ("from_status", "to_status"),
        [
            (BatchStatus.PENDING, BatchStatus.RUNNING),
            (BatchStatus.PENDING, BatchStatus.CANCELLED),
            (BatchStatus.RUNNING, BatchStatus.SUCCESS),
            (BatchStatus.RUNNING, BatchStatus.PARTIAL_SUCCESS),
            (BatchStatus.RUNNING, BatchStatus.FAILED),
            (BatchStatus.RUNNING, BatchStatus.CANCELLED),
        ],
    )
    def test_allowed_moves(self, from_status, to_status):
        assert BATCH_TABLE.transition(from_status, to_status) == to_status

    def test_pending_cannot_jump_to_success(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            BATCH_TABLE.transition(BatchStatus.PENDING, BatchStatus.SUCCESS)

        assert exc_info.value.from_status == "PENDING"
        assert exc_info.value.to_status == "SUCCESS"
        assert exc_info.value.error_code == "INVALID_TRANSITION"

    @pytest.mark.parametrize(
        "terminal",
        [BatchStatus.SUCCESS, BatchStatus.PARTIAL_SUCCESS, BatchStatus.FAILED, BatchStatus.CANCELLED],
    )
    def test_terminal_statuses_allow_nothing(self, terminal):
        assert BATCH_TABLE.allowed(terminal) == frozenset()
        assert BATCH_TABLE.is_terminal(terminal)
        assert terminal.is_terminal()
        with pytest.raises(InvalidTransitionError):
            BATCH_TABLE.transition(terminal, BatchStatus.RUNNING)

    def test_self_transition_is_rejected(self):
        """No state transitions to itself; re-applying a status is an error, not a no-op."""
        with pytest.raises(InvalidTransitionError):
            BATCH_TABLE.transition(BatchStatus.RUNNING, BatchStatus.RUNNING)

    def test_string_values_are_coerced(self):
        assert BATCH_TABLE.transition("PENDING", "RUNNING") is BatchStatus.RUNNING

    def test_unknown_status_raises(self):
        with pytest.raises(UnknownStatusError) as exc_info:
            BATCH_TABLE.transition("PAUSED", BatchStatus.RUNNING)

        assert isinstance(exc_info.value, StateMachineError)
        assert exc_info.value.value == "PAUSED"


class TestTradeTransitions:
    def test_happy_path(self):
        assert TRADE_TABLE.transition(TradeStatus.PENDING, TradeStatus.QUOTED) is TradeStatus.QUOTED
        assert TRADE_TABLE.transition(TradeStatus.QUOTED, TradeStatus.EXECUTING) is TradeStatus.EXECUTING
        assert TRADE_TABLE.transition(TradeStatus.EXECUTING, TradeStatus.SUCCESS) is TradeStatus.SUCCESS

    @pytest.mark.parametrize("from_status", [TradeStatus.PENDING, TradeStatus.QUOTED, TradeStatus.EXECUTING])
    def test_every_open_status_can_fail_or_cancel(self, from_status):
        assert TRADE_TABLE.is_valid(from_status, TradeStatus.FAILED)
        assert TRADE_TABLE.is_valid(from_status, TradeStatus.CANCELLED)

    def test_pending_cannot_skip_quote(self):
        with pytest.raises(InvalidTransitionError):
            TRADE_TABLE.transition(TradeStatus.PENDING, TradeStatus.EXECUTING)

    def test_success_is_final(self):
        with pytest.raises(InvalidTransitionError):
            TRADE_TABLE.transition(TradeStatus.SUCCESS, TradeStatus.FAILED)

    def test_module_level_entry_point(self):
        assert transition("trade", "PENDING", "QUOTED") is TradeStatus.QUOTED
        assert transition("batch", "RUNNING", "FAILED") is BatchStatus.FAILED

        with pytest.raises(ValueError):
            transition("order", "PENDING", "QUOTED")


# =============================================================================
# Final Status Classification
# =============================================================================


class TestFinalStatus:
    def test_all_success(self):
        assert derive_final_status([TradeStatus.SUCCESS] * 3) is BatchStatus.SUCCESS

    def test_all_failed(self):
        assert derive_final_status([TradeStatus.FAILED] * 2) is BatchStatus.FAILED

    def test_mixed_success_and_failure(self):
        statuses = [TradeStatus.SUCCESS, TradeStatus.SUCCESS, TradeStatus.FAILED]
        assert derive_final_status(statuses) is BatchStatus.PARTIAL_SUCCESS

    def test_success_with_cancelled_is_partial(self):
        assert derive_final_status([TradeStatus.SUCCESS, TradeStatus.CANCELLED]) is BatchStatus.PARTIAL_SUCCESS

    def test_no_success_at_all_is_failed(self):
        assert derive_final_status([TradeStatus.FAILED, TradeStatus.CANCELLED]) is BatchStatus.FAILED
        assert derive_final_status([TradeStatus.CANCELLED]) is BatchStatus.FAILED

    def test_empty_batch_is_failed(self):
        assert derive_final_status([]) is BatchStatus.FAILED
        assert classify_trade_counts({}) is BatchStatus.FAILED

    def test_counts_with_zero_entries(self):
        counts = {status: 0 for status in TradeStatus}
        counts[TradeStatus.SUCCESS] = 4
        assert classify_trade_counts(counts) is BatchStatus.SUCCESS
