"""
Unit tests for logging (masking, JSON context, console tags) and metric helpers.
"""

from __future__ import annotations

import json
import logging

from batch_settlement.observability.logging import (
    LOG_TAG_BATCH,
    ConsoleFormatter,
    JSONFormatter,
    SensitiveDataFilter,
    setup_logging,
)
from batch_settlement.observability.metrics import (
    record_batch_run,
    record_lock_attempt,
    record_locks_swept,
    track_trade_duration,
    update_in_flight,
)
from tests.mocks import make_settings


def _record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("batch_settlement.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSensitiveDataFilter:
    def test_masks_bot_token(self):
        record = _record("POST https://api.telegram.org/bot123456789:AAAAAAAAAAAAAAAAAAAAAAAAAAAA/sendMessage")

        SensitiveDataFilter().filter(record)

        assert "AAAAAAAA" not in record.getMessage()
        assert "bot***MASKED***" in record.getMessage()

    def test_keeps_last_digits_of_account(self):
        record = _record("client CL-1 account_number=ACC-99881234 inactive")

        SensitiveDataFilter().filter(record)

        assert record.getMessage() == "client CL-1 account_number=****1234 inactive"

    def test_leaves_plain_messages_alone(self):
        record = _record("Batch %s running")
        record.args = (7,)

        SensitiveDataFilter().filter(record)

        assert record.getMessage() == "Batch 7 running"


class TestFormatters:
    def test_json_carries_context(self):
        line = JSONFormatter().format(_record("Trade 3 settled", batch_id=1, trade_id=3, status="SUCCESS"))

        data = json.loads(line)
        assert data["message"] == "Trade 3 settled"
        assert (data["batch_id"], data["trade_id"], data["status"]) == (1, 3, "SUCCESS")
        assert "holder_id" not in data

    def test_console_strips_tag_without_touching_record(self):
        record = _record(f"{LOG_TAG_BATCH} Batch 1 running")

        text = ConsoleFormatter().format(record)

        assert "[BATCH]" in text
        assert "Batch 1 running" in text
        assert record.getMessage() == f"{LOG_TAG_BATCH} Batch 1 running"


def test_setup_logging_replaces_handlers(tmp_path):
    settings = make_settings(logging={"json_enabled": True, "json_file": str(tmp_path / "log.jsonl")})
    root = logging.getLogger()
    saved = root.handlers[:], root.level
    try:
        setup_logging(settings)
        setup_logging(settings)

        assert len(root.handlers) == 2
        assert all(any(isinstance(f, SensitiveDataFilter) for f in h.filters) for h in root.handlers)
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in saved[0]:
            root.addHandler(handler)
        root.setLevel(saved[1])


def test_metric_helpers_accept_labels():
    record_batch_run("COMPLETED", "SUCCESS", 0.5)
    record_batch_run("BUSY")
    record_lock_attempt(True)
    record_lock_attempt(False)
    record_locks_swept(0)
    update_in_flight(1, 2)

    with track_trade_duration() as ctx:
        ctx["status"] = "SUCCESS"
