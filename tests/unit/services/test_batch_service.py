"""
Unit tests for BatchService management operations: staging, cancellation,
summaries, error reports, deletion and notification bookkeeping.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from batch_settlement.domain.errors import (
    BatchActiveError,
    BatchNotFoundError,
    ExecutionRejectedError,
    UnknownStatusError,
    ValidationError,
)
from batch_settlement.domain.models import (
    BatchStatus,
    Client,
    NewTrade,
    NotificationType,
    RunOutcome,
    TradeStatus,
    utc_now,
)
from tests.mocks import new_trades


class TestCreateBatch:
    async def test_defaults(self, service):
        batch = await service.create_batch(new_trades(2))

        assert batch.status == BatchStatus.PENDING
        assert batch.batch_uid.startswith("batch_")
        assert batch.priority == 5
        assert batch.max_concurrent_trades == 5
        assert batch.total_trades == 2

    async def test_priority_is_clamped(self, service):
        assert (await service.create_batch(new_trades(1), priority=42)).priority == 10
        assert (await service.create_batch(new_trades(1), priority=-1)).priority == 1

    async def test_explicit_uid_and_lookup(self, service):
        batch = await service.create_batch(new_trades(1), batch_uid="batch_payroll_2026_01")

        found = await service.get_batch_by_uid("batch_payroll_2026_01")
        assert found.batch_id == batch.batch_id

    async def test_invalid_input(self, service):
        with pytest.raises(ValidationError):
            await service.create_batch([NewTrade(client_ref="", amount=Decimal("1"))])
        with pytest.raises(ValidationError):
            await service.create_batch(new_trades(1), max_concurrent_trades=0)

    async def test_get_unknown_batch(self, service):
        with pytest.raises(BatchNotFoundError):
            await service.get_batch(404)
        with pytest.raises(BatchNotFoundError):
            await service.list_batch_trades(404)


class TestCancelBatch:
    async def test_cancel_pending_batch(self, service, store):
        batch = await service.create_batch(new_trades(3))

        result = await service.cancel_batch(batch.batch_id)

        assert result.outcome == RunOutcome.CANCELLED
        assert result.status == BatchStatus.CANCELLED
        cancelled = await store.get_batch(batch.batch_id)
        assert cancelled.status == BatchStatus.CANCELLED
        assert cancelled.completed_at is not None
        assert cancelled.processed_trades == 3
        assert all(t.status == TradeStatus.CANCELLED for t in await store.list_trades_by_batch(batch.batch_id))
        assert [n.event_type for n in await store.list_notifications(batch.batch_id)] == [
            NotificationType.STATUS_CHANGE,
            NotificationType.CANCELLED,
        ]

    async def test_cancel_terminal_batch_is_a_no_op(self, service, store, client):
        batch = await service.create_batch(new_trades(1))
        await service.run_batch(batch.batch_id)
        notifications_before = len(await store.list_notifications(batch.batch_id))

        result = await service.cancel_batch(batch.batch_id)

        assert result.outcome == RunOutcome.ALREADY_TERMINAL
        assert result.status == BatchStatus.SUCCESS
        assert len(await store.list_notifications(batch.batch_id)) == notifications_before

    async def test_cancelled_batch_cannot_be_run(self, service, store, gateway):
        batch = await service.create_batch(new_trades(2))
        await service.cancel_batch(batch.batch_id)

        result = await service.run_batch(batch.batch_id)

        assert result.outcome == RunOutcome.ALREADY_TERMINAL
        assert gateway.calls == []

    async def test_cancel_unknown_batch(self, service):
        with pytest.raises(BatchNotFoundError):
            await service.cancel_batch(404)


class TestReports:
    async def test_summary(self, service, client):
        batch = await service.create_batch(new_trades(2, amount="1000.25"))
        await service.run_batch(batch.batch_id)

        summary = await service.get_batch_summary(batch.batch_id)

        assert summary["status"] == "SUCCESS"
        assert summary["total_trades"] == 2
        assert summary["success_count"] == 2
        assert summary["failed_count"] == 0
        assert summary["pending_count"] == 0
        assert summary["total_amount"] == "2000.50"
        assert summary["progress_percentage"] == 100.0

    async def test_errors_grouped_by_message(self, service, store, client, gateway):
        batch = await service.create_batch(new_trades(3))
        t1, t2, t3 = await store.list_trades_by_batch(batch.batch_id)
        gateway.execute_errors[t1.trade_id] = ExecutionRejectedError("declined")
        gateway.execute_errors[t2.trade_id] = ExecutionRejectedError("declined")
        await service.run_batch(batch.batch_id)

        errors = await service.get_batch_errors(batch.batch_id)

        assert errors["total_failed"] == 2
        assert errors["error_summary"] == [{"message": "declined", "count": 2}]
        assert {t.trade_id for t in errors["failed_trades"]} == {t1.trade_id, t2.trade_id}

    async def test_progress_snapshot(self, service):
        batch = await service.create_batch(new_trades(4))

        progress = await service.get_progress(batch.batch_id)

        assert progress.status == BatchStatus.PENDING
        assert (progress.total, progress.processed, progress.percent) == (4, 0, 0.0)

    async def test_active_and_recent_lists(self, service, client):
        done = await service.create_batch(new_trades(1))
        waiting = await service.create_batch(new_trades(1))
        await service.run_batch(done.batch_id)

        assert [b.batch_id for b in await service.list_active_batches()] == [waiting.batch_id]
        assert [b.batch_id for b in await service.list_recent_completed()] == [done.batch_id]


class TestSearchAndResults:
    async def test_search_filters_by_status_and_paginates(self, service):
        ids = [(await service.create_batch(new_trades(1))).batch_id for _ in range(5)]
        cancelled = await service.create_batch(new_trades(1))
        await service.cancel_batch(cancelled.batch_id)

        page = await service.search_batches(status=BatchStatus.PENDING, page=2, limit=2, sort_order="asc")

        assert [b.batch_id for b in page["batches"]] == ids[2:4]
        assert page["pagination"] == {
            "current_page": 2,
            "total_pages": 3,
            "total_records": 5,
            "limit": 2,
            "has_next": True,
            "has_prev": True,
        }
        assert page["sort"] == {"field": "created_at", "order": "ASC"}

        only_cancelled = await service.search_batches(status="CANCELLED")
        assert [b.batch_id for b in only_cancelled["batches"]] == [cancelled.batch_id]

    async def test_search_by_creation_day(self, service):
        batch = await service.create_batch(new_trades(1))
        today = utc_now().date()

        same_day = await service.search_batches(date_from=today, date_to=today)
        before = await service.search_batches(date_to=today - timedelta(days=1))
        after = await service.search_batches(date_from=today + timedelta(days=1))

        assert [b.batch_id for b in same_day["batches"]] == [batch.batch_id]
        assert before["pagination"]["total_records"] == 0
        assert after["batches"] == []
        assert after["pagination"]["has_next"] is False

    async def test_search_sort_and_input_validation(self, service):
        await service.create_batch(new_trades(1))

        result = await service.search_batches(sort_by="id; DROP TABLE batches")

        assert result["sort"] == {"field": "created_at", "order": "DESC"}
        assert result["pagination"]["total_records"] == 1
        with pytest.raises(ValidationError):
            await service.search_batches(page=0)
        with pytest.raises(UnknownStatusError):
            await service.search_batches(status="DONE")

    async def test_results_list_every_trade(self, service, store, client, gateway):
        batch = await service.create_batch(new_trades(2, amount="12.50"))
        first, second = await store.list_trades_by_batch(batch.batch_id)
        gateway.execute_errors[second.trade_id] = ExecutionRejectedError("declined")
        await service.run_batch(batch.batch_id)

        results = await service.get_batch_results(batch.batch_id)

        assert results["batch"]["status"] == "PARTIAL_SUCCESS"
        assert [t["trade_id"] for t in results["trades"]] == [first.trade_id, second.trade_id]
        assert [t["status"] for t in results["trades"]] == ["SUCCESS", "FAILED"]
        assert results["trades"][0]["amount"] == "12.50"
        assert results["trades"][0]["settlement_reference"] == f"deal_test_{first.trade_id}"
        assert results["trades"][1]["status_message"] == "declined"
        assert results["progress"]["processed"] == 2
        assert results["progress"]["failed"] == 1

    async def test_results_of_unknown_batch(self, service):
        with pytest.raises(BatchNotFoundError):
            await service.get_batch_results(4242)


class TestDeleteAndQueue:
    async def test_delete_active_batch_rejected(self, service):
        batch = await service.create_batch(new_trades(1))

        with pytest.raises(BatchActiveError, match="Cancel it first"):
            await service.delete_batch(batch.batch_id)

    async def test_delete_terminal_batch(self, service):
        batch = await service.create_batch(new_trades(1))
        await service.cancel_batch(batch.batch_id)

        await service.delete_batch(batch.batch_id)

        assert await service.get_batch_by_uid(batch.batch_uid) is None

    async def test_next_eligible_and_priority(self, service):
        first = await service.create_batch(new_trades(1))
        second = await service.create_batch(new_trades(1))
        assert await service.next_eligible_batch() == first.batch_id

        assert await service.set_priority(second.batch_id, 9) == 9
        assert await service.next_eligible_batch() == second.batch_id


class TestNotificationsAndClients:
    async def test_mark_delivered(self, service):
        batch = await service.create_batch(new_trades(1))
        await service.cancel_batch(batch.batch_id)

        pending = await service.list_pending_notifications()
        assert len(pending) == 2

        assert await service.mark_notification_delivered(pending[0].notification_id)
        assert not await service.mark_notification_delivered(pending[0].notification_id)
        assert len(await service.list_pending_notifications()) == 1

    async def test_upsert_client_requires_ref(self, service, store):
        with pytest.raises(ValidationError):
            await service.upsert_client(Client(client_ref=""))

        await service.upsert_client(Client(client_ref="CL-NEW", account_number="ACC"))
        assert (await store.get_client("CL-NEW")).account_number == "ACC"
