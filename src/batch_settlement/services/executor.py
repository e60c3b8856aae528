"""
Trade Executor.

Drives one trade through the settlement pipeline:

    PENDING --quote--> QUOTED --reserve--> EXECUTING --execute--> SUCCESS
       |                  |                    |
       +------------------+--------------------+--> FAILED

Every status write is a compare-and-set on the expected current status, so a
trade cancelled concurrently is never overwritten and a terminal trade is
never touched again. Gateway failures (including timeouts) are recovered
locally as FAILED; a single trade's failure never aborts the batch.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Any, TypeVar

from batch_settlement.domain.errors import (
    GatewayError,
    GatewayTimeoutError,
    NotFoundError,
    PersistenceError,
    StateMachineError,
    TradeNotFoundError,
)
from batch_settlement.domain.events import TradeFailed, TradeSettled
from batch_settlement.domain.models import Trade, TradeStatus
from batch_settlement.domain.rules import TRADE_TABLE
from batch_settlement.observability.logging import LOG_TAG_TRADE, get_logger
from batch_settlement.observability.metrics import track_trade_duration
from batch_settlement.ports.event_bus import EventBusPort
from batch_settlement.ports.gateway import SettlementGatewayPort
from batch_settlement.ports.store import BatchStorePort
from batch_settlement.services.progress import ProgressAggregator

logger = get_logger(__name__)

T = TypeVar("T")

MSG_CLIENT_NOT_FOUND = "client not found"
MSG_CLIENT_INACTIVE = "client inactive"
MSG_GATEWAY_TIMEOUT = "gateway timeout"
MSG_UNEXPECTED = "Unexpected error during trade processing"


class TradeExecutor:
    def __init__(
        self,
        store: BatchStorePort,
        gateway: SettlementGatewayPort,
        progress: ProgressAggregator,
        gateway_timeout: float | None = None,
        event_bus: EventBusPort | None = None,
    ):
        self.store = store
        self.gateway = gateway
        self.progress = progress
        self.gateway_timeout = gateway_timeout
        self.event_bus = event_bus

    async def execute(self, trade: Trade) -> TradeStatus:
        """
        Run the pipeline for one trade and return its resulting status.

        Raises only PersistenceError, NotFoundError and state machine errors; everything
        else ends as a FAILED trade.
        """
        log_extra = {"batch_id": trade.batch_id, "trade_id": trade.trade_id}

        with track_trade_duration() as ctx:
            try:
                status = await self._run_pipeline(trade)
            except (PersistenceError, StateMachineError, NotFoundError):
                raise
            except Exception as e:
                logger.exception(f"{LOG_TAG_TRADE} Trade {trade.trade_id} crashed: {e}", extra=log_extra)
                status = await self._fail_from_current(trade, MSG_UNEXPECTED)

            if status.is_terminal():
                ctx["status"] = status.value
                await self.progress.recompute(trade.batch_id)

        return status

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _run_pipeline(self, trade: Trade) -> TradeStatus:
        current = await self.store.get_trade(trade.trade_id)
        if current is None:
            raise TradeNotFoundError(trade.trade_id, batch_id=trade.batch_id)
        if current.status != TradeStatus.PENDING:
            # Cancelled (or already handled) before we got to it
            return current.status
        trade = current

        client = await self.store.get_client(trade.client_ref)
        if client is None:
            return await self._fail(trade, TradeStatus.PENDING, MSG_CLIENT_NOT_FOUND)
        if not client.active:
            return await self._fail(trade, TradeStatus.PENDING, MSG_CLIENT_INACTIVE)

        try:
            quote = await self._call_gateway(self.gateway.quote(trade, client))
        except GatewayError as e:
            return await self._fail(trade, TradeStatus.PENDING, e.message)

        if not await self._move(
            trade, TradeStatus.PENDING, TradeStatus.QUOTED, {"quote_id": quote.quote_id, "quote_rate": quote.rate}
        ):
            return await self._current_status(trade)

        if not await self._move(trade, TradeStatus.QUOTED, TradeStatus.EXECUTING):
            return await self._current_status(trade)

        try:
            settlement = await self._call_gateway(self.gateway.execute(trade, quote))
        except GatewayError as e:
            return await self._fail(trade, TradeStatus.EXECUTING, e.message)

        if not await self._move(
            trade,
            TradeStatus.EXECUTING,
            TradeStatus.SUCCESS,
            {
                "settlement_id": settlement.settlement_id,
                "settlement_reference": settlement.reference,
                "status_message": "",
            },
        ):
            return await self._current_status(trade)

        logger.info(
            f"{LOG_TAG_TRADE} Trade {trade.trade_id} settled ({settlement.settlement_id})",
            extra={"batch_id": trade.batch_id, "trade_id": trade.trade_id, "status": TradeStatus.SUCCESS.value},
        )
        await self._publish(
            TradeSettled(
                trade_id=trade.trade_id,
                batch_id=trade.batch_id,
                settlement_id=settlement.settlement_id,
                reference=settlement.reference,
            )
        )
        return TradeStatus.SUCCESS

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _call_gateway(self, call: Awaitable[T]) -> T:
        if self.gateway_timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.gateway_timeout)
        except TimeoutError:
            raise GatewayTimeoutError(MSG_GATEWAY_TIMEOUT) from None

    async def _move(
        self,
        trade: Trade,
        from_status: TradeStatus,
        to_status: TradeStatus,
        updates: dict[str, Any] | None = None,
    ) -> bool:
        TRADE_TABLE.transition(from_status, to_status)
        return await self.store.transition_trade(trade.trade_id, from_status, to_status, updates)

    async def _fail(self, trade: Trade, from_status: TradeStatus, message: str) -> TradeStatus:
        if not await self._move(trade, from_status, TradeStatus.FAILED, {"status_message": message}):
            return await self._current_status(trade)

        logger.warning(
            f"{LOG_TAG_TRADE} Trade {trade.trade_id} failed: {message}",
            extra={"batch_id": trade.batch_id, "trade_id": trade.trade_id, "status": TradeStatus.FAILED.value},
        )
        await self._publish(
            TradeFailed(trade_id=trade.trade_id, batch_id=trade.batch_id, from_status=from_status, reason=message)
        )
        return TradeStatus.FAILED

    async def _fail_from_current(self, trade: Trade, message: str) -> TradeStatus:
        current = await self._current_status(trade)
        if current.is_terminal():
            return current
        return await self._fail(trade, current, message)

    async def _current_status(self, trade: Trade) -> TradeStatus:
        current = await self.store.get_trade(trade.trade_id)
        if current is None:
            raise TradeNotFoundError(trade.trade_id, batch_id=trade.batch_id)
        return current.status

    async def _publish(self, event: TradeSettled | TradeFailed) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event)
