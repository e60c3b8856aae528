"""
Gateway and Notifier Mocks for Testing.

Deterministic stand-ins so service tests can script per-trade outcomes and
observe how many calls overlapped.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal

from batch_settlement.domain.models import Client, Quote, Settlement, Trade
from batch_settlement.ports.gateway import SettlementGatewayPort


@dataclass
class GatewayCall:
    kind: str
    trade_id: int


class ScriptedGateway(SettlementGatewayPort):
    """
    Gateway whose outcome is scripted per trade id.

    quote_errors / execute_errors map a trade id to the exception to raise.
    Trades in `hang` block forever on execute (for timeout tests).
    """

    def __init__(
        self,
        *,
        quote_errors: dict[int, Exception] | None = None,
        execute_errors: dict[int, Exception] | None = None,
        hang: set[int] | None = None,
        delay: float = 0.0,
        rate: Decimal = Decimal("18.5000"),
    ):
        self.quote_errors = quote_errors or {}
        self.execute_errors = execute_errors or {}
        self.hang = hang or set()
        self.delay = delay
        self.rate = rate
        self.calls: list[GatewayCall] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False
        # Set by tests to run a hook once a given trade enters execute
        self.on_execute: dict[int, asyncio.Event] = {}
        self.release_execute: dict[int, asyncio.Event] = {}

    async def quote(self, trade: Trade, client: Client) -> Quote:
        self.calls.append(GatewayCall("quote", trade.trade_id))
        if trade.trade_id in self.quote_errors:
            raise self.quote_errors[trade.trade_id]
        return Quote(quote_id=f"quote_test_{trade.trade_id}", rate=self.rate)

    async def execute(self, trade: Trade, quote: Quote) -> Settlement:
        self.calls.append(GatewayCall("execute", trade.trade_id))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if trade.trade_id in self.on_execute:
                self.on_execute[trade.trade_id].set()
            if trade.trade_id in self.release_execute:
                await self.release_execute[trade.trade_id].wait()
            if trade.trade_id in self.hang:
                await asyncio.Event().wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if trade.trade_id in self.execute_errors:
                raise self.execute_errors[trade.trade_id]
            return Settlement(settlement_id=f"trxn_test_{trade.trade_id}", reference=f"deal_test_{trade.trade_id}")
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        self.closed = True

    def calls_of(self, kind: str) -> list[int]:
        return [c.trade_id for c in self.calls if c.kind == kind]


@dataclass
class RecordingNotifier:
    """NotificationPort that records messages; can be told to fail."""

    fail: bool = False
    messages: list[str] = field(default_factory=list)
    started: bool = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def send_message(self, message: str) -> bool:
        if self.fail:
            return False
        self.messages.append(message)
        return True
