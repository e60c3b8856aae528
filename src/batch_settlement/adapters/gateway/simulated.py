"""
Simulated Settlement Gateway (paper mode).

Validates the same preconditions a real quote API would, returns a jittered
rate, and executes with a configurable success probability.
"""

from __future__ import annotations

import asyncio
import random
import time
from decimal import Decimal

from batch_settlement.config.settings import GatewaySettings
from batch_settlement.domain.errors import ExecutionRejectedError, QuoteRejectedError
from batch_settlement.domain.models import Client, Quote, Settlement, Trade
from batch_settlement.observability.logging import get_logger
from batch_settlement.ports.gateway import SettlementGatewayPort

logger = get_logger(__name__)

RATE_QUANTUM = Decimal("0.0001")


class SimulatedGateway(SettlementGatewayPort):
    """In-process stand-in for the bank's quote/execute API."""

    def __init__(self, settings: GatewaySettings):
        self.settings = settings
        self._rng = random.Random(settings.seed)

    async def _simulate_latency(self) -> None:
        if self.settings.latency_seconds > 0:
            await asyncio.sleep(float(self.settings.latency_seconds))

    async def quote(self, trade: Trade, client: Client) -> Quote:
        await self._simulate_latency()

        if trade.amount <= 0:
            raise QuoteRejectedError("Invalid amount", batch_id=trade.batch_id, trade_id=trade.trade_id)
        if not client.account_number:
            raise QuoteRejectedError(
                "Client has no settlement account", batch_id=trade.batch_id, trade_id=trade.trade_id
            )

        jitter = Decimal(str(self._rng.uniform(-1.0, 1.0))) * self.settings.rate_jitter
        rate = (self.settings.base_rate + jitter).quantize(RATE_QUANTUM)
        quote_id = f"quote_{int(time.time())}_{trade.trade_id}"

        logger.debug(f"Quoted trade {trade.trade_id} at {rate} ({quote_id})")
        return Quote(quote_id=quote_id, rate=rate)

    async def execute(self, trade: Trade, quote: Quote) -> Settlement:
        await self._simulate_latency()

        if self._rng.random() >= float(self.settings.success_rate):
            raise ExecutionRejectedError(
                "Trade execution failed (simulated)", batch_id=trade.batch_id, trade_id=trade.trade_id
            )

        stamp = int(time.time())
        return Settlement(
            settlement_id=f"trxn_{stamp}_{trade.trade_id}",
            reference=f"deal_{stamp}_{trade.trade_id}",
        )
