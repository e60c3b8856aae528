"""
Settlement Gateway Port.

The core only relies on the shape of the two calls; authentication and wire
format belong to the concrete adapter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from batch_settlement.domain.models import Client, Quote, Settlement, Trade


class SettlementGatewayPort(ABC):
    """Abstract interface for the external settlement gateway."""

    @abstractmethod
    async def quote(self, trade: Trade, client: Client) -> Quote:
        """
        Request a quote for the trade.

        Raises:
            GatewayError: the gateway rejected or failed the request.
        """
        ...

    @abstractmethod
    async def execute(self, trade: Trade, quote: Quote) -> Settlement:
        """
        Commit a quoted trade.

        Raises:
            GatewayError: the gateway rejected or failed the execution.
        """
        ...

    async def close(self) -> None:
        """Release adapter resources (optional)."""
        return None
