"""
Settlement gateway adapters.
"""

from __future__ import annotations

from batch_settlement.adapters.gateway.simulated import SimulatedGateway

__all__ = ["SimulatedGateway"]
