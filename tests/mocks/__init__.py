"""Test doubles for the settlement gateway and notification channel."""

from tests.mocks.factories import make_settings, new_trades, stage_batch
from tests.mocks.gateway import GatewayCall, RecordingNotifier, ScriptedGateway

__all__ = ["GatewayCall", "RecordingNotifier", "ScriptedGateway", "make_settings", "new_trades", "stage_batch"]
