"""
Ports: Abstract interfaces for external dependencies.

Business logic depends only on these interfaces, not on concrete adapters.
"""

from batch_settlement.ports.event_bus import EventBusPort
from batch_settlement.ports.gateway import SettlementGatewayPort
from batch_settlement.ports.notification import NotificationPort
from batch_settlement.ports.store import BatchStorePort

__all__ = ["BatchStorePort", "SettlementGatewayPort", "EventBusPort", "NotificationPort"]
