"""
Event Bus Port: Abstract interface for pub/sub of domain events.

Decouples notification recording from delivery and metrics hooks.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TypeVar

from batch_settlement.domain.events import DomainEvent

E = TypeVar("E", bound=DomainEvent)
EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventBusPort(ABC):
    """Publish/subscribe for domain events."""

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    def subscribe(self, event_type: type[E], handler: Callable[[E], Awaitable[None]]) -> None:
        """Register an async handler for an event class."""
        ...

    @abstractmethod
    def unsubscribe(self, event_type: type[E], handler: Callable[[E], Awaitable[None]]) -> None:
        ...

    @abstractmethod
    async def publish(self, event: DomainEvent) -> None:
        """Deliver an event to every subscriber of its type."""
        ...
