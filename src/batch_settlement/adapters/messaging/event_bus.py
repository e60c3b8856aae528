"""
In-Memory Event Bus Implementation.

Simple pub/sub for domain events. Handlers are async; a failing handler is
logged and never affects the publisher or the other handlers.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import TypeVar

from batch_settlement.domain.events import DomainEvent
from batch_settlement.observability.logging import get_logger
from batch_settlement.ports.event_bus import EventBusPort

logger = get_logger(__name__)

E = TypeVar("E", bound=DomainEvent)
Handler = Callable[[DomainEvent], Awaitable[None]]


class InMemoryEventBus(EventBusPort):
    """
    In-memory async event bus.

    Before start() (or after stop()) events are dispatched inline, which keeps
    one-shot CLI commands and tests deterministic. Once started, publish()
    only enqueues and a background task fans events out.
    """

    def __init__(self):
        self._handlers: dict[type[DomainEvent], list[Handler]] = defaultdict(list)
        self._running = False
        self._queue: asyncio.Queue[DomainEvent] = asyncio.Queue()
        self._processor_task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._processor_task = asyncio.create_task(self._process_events(), name="event_bus_processor")
        logger.debug("Event bus started")

    async def stop(self) -> None:
        """Stop the processor and drain whatever is still queued."""
        if not self._running:
            return

        self._running = False

        if self._processor_task:
            self._processor_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._processor_task
            self._processor_task = None

        while not self._queue.empty():
            await self._dispatch(self._queue.get_nowait())

        logger.debug("Event bus stopped")

    def subscribe(self, event_type: type[E], handler: Callable[[E], Awaitable[None]]) -> None:
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)  # type: ignore[arg-type]
        logger.debug(f"Subscribed to {event_type.__name__}")

    def unsubscribe(self, event_type: type[E], handler: Callable[[E], Awaitable[None]]) -> None:
        with contextlib.suppress(ValueError):
            self._handlers[event_type].remove(handler)  # type: ignore[arg-type]

    async def publish(self, event: DomainEvent) -> None:
        if not self._running:
            await self._dispatch(event)
            return

        await self._queue.put(event)

    def subscriber_count(self, event_type: type[DomainEvent]) -> int:
        return len(self._handlers.get(event_type, []))

    async def _process_events(self) -> None:
        while self._running:
            event = await self._queue.get()
            await self._dispatch(event)

    async def _dispatch(self, event: DomainEvent) -> None:
        handlers = list(self._handlers.get(type(event), []))
        if not handlers:
            return

        await asyncio.gather(*(self._safe_call(h, event) for h in handlers))

    async def _safe_call(self, handler: Handler, event: DomainEvent) -> None:
        try:
            await handler(event)
        except Exception as e:
            logger.exception(f"Event handler error for {event.event_type}: {e}")
