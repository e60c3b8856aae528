"""
Batch Worker.

Long-running process wiring the store, gateway, event bus and notifier
together and running three supervised loops:

- dispatch: pick the next eligible batch and run it to completion
- sweep: clear expired leases so crashed workers' batches become eligible
- notify: deliver pending notification records
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable, Coroutine
from typing import Any

from batch_settlement.adapters.gateway import SimulatedGateway
from batch_settlement.adapters.messaging.event_bus import InMemoryEventBus
from batch_settlement.adapters.messaging.telegram import LogNotifier, TelegramAdapter
from batch_settlement.adapters.store.sqlite import SQLiteBatchStore
from batch_settlement.config.settings import Settings
from batch_settlement.domain.events import AlertEvent
from batch_settlement.domain.models import RunOutcome
from batch_settlement.observability.logging import LOG_TAG_BATCH, get_logger
from batch_settlement.ports.notification import NotificationPort
from batch_settlement.services.batch_service import BatchService
from batch_settlement.services.notifications.dispatcher import NotificationDispatcher

logger = get_logger(__name__)

MAX_RESTART_DELAY_SECONDS = 60.0


class BatchWorker:
    """Owns the infrastructure and background loops of one worker process."""

    def __init__(self, settings: Settings, holder_id: str | None = None):
        self.settings = settings
        self._holder_id = holder_id

        self.store: SQLiteBatchStore | None = None
        self.event_bus: InMemoryEventBus | None = None
        self.gateway: SimulatedGateway | None = None
        self.notifier: NotificationPort | None = None
        self.service: BatchService | None = None
        self.dispatcher: NotificationDispatcher | None = None

        self._running = False
        self._stopping = False
        self._shutdown_event = asyncio.Event()
        self._tasks: dict[str, asyncio.Task] = {}
        self._task_factories: dict[str, Callable[[], Coroutine[Any, Any, None]]] = {}
        self._task_restart_attempts: dict[str, int] = {}

        self._stats = {
            "batches_run": 0,
            "batches_busy": 0,
            "locks_swept": 0,
            "notifications_delivered": 0,
            "errors": 0,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        if self._running:
            return

        logger.info("Starting batch worker...")
        self._shutdown_event.clear()
        self._stopping = False

        self.store = SQLiteBatchStore(self.settings)
        await self.store.initialize()

        self.event_bus = InMemoryEventBus()
        await self.event_bus.start()

        self.gateway = SimulatedGateway(self.settings.gateway)
        self.notifier = self._build_notifier()

        self.service = BatchService(self.settings, self.store, self.gateway, self.event_bus, self._holder_id)
        self.dispatcher = NotificationDispatcher(
            self.store,
            self.notifier,
            self.event_bus,
            batch_size=self.settings.worker.notification_batch_size,
        )
        await self.dispatcher.start()

        self._task_factories = {
            "dispatch": self._dispatch_loop,
            "sweep": self._sweep_loop,
            "notify": self._notification_loop,
        }
        for name, factory in self._task_factories.items():
            self._tasks[name] = self._create_task(factory(), name)

        self._running = True
        logger.info(f"Batch worker started (holder={self.service.holder_id})")

    async def stop(self) -> None:
        if not self._running and self.store is None:
            return

        logger.info("Stopping batch worker...")
        self._stopping = True
        self._shutdown_event.set()

        await self._cancel_all_tasks()

        if self.dispatcher is not None:
            await self.dispatcher.stop()
        if self.gateway is not None:
            await self.gateway.close()
        if self.event_bus is not None:
            await self.event_bus.stop()
        if self.store is not None:
            await self.store.close()
            self.store = None

        self._running = False
        logger.info(f"Batch worker stopped: {self._stats}")

    def _build_notifier(self) -> NotificationPort:
        telegram = TelegramAdapter(self.settings.telegram)
        if telegram.configured:
            return telegram
        logger.info("Telegram not configured, notifications go to the log")
        return LogNotifier()

    # =========================================================================
    # Loops
    # =========================================================================

    async def _dispatch_loop(self) -> None:
        """Run eligible batches one at a time, backing off when the queue is empty."""
        poll = float(self.settings.worker.poll_interval_seconds)
        idle = float(self.settings.worker.idle_backoff_seconds)

        while not self._shutdown_event.is_set():
            batch_id = await self.service.next_eligible_batch()
            if batch_id is None:
                await self._sleep(idle)
                continue

            result = await self.service.run_batch(batch_id)
            if result.outcome == RunOutcome.BUSY:
                # Lost the race to another worker; it is theirs now
                self._stats["batches_busy"] += 1
            else:
                self._stats["batches_run"] += 1
                logger.info(
                    f"{LOG_TAG_BATCH} Batch {batch_id} run ended: {result.outcome.value} ({result.message})",
                    extra={"batch_id": batch_id, "status": result.status.value if result.status else ""},
                )
            await self._sleep(poll)

    async def _sweep_loop(self) -> None:
        interval = float(self.settings.locking.sweep_interval_seconds)
        while not self._shutdown_event.is_set():
            self._stats["locks_swept"] += await self.service.sweep_expired_locks()
            await self._sleep(interval)

    async def _notification_loop(self) -> None:
        interval = float(self.settings.worker.notification_interval_seconds)
        while not self._shutdown_event.is_set():
            self._stats["notifications_delivered"] += await self.dispatcher.dispatch_pending()
            await self._sleep(interval)

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early on shutdown."""
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)

    # =========================================================================
    # Task supervision
    # =========================================================================

    def _create_task(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(lambda t: self._handle_task_done(t, name))
        return task

    def _handle_task_done(self, task: asyncio.Task, name: str) -> None:
        if task.cancelled():
            logger.debug(f"Task {name} cancelled")
            return

        exc = task.exception()
        if self._stopping or self._shutdown_event.is_set():
            if exc:
                logger.debug(f"Task {name} ended during shutdown: {exc}")
            return

        # Loops only end on shutdown
        self._stats["errors"] += 1
        if exc:
            logger.error(f"Task {name} failed with exception: {exc}", exc_info=exc)
            reason = f"exception: {type(exc).__name__}: {exc}"
        else:
            logger.error(f"Task {name} completed unexpectedly")
            reason = "unexpected completion"

        attempts = self._task_restart_attempts.get(name, 0) + 1
        self._task_restart_attempts[name] = attempts
        delay = min(MAX_RESTART_DELAY_SECONDS, 2.0 ** min(attempts, 6))

        self._tasks[f"restart_{name}"] = asyncio.get_running_loop().create_task(
            self._restart_task_after_delay(name, delay, reason), name=f"restart_{name}"
        )

    async def _restart_task_after_delay(self, name: str, delay_seconds: float, reason: str) -> None:
        await self._sleep(delay_seconds)
        if self._stopping or self._shutdown_event.is_set():
            return

        logger.warning(f"Restarting task {name} after {delay_seconds:.1f}s (reason={reason})")
        if self.event_bus is not None:
            await self.event_bus.publish(
                AlertEvent(
                    level="ERROR",
                    message=f"Worker task restarted: {name}",
                    details={"attempts": self._task_restart_attempts.get(name, 0), "reason": reason},
                )
            )
        self._tasks[name] = self._create_task(self._task_factories[name](), name)

    async def _cancel_all_tasks(self) -> None:
        if not self._tasks:
            return

        logger.info(f"Cancelling {len(self._tasks)} tasks...")
        for task in self._tasks.values():
            if not task.done():
                task.cancel()

        results = await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        for name, result in zip(self._tasks.keys(), results, strict=True):
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                logger.error(f"Task {name} exception during cancel: {result}")

        self._tasks.clear()
