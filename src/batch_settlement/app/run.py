"""
Entry points for CLI commands.

Each command sets up the environment and runs the appropriate logic.

Exit codes: 0 = success, 1 = error, 2 = configuration error, 3 = batch busy.
"""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path
from typing import Any

# Load .env file BEFORE importing settings
from dotenv import load_dotenv

for env_path in [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent.parent / ".env",  # Project root
]:
    if env_path.exists():
        load_dotenv(env_path)
        break
else:
    load_dotenv()

from batch_settlement.config.settings import Settings, get_settings  # noqa: E402
from batch_settlement.domain.errors import DomainError  # noqa: E402
from batch_settlement.domain.models import RunOutcome, RunResult  # noqa: E402
from batch_settlement.observability.logging import get_logger, setup_logging  # noqa: E402

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_BUSY = 3


def _load_settings(env: str | None) -> Settings | None:
    """Load settings, set up logging and validate. Returns None on config errors."""
    settings = get_settings(env)
    setup_logging(settings)
    logger = get_logger(__name__)

    errors = settings.validate_for_run()
    if errors:
        for error in errors:
            logger.error(f"Config error: {error}")
        return None
    return settings


@asynccontextmanager
async def _open_service(settings: Settings, holder_id: str | None = None) -> AsyncIterator[Any]:
    """Short-lived service for one-shot commands (no background loops)."""
    from batch_settlement.adapters.gateway import SimulatedGateway
    from batch_settlement.adapters.store.sqlite import SQLiteBatchStore
    from batch_settlement.services.batch_service import BatchService

    store = SQLiteBatchStore(settings)
    gateway = SimulatedGateway(settings.gateway)
    await store.initialize()
    try:
        yield BatchService(settings, store, gateway, holder_id=holder_id)
    finally:
        await gateway.close()
        await store.close()


def _emit(data: dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, default=str))


def _result_dict(result: RunResult) -> dict[str, Any]:
    return {
        "batch_id": result.batch_id,
        "outcome": result.outcome.value,
        "status": result.status.value if result.status else None,
        "message": result.message,
    }


def _result_exit_code(result: RunResult) -> int:
    if result.outcome == RunOutcome.BUSY:
        return EXIT_BUSY
    return EXIT_OK


async def _run_command(env: str | None, command: Callable[[Any], Awaitable[int]], holder_id: str | None = None) -> int:
    settings = _load_settings(env)
    if settings is None:
        return EXIT_CONFIG

    logger = get_logger(__name__)
    try:
        async with _open_service(settings, holder_id) as service:
            return await command(service)
    except DomainError as e:
        logger.error(f"{e.error_code}: {e.message}")
        return EXIT_ERROR


# =============================================================================
# Long-running worker
# =============================================================================


async def run_worker(env: str | None = None, holder_id: str | None = None) -> int:
    """
    Run the batch worker until SIGINT/SIGTERM.

    Returns:
        Exit code: 0 = clean stop, 1 = fatal error, 2 = configuration error.
    """
    settings = _load_settings(env)
    if settings is None:
        return EXIT_CONFIG
    logger = get_logger(__name__)

    logger.warning("========================================================")
    logger.warning("STARTING BATCH WORKER")
    logger.warning(
        f"env={settings.env} | db={settings.database.path} | telegram={settings.telegram.enabled} | "
        f"lock_ttl={settings.locking.ttl_seconds}s | "
        f"max_concurrent={settings.execution.default_max_concurrent_trades}"
    )
    logger.warning("========================================================")

    from batch_settlement.app.worker import BatchWorker

    worker = BatchWorker(settings, holder_id=holder_id)

    shutdown_event = asyncio.Event()
    received_signal: list[str] = []

    if sys.platform == "win32":
        # Do NOT log in the handler; it can interrupt an active log write
        def win_handler(signum: int, frame) -> None:
            received_signal.append(f"signal-{signum}")
            shutdown_event.set()

        signal.signal(signal.SIGINT, win_handler)
        signal.signal(signal.SIGTERM, win_handler)
    else:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: (received_signal.append(s.name), shutdown_event.set()))

    try:
        await worker.start()
        await shutdown_event.wait()
        if received_signal:
            logger.info(f"Received {received_signal[0]}, initiating shutdown...")
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Shutdown signal received, shutting down...")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return EXIT_ERROR
    finally:
        await worker.stop()

    logger.info("Worker stopped cleanly")
    return EXIT_OK


# =============================================================================
# One-shot commands
# =============================================================================


async def run_batch(batch_id: int, env: str | None = None, holder_id: str | None = None) -> int:
    """Run one batch in the foreground."""

    async def command(service) -> int:
        result = await service.run_batch(batch_id)
        _emit(_result_dict(result))
        return _result_exit_code(result)

    return await _run_command(env, command, holder_id)


async def run_cancel(batch_id: int, env: str | None = None) -> int:
    async def command(service) -> int:
        result = await service.cancel_batch(batch_id)
        _emit(_result_dict(result))
        return _result_exit_code(result)

    return await _run_command(env, command)


async def run_progress(batch_id: int, env: str | None = None) -> int:
    async def command(service) -> int:
        progress = await service.get_progress(batch_id)
        _emit(progress.to_dict())
        return EXIT_OK

    return await _run_command(env, command)


async def run_results(batch_id: int, env: str | None = None) -> int:
    async def command(service) -> int:
        _emit(await service.get_batch_results(batch_id))
        return EXIT_OK

    return await _run_command(env, command)


async def run_search(
    env: str | None = None,
    status: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    limit: int = 20,
) -> int:
    async def command(service) -> int:
        found = await service.search_batches(
            status=status, date_from=date_from, date_to=date_to, page=page, limit=limit
        )
        found["batches"] = [
            {
                "batch_id": b.batch_id,
                "batch_uid": b.batch_uid,
                "status": b.status.value,
                "priority": b.priority,
                "total_trades": b.total_trades,
                "processed_trades": b.processed_trades,
                "failed_trades": b.failed_trades,
                "created_at": b.created_at.isoformat(),
            }
            for b in found["batches"]
        ]
        _emit(found)
        return EXIT_OK

    return await _run_command(env, command)


async def run_next(env: str | None = None) -> int:
    async def command(service) -> int:
        _emit({"next_batch_id": await service.next_eligible_batch()})
        return EXIT_OK

    return await _run_command(env, command)


async def run_set_priority(batch_id: int, priority: int, env: str | None = None) -> int:
    async def command(service) -> int:
        _emit({"batch_id": batch_id, "priority": await service.set_priority(batch_id, priority)})
        return EXIT_OK

    return await _run_command(env, command)


async def run_sweep(env: str | None = None) -> int:
    async def command(service) -> int:
        _emit({"locks_cleared": await service.sweep_expired_locks()})
        return EXIT_OK

    return await _run_command(env, command)


async def run_list_locks(env: str | None = None) -> int:
    async def command(service) -> int:
        batches = await service.list_locked_batches()
        _emit({
            "locked": [
                {
                    "batch_id": b.batch_id,
                    "batch_uid": b.batch_uid,
                    "status": b.status.value,
                    "holder_id": b.lock.holder_id if b.lock else None,
                    "expires_at": b.lock.expires_at.isoformat() if b.lock else None,
                }
                for b in batches
            ]
        })
        return EXIT_OK

    return await _run_command(env, command)


async def run_notify(env: str | None = None) -> int:
    """Deliver pending notification records once."""
    settings = _load_settings(env)
    if settings is None:
        return EXIT_CONFIG
    logger = get_logger(__name__)

    from batch_settlement.adapters.messaging.telegram import LogNotifier, TelegramAdapter
    from batch_settlement.adapters.store.sqlite import SQLiteBatchStore
    from batch_settlement.services.notifications.dispatcher import NotificationDispatcher

    telegram = TelegramAdapter(settings.telegram)
    notifier = telegram if telegram.configured else LogNotifier()
    store = SQLiteBatchStore(settings)
    dispatcher = NotificationDispatcher(store, notifier, batch_size=settings.worker.notification_batch_size)

    try:
        await store.initialize()
        await dispatcher.start()
        delivered = await dispatcher.dispatch_pending()
        _emit({"delivered": delivered})
        return EXIT_OK
    except DomainError as e:
        logger.error(f"{e.error_code}: {e.message}")
        return EXIT_ERROR
    finally:
        await dispatcher.stop()
        await store.close()
