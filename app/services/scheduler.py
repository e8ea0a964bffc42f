"""
app/services/scheduler.py
APScheduler-based background job scheduler.

Three recurring jobs against one TradingService:
  1. Market cycle    — every POLL_INTERVAL_MS (default 60s)
  2. Reconciliation  — every RESOLUTION_CHECK_INTERVAL_MS (default 5m)
  3. Memory cleanup  — every CLEANUP_INTERVAL_MS (default 5m)

A failing job is logged and retried on its next tick; it never stops the
other timers.
"""

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

if TYPE_CHECKING:
    from app.services.trading_service import TradingService

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def _job_market_cycle(service: "TradingService") -> None:
    """Scheduled job: observe markets and admit trades."""
    try:
        await service.run_market_cycle()
    except Exception as exc:
        logger.error("Market cycle failed: %s", exc)


async def _job_reconciliation(service: "TradingService") -> None:
    """Scheduled job: settle resolved positions."""
    try:
        await service.run_reconciliation()
    except Exception as exc:
        logger.error("Reconciliation failed: %s", exc)


async def _job_cleanup(service: "TradingService") -> None:
    """Scheduled job: evict finished markets."""
    try:
        await service.run_cleanup()
    except Exception as exc:
        logger.error("Memory cleanup failed: %s", exc)


def start_scheduler(service: "TradingService") -> AsyncIOScheduler:
    """Initialize and start the APScheduler with all jobs."""
    global _scheduler

    if _scheduler is not None:
        logger.warning("Scheduler already running")
        return _scheduler

    settings = service.settings
    _scheduler = AsyncIOScheduler()

    _scheduler.add_job(
        _job_market_cycle,
        "interval",
        seconds=settings.POLL_INTERVAL_MS / 1000.0,
        args=[service],
        id="market_cycle",
        name="Market Cycle",
        max_instances=1,
        coalesce=True,
    )
    _scheduler.add_job(
        _job_reconciliation,
        "interval",
        seconds=settings.RESOLUTION_CHECK_INTERVAL_MS / 1000.0,
        args=[service],
        id="reconciliation",
        name="Resolution Reconciler",
        max_instances=1,
        coalesce=True,
    )
    _scheduler.add_job(
        _job_cleanup,
        "interval",
        seconds=settings.CLEANUP_INTERVAL_MS / 1000.0,
        args=[service],
        id="memory_cleanup",
        name="Memory Governor",
        max_instances=1,
        coalesce=True,
    )

    _scheduler.start()
    logger.info(
        "Scheduler started: markets every %dms, reconciliation every %dms, cleanup every %dms",
        settings.POLL_INTERVAL_MS, settings.RESOLUTION_CHECK_INTERVAL_MS, settings.CLEANUP_INTERVAL_MS,
    )
    return _scheduler


def stop_scheduler() -> None:
    """Shut down the scheduler; running jobs are awaited by the service first."""
    global _scheduler

    if _scheduler is None:
        return

    _scheduler.shutdown(wait=False)
    _scheduler = None
    logger.info("Scheduler stopped")
