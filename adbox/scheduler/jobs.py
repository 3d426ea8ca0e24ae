"""AdBox — Scheduler Jobs.

APScheduler interval job that ticks the poll scheduler. Each tick starts
every due tenant; the tick interval is independent of the per-tenant poll
interval, which is enforced by the PollScheduler itself.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from adbox.config import settings
from adbox.core.logging import get_logger
from adbox.scheduler.poll_scheduler import PollScheduler
from adbox.store.repository import get_store

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()

TICK_SECONDS = 60

_poll_scheduler: Optional[PollScheduler] = None


def get_poll_scheduler() -> PollScheduler:
    """Dependency — the process-wide poll scheduler."""
    global _poll_scheduler
    if _poll_scheduler is None:
        _poll_scheduler = PollScheduler(get_store())
    return _poll_scheduler


async def poll_tick_job():
    """Run one poll cycle over all due tenants."""
    try:
        await get_poll_scheduler().run_due_tenants()
    except Exception as e:
        logger.error(f"Poll tick failed: {e}")


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    get_poll_scheduler().recover_stale_logs()

    first_run = datetime.now(timezone.utc) + timedelta(
        seconds=settings.scheduler_initial_delay_seconds
    )
    scheduler.add_job(
        poll_tick_job,
        "interval",
        seconds=TICK_SECONDS,
        next_run_time=first_run,
        id="poll_tick",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=TICK_SECONDS,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started. Polling every {settings.poll_interval_minutes}m per tenant, "
        f"first tick in {settings.scheduler_initial_delay_seconds}s"
    )


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
