"""Background scheduler — one APScheduler job drives order sync cycles.

The job calls OrderSyncEngine.perform_sync_once on an interval. Overlap is
prevented twice: max_instances=1 here, and the engine drops a cycle that
starts while another is in flight.
"""

import logging
from datetime import timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

log = logging.getLogger(__name__)

ORDER_SYNC_JOB_ID = "order_sync"

scheduler = AsyncIOScheduler(
    job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 30},
    timezone="UTC",
)


def _utc(dt):
    """Make a naive datetime UTC-aware (no-op if already aware)."""
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def schedule_order_sync(func, interval_minutes: float) -> None:
    """(Re)register the sync job. Replaces any existing schedule."""
    if interval_minutes <= 0:
        raise ValueError(f"Sync interval must be positive, got {interval_minutes}")
    scheduler.add_job(
        func,
        IntervalTrigger(minutes=interval_minutes),
        id=ORDER_SYNC_JOB_ID,
        name="WooCommerce order sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    log.info(f"Order sync scheduled every {interval_minutes} min")


def unschedule_order_sync() -> bool:
    """Remove the sync job. A cycle already running is left to finish."""
    if scheduler.get_job(ORDER_SYNC_JOB_ID) is None:
        return False
    scheduler.remove_job(ORDER_SYNC_JOB_ID)
    log.info("Order sync unscheduled")
    return True


def order_sync_job():
    return scheduler.get_job(ORDER_SYNC_JOB_ID)


def start_scheduler() -> None:
    if not scheduler.running:
        scheduler.start()


def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
