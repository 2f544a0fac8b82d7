"""APScheduler service for background cache maintenance."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from typing import Any, Dict, Optional
import logging

from reviewlens.cache.analysis_cache import AnalysisCache
from reviewlens.exceptions import CacheError

logger = logging.getLogger(__name__)
logging.getLogger('apscheduler').setLevel(logging.WARNING)

PURGE_JOB_ID = "analysis_cache_purge"

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def purge_expired_job(cache: AnalysisCache) -> int:
    """
    Background job removing expired analysis results.

    Args:
        cache: Cache to sweep

    Returns:
        Number of entries removed
    """
    try:
        removed = await cache.purge_expired()
    except CacheError as e:
        logger.error(f"Cache purge failed: {e}")
        return 0

    if removed:
        logger.info(f"Cache purge removed {removed} expired entries")
    return removed


def start_scheduler(cache: AnalysisCache, interval_minutes: int) -> Optional[AsyncIOScheduler]:
    """
    Start the scheduler with the periodic cache purge.

    Must be called from a running event loop. An interval of 0 disables
    the purge and no scheduler is started.
    """
    global scheduler

    if scheduler is not None:
        logger.info("Scheduler already running")
        return scheduler

    if interval_minutes <= 0:
        logger.info("Cache purge disabled")
        return None

    scheduler = AsyncIOScheduler(
        job_defaults={'coalesce': True, 'max_instances': 1},
        timezone='UTC'
    )
    scheduler.add_job(
        purge_expired_job,
        trigger='interval',
        minutes=interval_minutes,
        args=[cache],
        id=PURGE_JOB_ID,
        replace_existing=True
    )
    scheduler.start()
    logger.info(f"APScheduler started, purging expired cache entries every {interval_minutes} min")

    return scheduler


def shutdown_scheduler():
    """Shutdown the APScheduler."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("APScheduler shut down")


def get_job_status() -> Dict[str, Any]:
    """
    Status of the purge job.

    Returns:
        Dict with running flag and next run time
    """
    if scheduler is None:
        return {"running": False, "next_run_time": None}

    job = scheduler.get_job(PURGE_JOB_ID)
    return {
        "running": scheduler.running,
        "next_run_time": job.next_run_time.isoformat() if job and job.next_run_time else None
    }
