from apscheduler.schedulers.asyncio import AsyncIOScheduler
from chatgame.core.config import settings
from chatgame.services.sse_service import redis_client
import logging

logger = logging.getLogger(__name__)

async def prune_stale_streams_job():
    """
    An async job function wrapper to be called by the scheduler.
    Turn streams nobody finished reading are dropped after STREAM_TTL_SECONDS.
    """
    logger.info("Scheduled job: Starting cleanup of stale streams...")
    try:
        removed = await redis_client.prune_streams(settings.STREAM_TTL_SECONDS)
        logger.info(f"Scheduled job: Cleanup finished. Removed {removed} stale streams.")
    except Exception as e:
        logger.error(f"Scheduled job failed: {e}")

def setup_scheduler() -> AsyncIOScheduler:
    """
    Creates a scheduler bound to the running event loop and adds its jobs.
    """
    scheduler = AsyncIOScheduler(timezone=settings.SCHEDULER_TIMEZONE)
    scheduler.add_job(
        prune_stale_streams_job,
        'interval',
        minutes=settings.STREAM_PRUNE_INTERVAL_MINUTES,
        id="prune_streams_job",
        replace_existing=True
    )
    logger.info("Stream cleanup job has been added to the scheduler. It will run every %d minutes.", settings.STREAM_PRUNE_INTERVAL_MINUTES)
    return scheduler
