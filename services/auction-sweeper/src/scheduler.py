"""APScheduler setup for closing auctions whose end time has passed."""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from models.auction import AuctionEngine, StorageUnavailable
from utils import log

logger = log.get_logger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


async def close_ended_auctions_job(engine: AuctionEngine, batch_size: int) -> int:
    """Close one batch of ended auctions. Returns how many were closed."""
    try:
        closed = await engine.close_ended_auctions(limit=batch_size)
    except StorageUnavailable as e:
        logger.warning(f"Auction sweep skipped, storage unavailable: {e}")
        return 0

    if closed:
        winners = sum(1 for c in closed if c.winner_id)
        logger.info(f"Auction sweep closed {len(closed)} auctions ({winners} with a winner)")
    return len(closed)


def init_scheduler(engine: AuctionEngine, interval_seconds: int, batch_size: int) -> AsyncIOScheduler:
    """Start the APScheduler with the auction sweep job."""
    global _scheduler
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        close_ended_auctions_job,
        trigger=IntervalTrigger(seconds=interval_seconds),
        args=[engine, batch_size],
        id="close_ended_auctions",
        name="Close Ended Auctions",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    logger.info(f"APScheduler started: closing ended auctions every {interval_seconds}s (batch {batch_size})")
    return _scheduler


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("APScheduler shut down")
