"""
Scheduled sweep that closes checkout links past their expiry.
"""

import logging
from typing import Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .service import CheckoutLinkService

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "sweep_expired_checkout_links"


async def sweep_expired_checkout_links(service: CheckoutLinkService, max_batches: int = 10) -> int:
    """
    Expire overdue checkout links batch by batch.

    Stops when a batch comes back short or after ``max_batches``; anything
    left over is handled by the next run.
    """
    total = 0
    # Rows that fail stay active; skip them for the rest of this run
    failed: Set[str] = set()
    try:
        for _ in range(max_batches):
            failed_before = len(failed)
            expired = await service.sweep_expired(failed=failed)
            total += expired
            if expired + len(failed) - failed_before < service.sweep_batch_size:
                break
        else:
            logger.info(f"[SWEEP] Reached {max_batches} batches, remaining links wait for the next run")
    except Exception as e:
        # Keep the scheduler alive
        logger.error(f"[SWEEP] Checkout link sweep failed: {e}", exc_info=True)
    return total


def create_scheduler(service: CheckoutLinkService, interval_seconds: int) -> AsyncIOScheduler:
    """Build a scheduler with the sweep job registered; call ``start_scheduler`` to run it."""
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        sweep_expired_checkout_links,
        trigger=IntervalTrigger(seconds=interval_seconds),
        args=[service],
        id=SWEEP_JOB_ID,
        name="Expire overdue checkout links",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def start_scheduler(scheduler: AsyncIOScheduler) -> None:
    try:
        scheduler.start()
        job = scheduler.get_job(SWEEP_JOB_ID)
        logger.info(f"[SWEEP] Scheduler started, next sweep at {job.next_run_time if job else 'n/a'}")
    except Exception as e:
        logger.error(f"[SWEEP] Error starting scheduler: {e}", exc_info=True)
        raise


def shutdown_scheduler(scheduler: AsyncIOScheduler) -> None:
    try:
        if scheduler.running:
            scheduler.shutdown(wait=False)
            logger.info("[SWEEP] Scheduler shutdown successfully")
    except Exception as e:
        logger.error(f"[SWEEP] Error shutting down scheduler: {e}", exc_info=True)
