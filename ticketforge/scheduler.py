"""Background scheduler for the selection and outcome jobs."""

import logging
import os
import time

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ticketforge.config import get_settings
from ticketforge.database import get_session_with_retry
from ticketforge.telemetry.metrics import record_job_run

logger = logging.getLogger(__name__)
settings = get_settings()

_scheduler_started = False
scheduler = AsyncIOScheduler()


async def selections_refresh_job():
    """
    Recompute optimized selections for the upcoming window.

    An overlapping run (previous tick still going) is reported as skipped,
    not as an error.
    """
    start_time = time.time()
    try:
        from ticketforge.selection.refresh_job import refresh_selections

        async with get_session_with_retry(max_retries=3, retry_delay=1.0) as session:
            result = await refresh_selections(session)

        duration_ms = (time.time() - start_time) * 1000
        if result.get("skipped"):
            logger.info(f"Selections refresh skipped: {result['reason']}")
            record_job_run(job="selections_refresh", status="skipped", duration_ms=duration_ms)
            return

        logger.info(
            f"Selections refresh complete: {result['scanned']} fixtures, "
            f"{result['upserted']} upserted, {result['failed']} failed"
        )
        record_job_run(job="selections_refresh", status="ok", duration_ms=duration_ms)

        for err in result.get("errors", [])[:5]:
            logger.warning(f"  - {err}")

    except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(f"Selections refresh failed: {e}")
        record_job_run(job="selections_refresh", status="error", duration_ms=duration_ms)


async def outcome_backfill_job():
    """Drain pending ticket outcome backfill, a few cursor batches per tick."""
    start_time = time.time()
    try:
        from ticketforge.backfill.outcomes import drain_ticket_outcomes

        async with get_session_with_retry(max_retries=3, retry_delay=1.0) as session:
            result = await drain_ticket_outcomes(session)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Outcome backfill complete: {result['batches']} batches, "
            f"{result['processed_tickets']} tickets, {result['inserted_legs']} legs"
        )
        record_job_run(job="outcome_backfill", status="ok", duration_ms=duration_ms)

    except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(f"Outcome backfill failed: {e}")
        record_job_run(job="outcome_backfill", status="error", duration_ms=duration_ms)


async def weights_warmup_job():
    """Reload the performance weight cache once its TTL has lapsed."""
    start_time = time.time()
    try:
        from ticketforge.weights.store import performance_weights

        async with get_session_with_retry(max_retries=3, retry_delay=1.0) as session:
            reloaded = await performance_weights.load_weights(session)

        duration_ms = (time.time() - start_time) * 1000
        if reloaded:
            logger.info(f"Performance weights warmed: {performance_weights.size} rows")
        record_job_run(job="weights_warmup", status="ok", duration_ms=duration_ms)

    except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(f"Performance weights warm-up failed: {e}")
        record_job_run(job="weights_warmup", status="error", duration_ms=duration_ms)


def start_scheduler():
    """
    Start the background scheduler.

    Uses a module-level flag to prevent duplicate scheduler instances
    when running with --reload or multiple workers.
    """
    global _scheduler_started

    if _scheduler_started:
        logger.warning("Scheduler already started, skipping duplicate initialization")
        return

    # Uvicorn sets this env var in the reloader subprocess
    if os.environ.get("UVICORN_RELOADED"):
        logger.info("Skipping scheduler in reload subprocess")
        return

    if settings.SELECTIONS_REFRESH_ENABLED:
        scheduler.add_job(
            selections_refresh_job,
            trigger=IntervalTrigger(minutes=settings.SELECTIONS_REFRESH_INTERVAL_MINUTES),
            id="selections_refresh",
            name="Optimized Selections Refresh",
            replace_existing=True,
            max_instances=1,
        )

    if settings.BACKFILL_ENABLED:
        scheduler.add_job(
            outcome_backfill_job,
            trigger=IntervalTrigger(minutes=settings.BACKFILL_INTERVAL_MINUTES),
            id="outcome_backfill",
            name="Ticket Outcome Backfill Drain",
            replace_existing=True,
            max_instances=1,
        )

    # Hourly, matching the weight cache TTL
    scheduler.add_job(
        weights_warmup_job,
        trigger=IntervalTrigger(seconds=settings.WEIGHTS_CACHE_TTL_SECONDS),
        id="weights_warmup",
        name="Performance Weights Warm-up",
        replace_existing=True,
        max_instances=1,
    )

    scheduler.start()
    _scheduler_started = True
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


def stop_scheduler():
    """Stop the background scheduler."""
    global _scheduler_started
    if scheduler.running:
        scheduler.shutdown()
        _scheduler_started = False
        logger.info("Scheduler stopped")
