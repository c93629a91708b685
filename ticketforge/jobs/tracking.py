"""Run-log tracking for pipeline jobs.

Every refresh/audit invocation writes one `optimizer_run_logs` row. The row
doubles as the overlap guard's signal: a run that started recently and has
not finished blocks a new one. This is a best-effort exclusion keyed off a
timestamp, not a lock; two callers racing between the check and the insert
can both proceed.

Usage:
    from ticketforge.jobs.tracking import find_active_run, start_run, finish_run

    active = await find_active_run(session, "selections-refresh-168h", stale_after_seconds=180)
    if active:
        return {"skipped": True, "reason": "concurrent_run_in_progress"}

    run = await start_run(session, "selections-refresh-168h", window_start, window_end)
    try:
        # ... job logic ...
        await finish_run(session, run.id, scanned=10, upserted=4)
    except Exception as e:
        await finish_run(session, run.id, failed=1, notes=str(e))
        raise
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketforge.models import OptimizerRunLog, utc_now

logger = logging.getLogger(__name__)

NOTES_MAX_LENGTH = 500


def _truncate_notes(notes: Optional[str]) -> Optional[str]:
    if notes is None:
        return None
    return notes[:NOTES_MAX_LENGTH]


async def find_active_run(
    session: AsyncSession,
    run_type: str,
    stale_after_seconds: int,
    now: Optional[datetime] = None,
) -> Optional[OptimizerRunLog]:
    """
    Return the latest unfinished run of `run_type` if it is still fresh.

    Only the most recent row is considered. If it has finished, or it started
    more than `stale_after_seconds` ago (a crashed run that never wrote
    finished_at), there is no active run.
    """
    now = now or utc_now()
    result = await session.execute(
        select(OptimizerRunLog)
        .where(OptimizerRunLog.run_type == run_type)
        .order_by(OptimizerRunLog.started_at.desc(), OptimizerRunLog.id.desc())
        .limit(1)
    )
    latest = result.scalar_one_or_none()
    if latest is None or latest.finished_at is not None:
        return None

    if now - latest.started_at < timedelta(seconds=stale_after_seconds):
        logger.info(
            f"[JOB_TRACKING] {run_type} run {latest.id} started at "
            f"{latest.started_at.isoformat()} is still in progress"
        )
        return latest

    logger.warning(
        f"[JOB_TRACKING] {run_type} run {latest.id} never finished and is stale, ignoring"
    )
    return None


async def start_run(
    session: AsyncSession,
    run_type: str,
    window_start: Optional[datetime] = None,
    window_end: Optional[datetime] = None,
    scope: Optional[dict] = None,
    started_at: Optional[datetime] = None,
) -> OptimizerRunLog:
    """Insert an unfinished run-log row and commit it so other workers can see it."""
    run = OptimizerRunLog(
        run_type=run_type,
        window_start=window_start,
        window_end=window_end,
        scope=scope,
        started_at=started_at or utc_now(),
    )
    session.add(run)
    await session.commit()
    await session.refresh(run)

    logger.debug(f"[JOB_TRACKING] Started {run_type} run {run.id}")
    return run


async def finish_run(
    session: AsyncSession,
    run_id: int,
    scanned: int = 0,
    with_odds: int = 0,
    upserted: int = 0,
    skipped: int = 0,
    failed: int = 0,
    notes: Optional[str] = None,
    finished_at: Optional[datetime] = None,
) -> Optional[OptimizerRunLog]:
    """Stamp counters, finished_at and duration on a run-log row and commit."""
    run = await session.get(OptimizerRunLog, run_id)
    if run is None:
        logger.warning(f"[JOB_TRACKING] Run {run_id} not found, cannot finish")
        return None

    run.finished_at = finished_at or utc_now()
    run.duration_ms = int((run.finished_at - run.started_at).total_seconds() * 1000)
    run.scanned = scanned
    run.with_odds = with_odds
    run.upserted = upserted
    run.skipped = skipped
    run.failed = failed
    run.notes = _truncate_notes(notes)

    session.add(run)
    await session.commit()

    logger.debug(
        f"[JOB_TRACKING] Finished {run.run_type} run {run.id} in {run.duration_ms}ms "
        f"(scanned={scanned}, upserted={upserted}, skipped={skipped}, failed={failed})"
    )
    return run


async def record_run(
    session: AsyncSession,
    run_type: str,
    started_at: datetime,
    scope: Optional[dict] = None,
    scanned: int = 0,
    upserted: int = 0,
    skipped: int = 0,
    failed: int = 0,
    notes: Optional[str] = None,
) -> OptimizerRunLog:
    """
    Record a completed run in one write.

    For short jobs that do not need the overlap guard (audits, manual
    backfill batches).
    """
    finished_at = utc_now()
    run = OptimizerRunLog(
        run_type=run_type,
        scope=scope,
        scanned=scanned,
        upserted=upserted,
        skipped=skipped,
        failed=failed,
        started_at=started_at,
        finished_at=finished_at,
        duration_ms=int((finished_at - started_at).total_seconds() * 1000),
        notes=_truncate_notes(notes),
    )
    session.add(run)
    await session.commit()

    logger.debug(f"[JOB_TRACKING] Recorded {run_type} run in {run.duration_ms}ms")
    return run
