"""
Stats cache consistency audit.

Compares stats_cache rows against the DB recomputation and, when asked,
heals diverged rows by rebuilding them in place from stored results.
Open health violations are left alone; resolving them belongs to the
health-check process.
"""

import logging
import time
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from ticketforge.jobs.tracking import record_run
from ticketforge.models import utc_now
from ticketforge.stats.recompute import (
    DEFAULT_MAX_FIXTURES,
    refresh_team_stats_cache_from_db,
    validate_stats_against_db,
)

logger = logging.getLogger(__name__)

RUN_TYPE = "stats-consistency-audit"
MAX_ERROR_SAMPLES = 5


async def audit_team_stats(
    session: AsyncSession,
    team_ids: Iterable[int],
    heal: bool = False,
    max_fixtures: int = DEFAULT_MAX_FIXTURES,
) -> dict:
    """
    Audit a set of teams and optionally heal their caches.

    A team is healed only when its cache is invalid and the DB has enough
    history to rebuild it. Failures on one team are logged and counted; the
    rest of the batch continues.

    Returns:
        Dict with per-team audits and counters
    """
    start_time = time.time()
    started_at = utc_now()
    team_ids = sorted(set(team_ids))

    metrics = {
        "scanned": 0,
        "valid": 0,
        "invalid": 0,
        "healed": 0,
        "failed": 0,
        "errors": [],
        "teams": [],
    }

    for team_id in team_ids:
        metrics["scanned"] += 1
        try:
            audit = await validate_stats_against_db(session, team_id, max_fixtures)
            entry = audit.to_dict()
            entry["healed"] = False

            if audit.is_valid:
                metrics["valid"] += 1
            else:
                metrics["invalid"] += 1
                if heal and audit.has_db_history:
                    # Rebuild upserts over the existing row
                    rebuilt = await refresh_team_stats_cache_from_db(session, team_id, max_fixtures)
                    if rebuilt is not None:
                        entry["healed"] = True
                        metrics["healed"] += 1
                        logger.info(f"[STATS_DB] Healed stats_cache for team {team_id}")

            metrics["teams"].append(entry)

        except Exception as e:
            await session.rollback()
            metrics["failed"] += 1
            error_msg = f"Team {team_id}: {str(e)}"
            logger.error(f"[STATS_DB] Audit error: {error_msg}")
            metrics["errors"].append(error_msg)

    metrics["errors"] = metrics["errors"][:MAX_ERROR_SAMPLES]

    await record_run(
        session,
        RUN_TYPE,
        started_at,
        scope={"team_ids": team_ids, "heal": heal},
        scanned=metrics["scanned"],
        upserted=metrics["healed"],
        skipped=metrics["valid"],
        failed=metrics["failed"],
        notes=f"invalid={metrics['invalid']}",
    )

    metrics["duration_ms"] = int((time.time() - start_time) * 1000)
    logger.info(
        f"[STATS_DB] Audit complete: {metrics['scanned']} teams, {metrics['invalid']} invalid, "
        f"{metrics['healed']} healed, {metrics['failed']} failed"
    )
    return metrics
