"""
Selection refresh job.

For every fixture kicking off inside the window:
stats gate -> line rules per market -> exact best price -> edge -> upsert.

Data insufficiency (invalid stats, unavailable metric, no recommended line,
no bookmaker coverage, no price for the exact line) skips the fixture or
market and is counted. A failure while processing one fixture is logged,
rolled back and counted as failed; the rest of the window continues.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketforge.config import get_settings
from ticketforge.db_utils import upsert_many
from ticketforge.jobs.tracking import find_active_run, finish_run, start_run
from ticketforge.models import Fixture, OddsCache, OptimizedSelection, StatsCache, utc_now
from ticketforge.selection.edge import compute_edge, find_best_price
from ticketforge.selection.market_map import BET_ID_MARKETS, extract_bookmakers, has_coverage
from ticketforge.selection.rules import MARKETS, pick_line
from ticketforge.stats.integrity import StatsValidation, load_stats_caches, validate_fixtures_batch
from ticketforge.telemetry.metrics import (
    record_selection_failed,
    record_selection_skipped,
    record_selection_upserted,
)

logger = logging.getLogger(__name__)

RUN_TYPE = "selections-refresh"
SOURCE = "api-football"
MAX_ERROR_SAMPLES = 5
SELECTION_CONFLICT_COLUMNS = ["fixture_id", "market", "side", "line", "bookmaker", "is_live"]


def window_run_type(window_hours: int) -> str:
    """Run-log key for one refresh window; the overlap guard only sees runs of the same window."""
    return f"{RUN_TYPE}-{window_hours}h"


def combine_team_stats(home: StatsCache, away: StatsCache) -> dict[str, float]:
    """Per-metric SUM of both teams' averages."""
    return {m: float(getattr(home, m)) + float(getattr(away, m)) for m in MARKETS}


def build_fixture_selections(
    fixture: Fixture,
    home: StatsCache,
    away: StatsCache,
    validation: StatsValidation,
    bookmakers: list,
    rules_version: str,
    computed_at: datetime,
    bet_ids=BET_ID_MARKETS,
) -> tuple[list[dict], list[tuple[str, str]]]:
    """
    Selection rows for one validated fixture.

    Returns:
        (rows, skips) where skips are (market, reason) pairs
    """
    combined = combine_team_stats(home, away)
    sample_size = min(home.sample_size, away.sample_size)
    rows: list[dict] = []
    skips: list[tuple[str, str]] = []

    for market in MARKETS:
        if not validation.metric_available(market):
            skips.append((market, "no_stats"))
            continue

        line = pick_line(market, combined[market])
        if line is None:
            skips.append((market, "no_line"))
            continue

        if not has_coverage(market, bet_ids):
            skips.append((market, "no_coverage"))
            continue

        price = find_best_price(bookmakers, line, bet_ids)
        if price is None:
            skips.append((market, "no_price"))
            continue

        edge = compute_edge(line, price.odds, combined[market])
        rows.append({
            "fixture_id": fixture.id,
            "league_id": fixture.league_id,
            "country_code": fixture.country_code,
            "utc_kickoff": fixture.kickoff_at,
            "market": market,
            "side": line.kind,
            "line": line.threshold,
            "bookmaker": price.bookmaker,
            "odds": price.odds,
            "is_live": False,
            "edge_pct": round(edge.edge_pct, 4),
            "model_prob": round(edge.model_prob, 4),
            "sample_size": sample_size,
            "combined_snapshot": {m: round(v, 3) for m, v in combined.items()},
            "rules_version": rules_version,
            "source": SOURCE,
            "computed_at": computed_at,
        })

    return rows, skips


async def refresh_selections(
    session: AsyncSession,
    window_hours: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Recompute optimized selections for fixtures kicking off in [now, now + window].

    Skips with {"skipped": True, "reason": "concurrent_run_in_progress"} when
    another refresh of the same window started recently and has not finished.

    Returns:
        Dict with counters, window and truncated error samples
    """
    settings = get_settings()
    start_time = time.time()
    now = now or utc_now()
    window_hours = window_hours or settings.SELECTIONS_WINDOW_HOURS
    window_end = now + timedelta(hours=window_hours)

    run_type = window_run_type(window_hours)
    active = await find_active_run(session, run_type, settings.SELECTIONS_OVERLAP_STALE_SECONDS, now=now)
    if active is not None:
        logger.info(f"[SELECTIONS] Refresh skipped, run {active.id} still in progress")
        return {
            "skipped": True,
            "reason": "concurrent_run_in_progress",
            "active_run_id": active.id,
        }

    run = await start_run(session, run_type, window_start=now, window_end=window_end)
    run_id = run.id

    metrics = {
        "scanned": 0,
        "with_odds": 0,
        "upserted": 0,
        "skipped": 0,
        "failed": 0,
        "market_skips": {},
        "errors": [],
    }

    try:
        result = await session.execute(
            select(Fixture)
            .where(and_(Fixture.kickoff_at >= now, Fixture.kickoff_at <= window_end))
            .order_by(Fixture.kickoff_at)
        )
        fixtures = result.scalars().all()
        logger.info(
            f"[SELECTIONS] Window {now.isoformat()} -> {window_end.isoformat()}: {len(fixtures)} fixtures"
        )

        validations = await validate_fixtures_batch(
            session, [(f.id, f.home_team_id, f.away_team_id) for f in fixtures]
        )
        caches = await load_stats_caches(
            session, [t for f in fixtures for t in (f.home_team_id, f.away_team_id)]
        )
        odds_by_fixture = {}
        if fixtures:
            result = await session.execute(
                select(OddsCache).where(OddsCache.fixture_id.in_([f.id for f in fixtures]))
            )
            odds_by_fixture = {o.fixture_id: o for o in result.scalars().all()}

        # Detach loaded rows so a per-fixture rollback does not expire them
        session.expunge_all()

        computed_at = utc_now()
        for fixture in fixtures:
            metrics["scanned"] += 1
            try:
                validation = validations[fixture.id]
                if not validation.is_valid:
                    metrics["skipped"] += 1
                    continue

                odds = odds_by_fixture.get(fixture.id)
                bookmakers = extract_bookmakers(odds.payload if odds else None)
                if not bookmakers:
                    metrics["skipped"] += 1
                    logger.debug(f"[SELECTIONS] Fixture {fixture.id} has no odds")
                    continue
                metrics["with_odds"] += 1

                rows, skips = build_fixture_selections(
                    fixture,
                    caches[fixture.home_team_id],
                    caches[fixture.away_team_id],
                    validation,
                    bookmakers,
                    settings.SELECTIONS_RULES_VERSION,
                    computed_at,
                )
                for market, reason in skips:
                    key = f"{market}:{reason}"
                    metrics["market_skips"][key] = metrics["market_skips"].get(key, 0) + 1
                    record_selection_skipped(market, reason)

                if not rows:
                    metrics["skipped"] += 1
                    continue

                await upsert_many(
                    session, OptimizedSelection, rows, conflict_columns=SELECTION_CONFLICT_COLUMNS
                )
                await session.commit()
                metrics["upserted"] += len(rows)
                for row in rows:
                    record_selection_upserted(row["market"])

            except Exception as e:
                await session.rollback()
                metrics["failed"] += 1
                record_selection_failed()
                error_msg = f"Fixture {fixture.id}: {str(e)}"
                logger.error(f"[SELECTIONS] Error processing: {error_msg}")
                metrics["errors"].append(error_msg)

    except Exception as e:
        await session.rollback()
        await finish_run(
            session,
            run_id,
            scanned=metrics["scanned"],
            with_odds=metrics["with_odds"],
            upserted=metrics["upserted"],
            skipped=metrics["skipped"],
            failed=metrics["failed"] + 1,
            notes=f"aborted: {e}",
        )
        raise

    await finish_run(
        session,
        run_id,
        scanned=metrics["scanned"],
        with_odds=metrics["with_odds"],
        upserted=metrics["upserted"],
        skipped=metrics["skipped"],
        failed=metrics["failed"],
        notes="; ".join(metrics["errors"][:MAX_ERROR_SAMPLES]) or None,
    )

    metrics["errors"] = metrics["errors"][:MAX_ERROR_SAMPLES]
    metrics["run_id"] = run_id
    metrics["window"] = {"start": now.isoformat(), "end": window_end.isoformat()}
    metrics["rules_version"] = settings.SELECTIONS_RULES_VERSION
    metrics["duration_ms"] = int((time.time() - start_time) * 1000)

    logger.info(
        f"[SELECTIONS] Refresh complete: scanned={metrics['scanned']}, with_odds={metrics['with_odds']}, "
        f"upserted={metrics['upserted']}, skipped={metrics['skipped']}, failed={metrics['failed']}"
    )
    return metrics
