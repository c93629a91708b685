"""
Recompute team stats from stored results.

The fixtures + fixture_results tables are the audit ground truth for
stats_cache. Averages are computed per metric over the team's most recent
finished fixtures, each metric only over fixtures where that metric was
recorded, so the effective counts can differ between metrics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketforge.db_utils import upsert_many
from ticketforge.models import FINISHED_STATUSES, Fixture, FixtureResult, StatsCache, utc_now
from ticketforge.stats.integrity import METRICS, MIN_SAMPLE_SIZE

logger = logging.getLogger(__name__)

DEFAULT_MAX_FIXTURES = 5
FIXTURE_COUNT_LOOKBACK = 20

# Max |cache - db| per metric before the cache is considered diverged
VALIDATION_THRESHOLDS = {
    "goals": 0.3,
    "corners": 1.0,
    "cards": 0.8,
    "fouls": 3.0,
    "offsides": 1.5,
}

# A metric backed by fewer DB results than this is not compared
MIN_METRIC_COUNT_FOR_COMPARISON = 2


@dataclass
class DBStatsResult:
    team_id: int
    goals: float
    corners: float
    cards: float
    fouls: float
    offsides: float
    sample_size: int
    fixture_ids: list[int]
    counts: dict[str, int]
    has_sufficient_history: bool


@dataclass
class MetricDiff:
    metric: str
    db_value: float
    cache_value: float
    diff: float
    is_acceptable: bool


@dataclass
class CacheAuditResult:
    team_id: int
    is_valid: bool
    has_db_history: bool = False
    db_fixture_count: int = 0
    cache_exists: bool = False
    cache_sample_size: int = 0
    diffs: list[MetricDiff] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def failed_metrics(self) -> list[str]:
        return [d.metric for d in self.diffs if not d.is_acceptable]

    def to_dict(self) -> dict:
        return {
            "team_id": self.team_id,
            "is_valid": self.is_valid,
            "has_db_history": self.has_db_history,
            "db_fixture_count": self.db_fixture_count,
            "cache_exists": self.cache_exists,
            "cache_sample_size": self.cache_sample_size,
            "diffs": [
                {
                    "metric": d.metric,
                    "db_value": round(d.db_value, 3),
                    "cache_value": round(d.cache_value, 3),
                    "diff": round(d.diff, 3),
                    "is_acceptable": d.is_acceptable,
                }
                for d in self.diffs
            ],
            "reason": self.reason,
        }


def aggregate_team_results(
    team_id: int,
    fixtures: Sequence[Fixture],
    results: dict[int, FixtureResult],
) -> Optional[DBStatsResult]:
    """
    Average each metric from the team's side of each result row.

    `fixtures` must already be ordered most recent first. Fixtures without a
    result row are ignored. Returns None when no fixture has a result.
    """
    totals = {m: 0.0 for m in METRICS}
    counts = {m: 0 for m in METRICS}
    used: list[int] = []

    for fixture in fixtures:
        result = results.get(fixture.id)
        if result is None:
            continue
        used.append(fixture.id)
        side = "home" if fixture.home_team_id == team_id else "away"
        for metric in METRICS:
            value = getattr(result, f"{metric}_{side}")
            if value is not None:
                totals[metric] += value
                counts[metric] += 1

    if not used:
        return None

    means = {m: (totals[m] / counts[m] if counts[m] else 0.0) for m in METRICS}
    return DBStatsResult(
        team_id=team_id,
        goals=means["goals"],
        corners=means["corners"],
        cards=means["cards"],
        fouls=means["fouls"],
        offsides=means["offsides"],
        sample_size=counts["goals"],
        fixture_ids=used,
        counts=counts,
        has_sufficient_history=counts["goals"] >= MIN_SAMPLE_SIZE,
    )


def _finished_for_team(team_id: int) -> list:
    return [
        Fixture.status.in_(FINISHED_STATUSES),
        or_(Fixture.home_team_id == team_id, Fixture.away_team_id == team_id),
    ]


async def recompute_team_stats_from_db(
    session: AsyncSession,
    team_id: int,
    max_fixtures: int = DEFAULT_MAX_FIXTURES,
) -> Optional[DBStatsResult]:
    """
    Recompute a team's rolling averages from its last `max_fixtures` finished fixtures.

    Returns None if the team has no finished fixtures or none of them has a
    stored result.
    """
    result = await session.execute(
        select(Fixture)
        .where(*_finished_for_team(team_id))
        .order_by(Fixture.kickoff_at.desc())
        .limit(max_fixtures)
    )
    fixtures = result.scalars().all()
    if not fixtures:
        logger.info(f"[STATS_DB] Team {team_id} has no finished fixtures in DB")
        return None

    fixture_ids = [f.id for f in fixtures]
    result = await session.execute(select(FixtureResult).where(FixtureResult.fixture_id.in_(fixture_ids)))
    results = {r.fixture_id: r for r in result.scalars().all()}

    stats = aggregate_team_results(team_id, fixtures, results)
    if stats is None:
        logger.info(f"[STATS_DB] Team {team_id} has no fixture_results for {len(fixtures)} fixtures")
        return None

    logger.info(
        f"[STATS_DB] Team {team_id} DB stats: goals={stats.goals:.2f} ({stats.counts['goals']}), "
        f"corners={stats.corners:.2f} ({stats.counts['corners']}), "
        f"cards={stats.cards:.2f} ({stats.counts['cards']}), "
        f"sufficient={stats.has_sufficient_history}"
    )
    return stats


async def get_team_db_fixture_count(session: AsyncSession, team_id: int) -> int:
    """How many of the team's last finished fixtures have a stored result row."""
    recent = (
        select(Fixture.id)
        .where(*_finished_for_team(team_id))
        .order_by(Fixture.kickoff_at.desc())
        .limit(FIXTURE_COUNT_LOOKBACK)
        .subquery()
    )
    result = await session.execute(
        select(func.count(FixtureResult.fixture_id)).where(FixtureResult.fixture_id.in_(select(recent.c.id)))
    )
    return result.scalar_one() or 0


def compare_cache_to_db(
    team_id: int,
    cache: Optional[StatsCache],
    db_stats: Optional[DBStatsResult],
) -> CacheAuditResult:
    """
    Compare a cache row to the DB recomputation, metric by metric.

    Without DB data the cache cannot be judged and is valid iff it exists.
    With DB data but too little goals history, the comparison is skipped and
    the cache stays valid.
    """
    audit = CacheAuditResult(
        team_id=team_id,
        is_valid=True,
        cache_exists=cache is not None,
        cache_sample_size=cache.sample_size if cache is not None else 0,
    )

    if db_stats is None:
        audit.is_valid = audit.cache_exists
        audit.reason = "No DB history to validate against"
        return audit

    audit.has_db_history = db_stats.has_sufficient_history
    audit.db_fixture_count = db_stats.sample_size

    if cache is None:
        audit.is_valid = False
        audit.reason = "Missing stats_cache entry"
        return audit

    if not db_stats.has_sufficient_history:
        audit.reason = "Insufficient DB history for validation"
        return audit

    for metric in METRICS:
        if db_stats.counts[metric] < MIN_METRIC_COUNT_FOR_COMPARISON:
            continue
        db_value = getattr(db_stats, metric)
        cache_value = getattr(cache, metric)
        diff = abs(db_value - cache_value)
        audit.diffs.append(
            MetricDiff(
                metric=metric,
                db_value=db_value,
                cache_value=cache_value,
                diff=diff,
                is_acceptable=diff <= VALIDATION_THRESHOLDS[metric],
            )
        )

    failed = audit.failed_metrics
    if failed:
        audit.is_valid = False
        audit.reason = f"Metrics exceed threshold: {', '.join(failed)}"
    return audit


async def validate_stats_against_db(
    session: AsyncSession,
    team_id: int,
    max_fixtures: int = DEFAULT_MAX_FIXTURES,
) -> CacheAuditResult:
    """Audit one team's stats_cache row against the DB recomputation."""
    cache = await session.get(StatsCache, team_id)
    db_stats = await recompute_team_stats_from_db(session, team_id, max_fixtures)
    audit = compare_cache_to_db(team_id, cache, db_stats)
    if not audit.is_valid:
        logger.warning(f"[STATS_DB] Team {team_id} cache invalid: {audit.reason}")
    return audit


async def refresh_team_stats_cache_from_db(
    session: AsyncSession,
    team_id: int,
    max_fixtures: int = DEFAULT_MAX_FIXTURES,
    now: Optional[datetime] = None,
) -> Optional[DBStatsResult]:
    """
    Rebuild a team's stats_cache row from stored results and commit.

    Only writes when the DB has sufficient goals history; otherwise the cache
    is left untouched and None is returned.
    """
    stats = await recompute_team_stats_from_db(session, team_id, max_fixtures)
    if stats is None or not stats.has_sufficient_history:
        logger.info(f"[STATS_DB] Team {team_id} lacks DB history, cache not rebuilt")
        return None

    row = {
        "team_id": team_id,
        "goals": stats.goals,
        "corners": stats.corners,
        "cards": stats.cards,
        "fouls": stats.fouls,
        "offsides": stats.offsides,
        "sample_size": stats.sample_size,
        "fixture_ids": stats.fixture_ids,
        "source": "db",
        "computed_at": now or utc_now(),
    }
    await upsert_many(session, StatsCache, [row], conflict_columns=["team_id"])
    await session.commit()

    logger.info(f"[STATS_DB] Rebuilt stats_cache for team {team_id} from {stats.sample_size} fixtures")
    return stats
