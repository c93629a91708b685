"""
Stats integrity gate for fixtures.

Goals-first policy: a fixture is only rejected when either team has no
stats_cache row, fewer than MIN_SAMPLE_SIZE fixtures behind its goals
average, or an unresolved CRITICAL violation on the goals metric. The other
metrics (corners, cards, fouls, offsides) never reject a fixture; they are
reported per team through MetricStatus.available so downstream consumers can
drop just that market.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketforge.models import StatsCache, StatsHealthViolation
from ticketforge.telemetry.metrics import record_fixture_validation

logger = logging.getLogger(__name__)

MIN_SAMPLE_SIZE = 3

METRICS = ("goals", "corners", "cards", "fouls", "offsides")


@dataclass
class MetricStatus:
    available: bool
    sample_size: int
    value: float


@dataclass
class TeamValidation:
    team_id: int
    has_cache: bool
    sample_size: int
    has_critical_violation: bool
    metrics: dict[str, MetricStatus] = field(default_factory=dict)

    def goals_failure(self, label: str) -> Optional[str]:
        """Reason this team fails the goals gate, or None if it passes."""
        if not self.has_cache:
            return f"{label} team ({self.team_id}) has no stats_cache"
        if self.sample_size < MIN_SAMPLE_SIZE:
            return (
                f"{label} team ({self.team_id}) has sample_size={self.sample_size} "
                f"(need {MIN_SAMPLE_SIZE}+ for goals)"
            )
        if self.has_critical_violation:
            return f"{label} team ({self.team_id}) has CRITICAL goals violation"
        return None


@dataclass
class StatsValidation:
    is_valid: bool
    home_team: TeamValidation
    away_team: TeamValidation
    reason: Optional[str] = None

    def metric_available(self, metric: str) -> bool:
        """True when both teams have the metric available."""
        home = self.home_team.metrics.get(metric)
        away = self.away_team.metrics.get(metric)
        return bool(home and home.available and away and away.available)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "reason": self.reason,
            "home_team": asdict(self.home_team),
            "away_team": asdict(self.away_team),
        }


def build_metric_availability(cache: Optional[StatsCache]) -> dict[str, MetricStatus]:
    """
    Per-metric availability for one team's cache row.

    Every metric shares the cache's sample_size (the goals count). Corners and
    fouls must also be strictly positive, since 0 usually means the provider
    returned nothing. Cards and offsides can legitimately average 0.
    """
    if cache is None:
        return {m: MetricStatus(available=False, sample_size=0, value=0.0) for m in METRICS}

    enough = cache.sample_size >= MIN_SAMPLE_SIZE
    available = {
        "goals": enough,
        "corners": enough and cache.corners > 0,
        "cards": enough and cache.cards >= 0,
        "fouls": enough and cache.fouls > 0,
        "offsides": enough and cache.offsides >= 0,
    }
    return {
        m: MetricStatus(available=available[m], sample_size=cache.sample_size, value=getattr(cache, m))
        for m in METRICS
    }


def _team_validation(team_id: int, cache: Optional[StatsCache], has_critical: bool) -> TeamValidation:
    return TeamValidation(
        team_id=team_id,
        has_cache=cache is not None,
        sample_size=cache.sample_size if cache is not None else 0,
        has_critical_violation=has_critical,
        metrics=build_metric_availability(cache),
    )


def evaluate_fixture(
    home_team_id: int,
    away_team_id: int,
    caches: dict[int, StatsCache],
    critical_team_ids: set[int],
) -> StatsValidation:
    """
    Apply the goals gate to a fixture from pre-loaded caches and violations.

    Home is checked first and its reason wins, but both teams' metrics are
    always populated.
    """
    home = _team_validation(home_team_id, caches.get(home_team_id), home_team_id in critical_team_ids)
    away = _team_validation(away_team_id, caches.get(away_team_id), away_team_id in critical_team_ids)

    reason = home.goals_failure("Home") or away.goals_failure("Away")
    return StatsValidation(is_valid=reason is None, home_team=home, away_team=away, reason=reason)


async def load_stats_caches(session: AsyncSession, team_ids: Iterable[int]) -> dict[int, StatsCache]:
    ids = sorted(set(team_ids))
    if not ids:
        return {}
    result = await session.execute(select(StatsCache).where(StatsCache.team_id.in_(ids)))
    return {row.team_id: row for row in result.scalars().all()}


async def load_critical_goals_teams(session: AsyncSession, team_ids: Iterable[int]) -> set[int]:
    """Team IDs with an unresolved CRITICAL violation on goals."""
    ids = sorted(set(team_ids))
    if not ids:
        return set()
    result = await session.execute(
        select(StatsHealthViolation.team_id)
        .where(StatsHealthViolation.team_id.in_(ids))
        .where(StatsHealthViolation.metric == "goals")
        .where(StatsHealthViolation.severity == "critical")
        .where(StatsHealthViolation.resolved_at.is_(None))
    )
    return set(result.scalars().all())


async def validate_fixture_stats(
    session: AsyncSession,
    home_team_id: int,
    away_team_id: int,
) -> StatsValidation:
    """Validate one fixture's team stats (two queries)."""
    team_ids = [home_team_id, away_team_id]
    caches = await load_stats_caches(session, team_ids)
    critical = await load_critical_goals_teams(session, team_ids)

    validation = evaluate_fixture(home_team_id, away_team_id, caches, critical)
    record_fixture_validation(validation.is_valid)
    if not validation.is_valid:
        logger.info(f"[STATS_INTEGRITY] {home_team_id} vs {away_team_id} rejected: {validation.reason}")
    return validation


async def validate_fixtures_batch(
    session: AsyncSession,
    fixtures: Iterable[tuple[int, int, int]],
) -> dict[int, StatsValidation]:
    """
    Validate many fixtures with two bulk queries.

    Args:
        session: Database session
        fixtures: (fixture_id, home_team_id, away_team_id) tuples

    Returns:
        fixture_id -> StatsValidation
    """
    fixtures = list(fixtures)
    if not fixtures:
        return {}

    team_ids = {home for _, home, _ in fixtures} | {away for _, _, away in fixtures}
    caches = await load_stats_caches(session, team_ids)
    critical = await load_critical_goals_teams(session, team_ids)

    results: dict[int, StatsValidation] = {}
    invalid = 0
    for fixture_id, home_id, away_id in fixtures:
        validation = evaluate_fixture(home_id, away_id, caches, critical)
        record_fixture_validation(validation.is_valid)
        if not validation.is_valid:
            invalid += 1
            logger.debug(f"[STATS_INTEGRITY] Fixture {fixture_id} rejected: {validation.reason}")
        results[fixture_id] = validation

    logger.info(
        f"[STATS_INTEGRITY] Validated {len(fixtures)} fixtures "
        f"({len(team_ids)} teams): {len(fixtures) - invalid} valid, {invalid} rejected"
    )
    return results
