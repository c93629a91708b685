"""
Tests for the goals-first stats gate.

Only goals can reject a fixture; other metrics only toggle availability.
"""

import pytest

from ticketforge.models import StatsHealthViolation
from ticketforge.stats.integrity import (
    build_metric_availability,
    evaluate_fixture,
    validate_fixture_stats,
    validate_fixtures_batch,
)

from conftest import make_cache


class TestMetricAvailability:
    """Per-metric availability from a single cache row."""

    def test_missing_cache_marks_everything_unavailable(self):
        metrics = build_metric_availability(None)
        assert all(not m.available for m in metrics.values())
        assert metrics["goals"].sample_size == 0

    def test_zero_corners_unavailable_but_zero_cards_available(self):
        metrics = build_metric_availability(make_cache(1, corners=0.0, cards=0.0))
        assert metrics["goals"].available
        assert not metrics["corners"].available
        assert metrics["cards"].available
        assert metrics["offsides"].available

    def test_zero_fouls_unavailable(self):
        metrics = build_metric_availability(make_cache(1, fouls=0.0, offsides=0.0))
        assert not metrics["fouls"].available
        assert metrics["offsides"].available

    def test_sample_size_shared_across_metrics(self):
        metrics = build_metric_availability(make_cache(1, sample_size=2))
        assert {m.sample_size for m in metrics.values()} == {2}
        assert not any(m.available for m in metrics.values())


class TestEvaluateFixture:
    """Goals gate decisions on pre-loaded data."""

    def test_both_teams_sufficient_is_valid(self):
        caches = {1: make_cache(1), 2: make_cache(2)}
        result = evaluate_fixture(1, 2, caches, set())
        assert result.is_valid
        assert result.reason is None

    def test_missing_home_cache(self):
        result = evaluate_fixture(1, 2, {2: make_cache(2)}, set())
        assert not result.is_valid
        assert result.reason == "Home team (1) has no stats_cache"

    def test_low_sample_away(self):
        caches = {1: make_cache(1), 2: make_cache(2, sample_size=2)}
        result = evaluate_fixture(1, 2, caches, set())
        assert not result.is_valid
        assert result.reason == "Away team (2) has sample_size=2 (need 3+ for goals)"
        assert result.away_team.metrics["goals"].available is False
        assert result.home_team.metrics["goals"].available is True

    def test_critical_goals_violation(self):
        caches = {1: make_cache(1), 2: make_cache(2)}
        result = evaluate_fixture(1, 2, caches, {2})
        assert not result.is_valid
        assert "CRITICAL goals violation" in result.reason

    def test_home_reason_wins_but_away_metrics_populated(self):
        caches = {2: make_cache(2)}
        result = evaluate_fixture(1, 2, caches, {2})
        assert result.reason.startswith("Home team (1)")
        assert result.away_team.metrics["goals"].available
        assert result.away_team.has_critical_violation

    def test_zero_corners_does_not_reject(self):
        """A missing secondary metric only removes that market."""
        caches = {1: make_cache(1, corners=0.0), 2: make_cache(2)}
        result = evaluate_fixture(1, 2, caches, set())
        assert result.is_valid
        assert not result.metric_available("corners")
        assert result.metric_available("goals")
        assert result.metric_available("cards")

    def test_to_dict_shape(self):
        caches = {1: make_cache(1), 2: make_cache(2)}
        data = evaluate_fixture(1, 2, caches, set()).to_dict()
        assert data["is_valid"] is True
        assert data["home_team"]["team_id"] == 1
        assert data["away_team"]["metrics"]["corners"]["available"] is True


class TestValidateFromDatabase:
    """Gate backed by stats_cache and stats_health_violations rows."""

    @pytest.mark.asyncio
    async def test_single_fixture(self, session):
        session.add_all([make_cache(10), make_cache(20)])
        await session.commit()

        result = await validate_fixture_stats(session, 10, 20)
        assert result.is_valid

    @pytest.mark.asyncio
    async def test_resolved_violation_is_ignored(self, session, now):
        session.add_all([
            make_cache(10),
            make_cache(20),
            StatsHealthViolation(team_id=20, metric="goals", severity="critical", resolved_at=now),
            StatsHealthViolation(team_id=10, metric="corners", severity="critical"),
        ])
        await session.commit()

        result = await validate_fixture_stats(session, 10, 20)
        assert result.is_valid

    @pytest.mark.asyncio
    async def test_batch_mixed_results(self, session):
        session.add_all([
            make_cache(10),
            make_cache(20),
            make_cache(30, sample_size=1),
            StatsHealthViolation(team_id=40, metric="goals", severity="critical"),
            make_cache(40),
        ])
        await session.commit()

        results = await validate_fixtures_batch(session, [(100, 10, 20), (101, 10, 30), (102, 40, 20)])

        assert results[100].is_valid
        assert not results[101].is_valid
        assert "sample_size=1" in results[101].reason
        assert not results[102].is_valid
        assert results[102].reason == "Home team (40) has CRITICAL goals violation"

    @pytest.mark.asyncio
    async def test_empty_batch(self, session):
        assert await validate_fixtures_batch(session, []) == {}
