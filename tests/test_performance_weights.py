"""
Tests for the performance weight store and static policy.

The store is exercised with an injected clock so TTL behaviour is
deterministic.
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from ticketforge.models import PerformanceWeight
from ticketforge.weights.policy import (
    DEFAULT_LEAGUE_WEIGHT,
    bayesian_win_rate,
    score_leg,
    static_league_weight,
)
from ticketforge.weights.store import PerformanceWeightStore, WeightRecord, weight_key


class FakeClock:
    def __init__(self, t: float = 1000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


def _record(market="goals", side="over", line=1.5, league_id=None, sample_size=20, wins=10, weight=1.0):
    return WeightRecord(
        market=market, side=side, line=line, league_id=league_id,
        sample_size=sample_size, wins=wins, weight=weight,
    )


class TestBayesianWinRate:
    def test_no_data_is_prior(self):
        assert bayesian_win_rate(0, 0) == 0.5

    def test_small_sample_is_shrunk(self):
        # 3/3 raw, shrunk well below 1.0
        assert bayesian_win_rate(3, 3, 10) == pytest.approx(8 / 13)

    def test_converges_to_raw_rate(self):
        assert bayesian_win_rate(7000, 10000, 10) == pytest.approx(0.7, abs=1e-3)

    def test_zero_strength_is_raw(self):
        assert bayesian_win_rate(3, 4, 0) == pytest.approx(0.75)


class TestScoreLeg:
    @pytest.mark.parametrize(
        "side,line,actual,expected",
        [
            ("over", 2.5, 3, "win"),
            ("over", 2.5, 2, "loss"),
            ("under", 2.5, 2, "win"),
            ("under", 9.5, 11, "loss"),
            ("over", 3.0, 3, "push"),
        ],
    )
    def test_outcomes(self, side, line, actual, expected):
        assert score_leg("goals", side, line, {"goals": actual}) == expected

    def test_unscorable_market(self):
        assert score_leg("fouls", "over", 23.5, {"fouls": 30}) == "not_scorable"

    def test_missing_total(self):
        assert score_leg("corners", "over", 9.5, {}) == "not_scorable"


class TestStaticPolicy:
    def test_known_and_unknown_leagues(self):
        assert static_league_weight(39) == 1.2
        assert static_league_weight(99999) == DEFAULT_LEAGUE_WEIGHT
        assert static_league_weight(None) == DEFAULT_LEAGUE_WEIGHT


class TestWeightRecord:
    def test_key_format(self):
        assert weight_key("goals", "over", 2.5, 39) == "goals|over|2.5|39"
        assert weight_key("cards", "over", 3.0, None) == "cards|over|3|global"

    def test_trust_thresholds(self):
        assert _record(league_id=39, sample_size=5).is_trusted
        assert not _record(league_id=39, sample_size=4).is_trusted
        assert _record(league_id=None, sample_size=10).is_trusted
        assert not _record(league_id=None, sample_size=9).is_trusted


class TestPerformanceWeightStore:
    """Lookup order, fallbacks and snapshot lifecycle."""

    def test_unloaded_store_uses_static_fallbacks(self):
        store = PerformanceWeightStore()
        assert not store.is_loaded
        assert store.get_weight("goals", "over", 1.5, 39) == 1.2
        assert store.is_preferred("goals", "over", 1.5)
        assert store.should_avoid("goals", "over", 2.5)
        assert not store.should_avoid("goals", "over", 1.5)

    def test_league_record_wins_over_global(self):
        store = PerformanceWeightStore()
        store.replace([
            _record(league_id=39, sample_size=6, weight=1.4),
            _record(league_id=None, sample_size=50, weight=0.8),
        ])
        assert store.get_weight("goals", "over", 1.5, 39) == 1.4
        assert store.get_weight("goals", "over", 1.5, 140) == 0.8

    def test_untrusted_league_falls_back_to_global(self):
        store = PerformanceWeightStore()
        store.replace([
            _record(league_id=39, sample_size=2, weight=1.4),
            _record(league_id=None, sample_size=50, weight=0.8),
        ])
        assert store.get_weight("goals", "over", 1.5, 39) == 0.8

    def test_untrusted_everywhere_falls_back_to_static(self):
        store = PerformanceWeightStore()
        store.replace([_record(league_id=None, sample_size=3, weight=0.1)])
        assert store.get_record("goals", "over", 1.5) is None
        assert store.get_weight("goals", "over", 1.5, 140) == 0.7

    def test_dynamic_preference_overrides_static_table(self):
        """A statically preferred line that loses in practice is avoided."""
        store = PerformanceWeightStore(prior_strength=10)
        store.replace([_record(line=1.5, sample_size=40, wins=8)])
        assert not store.is_preferred("goals", "over", 1.5)
        assert store.should_avoid("goals", "over", 1.5)

    def test_shrinkage_keeps_small_perfect_record_neutral(self):
        store = PerformanceWeightStore(prior_strength=10)
        store.replace([_record(line=2.5, league_id=39, sample_size=5, wins=5)])
        # 10/15 = 0.667 > 0.6 preferred, but not with a stronger prior
        assert store.is_preferred("goals", "over", 2.5, 39)
        strong = PerformanceWeightStore(prior_strength=30)
        strong.replace([_record(line=2.5, league_id=39, sample_size=5, wins=5)])
        assert not strong.is_preferred("goals", "over", 2.5, 39)

    def test_league_weight_mean_of_trusted_rows(self):
        store = PerformanceWeightStore()
        store.replace([
            _record(line=1.5, league_id=61, sample_size=10, weight=1.0),
            _record(line=2.5, league_id=61, sample_size=10, weight=1.4),
            _record(line=3.5, league_id=61, sample_size=1, weight=9.0),
        ])
        assert store.get_league_weight(61) == pytest.approx(1.2)
        assert store.get_league_weight(307) == 0.3

    def test_ttl(self):
        clock = FakeClock()
        store = PerformanceWeightStore(ttl_seconds=60, clock=clock)
        store.replace([])
        assert store.is_fresh()
        clock.t += 61
        assert not store.is_fresh()

    def test_replace_swaps_whole_snapshot(self):
        store = PerformanceWeightStore()
        store.replace([_record(league_id=None, sample_size=50, weight=0.8)])
        old = store._snapshot
        store.replace([_record(line=2.5, league_id=None, sample_size=50, weight=1.1)])
        assert old.records[weight_key("goals", "over", 1.5, None)].weight == 0.8
        assert store.size == 1
        assert store.get_record("goals", "over", 1.5) is None

    @pytest.mark.asyncio
    async def test_load_from_database(self, session):
        session.add_all([
            PerformanceWeight(market="goals", side="over", line=1.5, league_id=None, league_key=-1,
                              sample_size=30, wins=24, weight=1.3),
            PerformanceWeight(market="goals", side="over", line=1.5, league_id=39, league_key=39,
                              sample_size=8, wins=2, weight=0.6),
        ])
        await session.commit()

        clock = FakeClock()
        store = PerformanceWeightStore(ttl_seconds=60, clock=clock)
        assert await store.load_weights(session) is True
        assert store.size == 2
        assert store.get_weight("goals", "over", 1.5, 39) == 0.6
        assert store.get_weight("goals", "over", 1.5, 140) == 1.3

        assert await store.load_weights(session) is False
        assert await store.load_weights(session, force=True) is True

    @pytest.mark.asyncio
    async def test_failed_load_keeps_previous_snapshot(self):
        store = PerformanceWeightStore(ttl_seconds=0)
        store.replace([_record(league_id=None, sample_size=50, weight=0.8)])

        session = AsyncMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("db down"))

        assert await store.load_weights(session) is False
        assert store.get_weight("goals", "over", 1.5) == 0.8
