"""
Process-wide cache of performance weights.

Weights are indexed by "market|side|line|league" (league is the provider
league ID or "global"). A reload builds a fresh snapshot and swaps the
reference in one assignment, so readers always see either the old or the new
map in full, never a half-built one. Concurrent reloads may race; they are
idempotent and the last one wins.

Lookup order for a (market, side, line, league):
1. league-specific row with sample_size >= MIN_LEAGUE_SAMPLE
2. global row with sample_size >= MIN_GLOBAL_SAMPLE
3. static policy tables (ticketforge.weights.policy)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketforge.config import get_settings
from ticketforge.models import PerformanceWeight
from ticketforge.telemetry.metrics import record_weights_load
from ticketforge.weights.policy import (
    DEFAULT_PRIOR_STRENGTH,
    HIGH_WIN_RATE_LINES,
    LOW_WIN_RATE_LINES,
    bayesian_win_rate,
    is_static_avoided,
    is_static_preferred,
    static_league_weight,
)

logger = logging.getLogger(__name__)

MIN_LEAGUE_SAMPLE = 5
MIN_GLOBAL_SAMPLE = 10

PREFERRED_BAYES_THRESHOLD = 0.6
AVOID_BAYES_THRESHOLD = 0.4

GLOBAL = "global"


def weight_key(market: str, side: str, line: float, league_id: Optional[int]) -> str:
    league = GLOBAL if league_id is None else str(league_id)
    return f"{market}|{side}|{float(line):g}|{league}"


@dataclass(frozen=True)
class WeightRecord:
    market: str
    side: str
    line: float
    league_id: Optional[int]
    sample_size: int
    wins: int
    weight: float
    bayes_win_rate: float = 0.5
    raw_win_rate: float = 0.0
    roi_pct: float = 0.0

    @property
    def key(self) -> str:
        return weight_key(self.market, self.side, self.line, self.league_id)

    @property
    def is_trusted(self) -> bool:
        minimum = MIN_GLOBAL_SAMPLE if self.league_id is None else MIN_LEAGUE_SAMPLE
        return self.sample_size >= minimum

    @classmethod
    def from_row(cls, row: PerformanceWeight) -> "WeightRecord":
        return cls(
            market=row.market,
            side=row.side,
            line=row.line,
            league_id=row.league_id,
            sample_size=row.sample_size,
            wins=row.wins,
            weight=row.weight,
            bayes_win_rate=row.bayes_win_rate,
            raw_win_rate=row.raw_win_rate,
            roi_pct=row.roi_pct,
        )


@dataclass(frozen=True)
class WeightSnapshot:
    records: Mapping[str, WeightRecord]
    loaded_at: float


class PerformanceWeightStore:
    """TTL-refreshed, snapshot-swapped view of performance_weights."""

    def __init__(
        self,
        ttl_seconds: float = 3600,
        prior_strength: float = DEFAULT_PRIOR_STRENGTH,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.prior_strength = prior_strength
        self._clock = clock
        self._snapshot: Optional[WeightSnapshot] = None

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    @property
    def size(self) -> int:
        return len(self._snapshot.records) if self._snapshot else 0

    def is_fresh(self) -> bool:
        snapshot = self._snapshot
        return snapshot is not None and self._clock() - snapshot.loaded_at < self.ttl_seconds

    def replace(self, records: Iterable[WeightRecord]) -> WeightSnapshot:
        """Build a new snapshot from `records` and swap it in."""
        snapshot = WeightSnapshot(
            records=MappingProxyType({r.key: r for r in records}),
            loaded_at=self._clock(),
        )
        self._snapshot = snapshot
        return snapshot

    def invalidate(self) -> None:
        self._snapshot = None

    async def load_weights(self, session: AsyncSession, force: bool = False) -> bool:
        """
        Reload from the database unless the current snapshot is within TTL.

        Returns True when a reload happened. A failed reload keeps serving the
        previous snapshot (or the static fallbacks if there is none).
        """
        if not force and self.is_fresh():
            return False

        try:
            result = await session.execute(select(PerformanceWeight))
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"[WEIGHTS] Failed to load performance weights: {e}")
            record_weights_load("error")
            return False

        snapshot = self.replace(WeightRecord.from_row(row) for row in rows)
        global_count = sum(1 for r in snapshot.records.values() if r.league_id is None)
        logger.info(
            f"[WEIGHTS] Loaded {len(snapshot.records)} weights "
            f"({global_count} global, {len(snapshot.records) - global_count} league-specific)"
        )
        record_weights_load("ok", rows=len(snapshot.records))
        return True

    def get_record(
        self,
        market: str,
        side: str,
        line: float,
        league_id: Optional[int] = None,
    ) -> Optional[WeightRecord]:
        """Trusted league-specific record, else trusted global record, else None."""
        snapshot = self._snapshot
        if snapshot is None:
            return None

        if league_id is not None:
            record = snapshot.records.get(weight_key(market, side, line, league_id))
            if record is not None and record.is_trusted:
                return record

        record = snapshot.records.get(weight_key(market, side, line, None))
        if record is not None and record.is_trusted:
            return record
        return None

    def bayes(self, record: WeightRecord) -> float:
        return bayesian_win_rate(record.wins, record.sample_size, self.prior_strength)

    def get_weight(self, market: str, side: str, line: float, league_id: Optional[int] = None) -> float:
        record = self.get_record(market, side, line, league_id)
        if record is not None:
            return record.weight
        return static_league_weight(league_id)

    def is_preferred(
        self,
        market: str,
        side: str,
        line: float,
        league_id: Optional[int] = None,
        fallback_lines: Mapping[str, Iterable[float]] = HIGH_WIN_RATE_LINES,
    ) -> bool:
        record = self.get_record(market, side, line, league_id)
        if record is not None:
            return self.bayes(record) > PREFERRED_BAYES_THRESHOLD
        return is_static_preferred(market, line, fallback_lines)

    def should_avoid(
        self,
        market: str,
        side: str,
        line: float,
        league_id: Optional[int] = None,
        fallback_lines: Mapping[str, Iterable[float]] = LOW_WIN_RATE_LINES,
    ) -> bool:
        record = self.get_record(market, side, line, league_id)
        if record is not None:
            return self.bayes(record) < AVOID_BAYES_THRESHOLD
        return is_static_avoided(market, line, fallback_lines)

    def get_league_weight(self, league_id: Optional[int]) -> float:
        """Mean weight of the league's trusted rows, else the static league table."""
        snapshot = self._snapshot
        if snapshot is not None and league_id is not None:
            weights = [
                r.weight for r in snapshot.records.values()
                if r.league_id == league_id and r.is_trusted
            ]
            if weights:
                return sum(weights) / len(weights)
        return static_league_weight(league_id)


_settings = get_settings()

performance_weights = PerformanceWeightStore(
    ttl_seconds=_settings.WEIGHTS_CACHE_TTL_SECONDS,
    prior_strength=_settings.WEIGHTS_PRIOR_STRENGTH,
)
