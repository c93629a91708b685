"""
Ticket modes and the candidate filter they drive.

A mode is a declarative set of hard constraints: leg count, total odds band,
allowed markets and sides, optional preferred/avoided line tables and an
optional league-weight gate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from ticketforge.models import OptimizedSelection
from ticketforge.weights.policy import HIGH_WIN_RATE_LINES, LOW_WIN_RATE_LINES
from ticketforge.weights.store import PerformanceWeightStore

logger = logging.getLogger(__name__)

# Per-leg price band applied on top of every mode
ODDS_MIN = 1.25
ODDS_MAX = 5.00


@dataclass(frozen=True)
class TicketModeConfig:
    name: str
    description: str
    min_legs: int
    max_legs: int
    min_odds: float
    max_odds: float
    allowed_markets: tuple[str, ...]
    allowed_sides: tuple[str, ...]
    preferred_lines: Optional[Mapping[str, tuple[float, ...]]] = None
    avoid_lines: Optional[Mapping[str, tuple[float, ...]]] = None
    use_league_weights: bool = False
    min_league_weight: float = 0.0


TICKET_MODES: dict[str, TicketModeConfig] = {
    "max_win_rate": TicketModeConfig(
        name="Max Win Rate",
        description="Singles/doubles only, high-probability lines, top leagues",
        min_legs=1,
        max_legs=2,
        min_odds=1.5,
        max_odds=4.0,
        allowed_markets=("goals", "corners", "cards"),
        allowed_sides=("over",),
        preferred_lines=HIGH_WIN_RATE_LINES,
        avoid_lines=LOW_WIN_RATE_LINES,
        use_league_weights=True,
        min_league_weight=0.8,
    ),
    "balanced": TicketModeConfig(
        name="Balanced",
        description="Standard ticket generation with all markets",
        min_legs=3,
        max_legs=8,
        min_odds=5.0,
        max_odds=20.0,
        allowed_markets=("goals", "corners", "cards"),
        allowed_sides=("over",),
    ),
    "high_risk": TicketModeConfig(
        name="High Risk",
        description="More legs, higher odds, all markets",
        min_legs=5,
        max_legs=15,
        min_odds=15.0,
        max_odds=50.0,
        allowed_markets=("goals", "corners", "cards"),
        allowed_sides=("over",),
    ),
}


def get_mode(name: str, modes: Mapping[str, TicketModeConfig] = TICKET_MODES) -> TicketModeConfig:
    try:
        return modes[name]
    except KeyError:
        raise ValueError(f"Unknown ticket mode '{name}'. Valid: {', '.join(sorted(modes))}") from None


@dataclass(frozen=True)
class CandidateLeg:
    fixture_id: int
    league_id: Optional[int]
    market: str
    side: str
    line: float
    odds: float
    bookmaker: str
    edge_pct: float = 0.0
    utc_kickoff: Optional[str] = None

    @property
    def selection(self) -> str:
        return f"{self.side.capitalize()} {self.line:g}"

    @classmethod
    def from_selection(cls, row: OptimizedSelection) -> "CandidateLeg":
        return cls(
            fixture_id=row.fixture_id,
            league_id=row.league_id,
            market=row.market,
            side=row.side,
            line=row.line,
            odds=row.odds,
            bookmaker=row.bookmaker,
            edge_pct=row.edge_pct,
            utc_kickoff=row.utc_kickoff.isoformat() if row.utc_kickoff else None,
        )

    def to_dict(self) -> dict:
        return {
            "fixture_id": self.fixture_id,
            "league_id": self.league_id,
            "market": self.market,
            "side": self.side,
            "line": self.line,
            "selection": self.selection,
            "odds": self.odds,
            "bookmaker": self.bookmaker,
            "edge_pct": self.edge_pct,
            "utc_kickoff": self.utc_kickoff,
        }


def is_leg_allowed(leg: CandidateLeg, mode: TicketModeConfig) -> bool:
    """Per-leg price band plus the mode's market and side allowlists."""
    if not ODDS_MIN <= leg.odds <= ODDS_MAX:
        return False
    return leg.market in mode.allowed_markets and leg.side in mode.allowed_sides


@dataclass(frozen=True)
class RankedLeg:
    leg: CandidateLeg
    preferred: bool
    weight: float


def rank_candidates(
    candidates: Iterable[CandidateLeg],
    mode: TicketModeConfig,
    store: PerformanceWeightStore,
) -> list[RankedLeg]:
    """
    Apply the mode's hard constraints and order what survives.

    Dropped: legs outside the allowlists or price band, legs on avoided lines
    (when the mode has an avoid table), and legs from leagues whose weight is
    under min_league_weight (when the mode uses league weights).

    Order: preferred lines first, then higher weight, then higher edge.
    """
    ranked: list[RankedLeg] = []
    dropped = {"not_allowed": 0, "avoided_line": 0, "league_weight": 0}

    for leg in candidates:
        if not is_leg_allowed(leg, mode):
            dropped["not_allowed"] += 1
            continue

        if mode.avoid_lines is not None and store.should_avoid(
            leg.market, leg.side, leg.line, leg.league_id, fallback_lines=mode.avoid_lines
        ):
            dropped["avoided_line"] += 1
            continue

        if mode.use_league_weights and store.get_league_weight(leg.league_id) < mode.min_league_weight:
            dropped["league_weight"] += 1
            continue

        preferred = mode.preferred_lines is not None and store.is_preferred(
            leg.market, leg.side, leg.line, leg.league_id, fallback_lines=mode.preferred_lines
        )
        weight = store.get_weight(leg.market, leg.side, leg.line, leg.league_id)
        ranked.append(RankedLeg(leg=leg, preferred=preferred, weight=weight))

    ranked.sort(key=lambda r: (not r.preferred, -r.weight, -r.leg.edge_pct, r.leg.fixture_id, r.leg.market))
    logger.debug(f"[TICKETS] {mode.name}: {len(ranked)} candidates kept, dropped={dropped}")
    return ranked
