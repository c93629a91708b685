"""
Static win-rate policy and leg scoring.

These tables are the fallback whenever no sufficiently-sampled dynamic
performance weight exists. They were derived from historical leg outcomes:
preferred lines won well above 70%, avoided lines below 35%.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

SCORABLE_MARKETS = ("goals", "corners", "cards")
SCORABLE_SIDES = ("over", "under")

# Bayesian prior: an uninformed 50/50 line
WIN_RATE_PRIOR = 0.5
DEFAULT_PRIOR_STRENGTH = 10.0

HIGH_WIN_RATE_LINES: dict[str, tuple[float, ...]] = {
    "goals": (1.5,),
    "corners": (8.5,),
    "cards": (2.5, 3.5),
}

LOW_WIN_RATE_LINES: dict[str, tuple[float, ...]] = {
    "goals": (2.5, 3.5),
    "corners": (10.5, 11.5),
    "cards": (4.5, 5.5),
}

# Provider league ID -> weight
LEAGUE_WEIGHTS: dict[int, float] = {
    40: 1.3,    # Championship
    39: 1.2,    # Premier League
    3: 1.1,     # UEFA Europa League
    848: 1.1,   # UEFA Conference League
    2: 1.0,     # UEFA Champions League
    135: 1.0,   # Serie A
    88: 0.95,   # Eredivisie
    140: 0.7,   # La Liga
    61: 0.5,    # Ligue 1
    307: 0.3,   # Saudi Pro League
}

DEFAULT_LEAGUE_WEIGHT = 0.9


def bayesian_win_rate(wins: int, total: int, strength: float = DEFAULT_PRIOR_STRENGTH) -> float:
    """
    Shrink an observed win rate toward 0.5.

    (wins + 0.5 * strength) / (total + strength). With no observations this is
    exactly the prior; as total grows it converges to wins / total.
    """
    if total + strength <= 0:
        return WIN_RATE_PRIOR
    return (wins + WIN_RATE_PRIOR * strength) / (total + strength)


def static_league_weight(league_id: Optional[int], table: Mapping[int, float] = LEAGUE_WEIGHTS) -> float:
    if league_id is None:
        return DEFAULT_LEAGUE_WEIGHT
    return table.get(league_id, DEFAULT_LEAGUE_WEIGHT)


def line_in(table: Mapping[str, Iterable[float]], market: str, line: float) -> bool:
    return any(abs(line - candidate) < 1e-9 for candidate in table.get(market, ()))


def is_static_preferred(market: str, line: float, table: Mapping[str, Iterable[float]] = HIGH_WIN_RATE_LINES) -> bool:
    return line_in(table, market, line)


def is_static_avoided(market: str, line: float, table: Mapping[str, Iterable[float]] = LOW_WIN_RATE_LINES) -> bool:
    return line_in(table, market, line)


def is_scorable_leg(market: str, side: Optional[str], line: Optional[float]) -> bool:
    """Only match totals for goals, corners and cards can be settled from results."""
    return market in SCORABLE_MARKETS and side in SCORABLE_SIDES and line is not None


def score_leg(market: str, side: str, line: float, totals: Mapping[str, Optional[float]]) -> str:
    """
    Classify a leg against a final result.

    Args:
        totals: match totals keyed by market ("goals", "corners", "cards")

    Returns:
        "win", "loss", "push" or "not_scorable"
    """
    if not is_scorable_leg(market, side, line):
        return "not_scorable"

    actual = totals.get(market)
    if actual is None:
        return "not_scorable"

    if actual == line:
        return "push"
    if side == "over":
        return "win" if actual > line else "loss"
    return "win" if actual < line else "loss"
