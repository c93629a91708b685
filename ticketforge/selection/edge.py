"""
Edge calculation against the best bookmaker price.

model_prob is a bounded linear heuristic (combined value over twice the
line, clamped to [0.05, 0.95]). It is not a calibrated probability and
should be read as a rough signal only.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from ticketforge.selection.market_map import BET_ID_MARKETS, market_bet_ids
from ticketforge.selection.rules import Line

MODEL_PROB_MIN = 0.05
MODEL_PROB_MAX = 0.95

# Prices at or below this are treated as malformed
MIN_VALID_ODDS = 1.0


@dataclass(frozen=True)
class BestPrice:
    odds: float
    bookmaker: str


@dataclass(frozen=True)
class EdgeResult:
    implied_prob: float
    model_prob: float
    edge_pct: float


def _parse_odds(raw: Any) -> Optional[float]:
    try:
        odds = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(odds) or odds <= MIN_VALID_ODDS:
        return None
    return odds


def _parse_bet_id(raw: Any) -> Optional[int]:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def find_best_price(
    bookmakers: Iterable[Mapping[str, Any]],
    line: Line,
    bet_ids: Mapping[int, str] = BET_ID_MARKETS,
) -> Optional[BestPrice]:
    """
    Highest price across bookmakers for exactly `line`.

    A bet only counts when its provider ID (int or numeric string) maps to
    the line's market, and an outcome only counts when its value equals
    "<side> <threshold>" after lowercasing and trimming. "over 2.5" never
    matches "over 1.5" or "over 2.5 (1st half)". Returns None when nobody
    offers the exact line.
    """
    wanted_ids = market_bet_ids(line.market, bet_ids)
    if not wanted_ids:
        return None

    target = line.selection_value
    best: Optional[BestPrice] = None

    for bookmaker in bookmakers:
        name = bookmaker.get("name") or f"Bookmaker {bookmaker.get('id')}"
        for bet in bookmaker.get("bets") or []:
            if _parse_bet_id(bet.get("id")) not in wanted_ids:
                continue
            for outcome in bet.get("values") or []:
                value = str(outcome.get("value") or "").strip().lower()
                if value != target:
                    continue
                odds = _parse_odds(outcome.get("odd"))
                if odds is not None and (best is None or odds > best.odds):
                    best = BestPrice(odds=odds, bookmaker=name)

    return best


def model_probability(combined_value: float, threshold: float) -> float:
    return max(MODEL_PROB_MIN, min(MODEL_PROB_MAX, combined_value / (threshold * 2)))


def compute_edge(line: Line, odds: float, combined_value: float) -> EdgeResult:
    """
    Implied probability, model probability and edge for a priced line.

    edge_pct = (model - implied) / implied * 100
    """
    if odds <= MIN_VALID_ODDS:
        raise ValueError(f"odds must be greater than {MIN_VALID_ODDS}, got {odds}")

    implied = 1.0 / odds
    model = model_probability(combined_value, line.threshold)
    return EdgeResult(
        implied_prob=implied,
        model_prob=model,
        edge_pct=(model - implied) / implied * 100,
    )
