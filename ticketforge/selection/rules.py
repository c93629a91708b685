"""
Line rules: combined statistical value -> recommended over/under line.

Each market owns an ordered list of half-open ranges [min, max). The first
range starts at 0 and the last one ends at RANGE_CEILING, which stands for
"no upper bound": values at or past the ceiling fall into the last range.
A value sitting exactly on a boundary belongs to the higher range.

The tables are policy data. Ticket economics depend on the exact boundaries,
so they are validated at import time and any injected ruleset can be checked
with validate_ruleset().
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

MARKETS = ("goals", "corners", "cards", "fouls", "offsides")

RANGE_CEILING = 999.0


class RulesetError(ValueError):
    """A ruleset has gaps, overlaps or malformed ranges."""


@dataclass(frozen=True)
class Line:
    market: str
    kind: str  # "over" | "under"
    threshold: float

    @property
    def label(self) -> str:
        return f"{self.kind.capitalize()} {self.threshold:g}"

    @property
    def selection_value(self) -> str:
        """Lowercase bookmaker outcome value, e.g. "over 2.5"."""
        return f"{self.kind} {self.threshold:g}"


@dataclass(frozen=True)
class LineRange:
    min: float
    max: float
    kind: str  # "over" | "under" | "none"
    threshold: Optional[float] = None

    def contains(self, value: float) -> bool:
        return self.min <= value < self.max


def _over(lo: float, hi: float, threshold: float) -> LineRange:
    return LineRange(lo, hi, "over", threshold)


def _none(lo: float, hi: float) -> LineRange:
    return LineRange(lo, hi, "none")


RULES: dict[str, tuple[LineRange, ...]] = {
    "goals": (
        _none(0.0, 1.0),
        _over(1.0, 2.0, 0.5),
        _over(2.0, 2.7, 1.5),
        _over(2.7, 4.0, 2.5),
        _over(4.0, 5.0, 3.5),
        _over(5.0, RANGE_CEILING, 4.5),
    ),
    "corners": (
        _none(0.0, 7.0),
        _over(7.0, 8.0, 7.5),
        _over(8.0, 9.0, 8.5),
        _over(9.0, 10.0, 9.5),
        _over(10.0, 11.0, 10.5),
        _over(11.0, 12.0, 11.5),
        _over(12.0, RANGE_CEILING, 12.5),
    ),
    "cards": (
        _none(0.0, 2.0),
        _over(2.0, 3.0, 1.5),
        _over(3.0, 4.0, 2.5),
        _over(4.0, 5.0, 3.5),
        _over(5.0, 6.0, 4.5),
        _over(6.0, RANGE_CEILING, 5.5),
    ),
    "fouls": (
        _none(0.0, 20.0),
        _over(20.0, 24.0, 23.5),
        _over(24.0, 28.0, 27.5),
        _over(28.0, RANGE_CEILING, 31.5),
    ),
    "offsides": (
        _none(0.0, 2.0),
        _over(2.0, 3.0, 2.5),
        _over(3.0, 4.0, 3.5),
        _over(4.0, 5.0, 4.5),
        _over(5.0, RANGE_CEILING, 5.5),
    ),
}


def validate_ranges(market: str, ranges: Sequence[LineRange]) -> None:
    """Raise RulesetError unless `ranges` tile [0, RANGE_CEILING) exactly."""
    if not ranges:
        raise RulesetError(f"{market}: no ranges defined")
    if ranges[0].min != 0.0:
        raise RulesetError(f"{market}: first range starts at {ranges[0].min}, expected 0")
    if ranges[-1].max != RANGE_CEILING:
        raise RulesetError(f"{market}: last range ends at {ranges[-1].max}, expected {RANGE_CEILING}")

    for i, r in enumerate(ranges):
        if not r.min < r.max:
            raise RulesetError(f"{market}: empty or inverted range [{r.min}, {r.max})")
        if r.kind not in ("over", "under", "none"):
            raise RulesetError(f"{market}: unknown kind '{r.kind}'")
        if r.kind != "none" and (r.threshold is None or r.threshold <= 0):
            raise RulesetError(f"{market}: range [{r.min}, {r.max}) needs a positive threshold")
        if i > 0:
            prev = ranges[i - 1]
            if prev.max < r.min:
                raise RulesetError(f"{market}: gap between {prev.max} and {r.min}")
            if prev.max > r.min:
                raise RulesetError(f"{market}: overlap between [{prev.min}, {prev.max}) and [{r.min}, {r.max})")


def validate_ruleset(rules: Mapping[str, Sequence[LineRange]]) -> None:
    for market, ranges in rules.items():
        validate_ranges(market, ranges)


def pick_line(
    market: str,
    combined_value: float,
    rules: Mapping[str, Sequence[LineRange]] = RULES,
) -> Optional[Line]:
    """
    Recommended line for a combined value, or None for "no bet".

    Never raises for a numeric value: unknown markets, negative or NaN values
    and "none" ranges all return None.
    """
    ranges = rules.get(market)
    if not ranges or combined_value is None:
        return None
    if math.isnan(combined_value) or combined_value < 0:
        return None

    if combined_value >= ranges[-1].max:
        match = ranges[-1]
    else:
        match = next((r for r in ranges if r.contains(combined_value)), None)

    if match is None or match.kind == "none":
        return None
    return Line(market=market, kind=match.kind, threshold=match.threshold)


validate_ruleset(RULES)
