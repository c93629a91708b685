"""
Odds-provider bet IDs per market.

Only full-match totals are mapped. Fouls and offsides have no bookmaker
coverage on the provider, so they have no entry and are never priced.
"""

from typing import Any, Mapping, Optional

# API-Football bet IDs (full match over/under)
BET_ID_MARKETS: dict[int, str] = {
    5: "goals",
    45: "corners",
    80: "cards",
}


def market_bet_ids(market: str, bet_ids: Mapping[int, str] = BET_ID_MARKETS) -> set[int]:
    """Provider bet IDs that price `market` (empty when uncovered)."""
    return {bet_id for bet_id, name in bet_ids.items() if name == market}


def has_coverage(market: str, bet_ids: Mapping[int, str] = BET_ID_MARKETS) -> bool:
    return bool(market_bet_ids(market, bet_ids))


def extract_bookmakers(payload: Optional[Mapping[str, Any]]) -> list:
    """
    Bookmaker list from a stored odds payload.

    Accepts the raw provider envelope ({"response": [{"bookmakers": [...]}]})
    or an already unwrapped {"bookmakers": [...]}.
    """
    if not payload:
        return []
    if "bookmakers" in payload:
        return list(payload.get("bookmakers") or [])
    response = payload.get("response") or []
    if response and isinstance(response[0], Mapping):
        return list(response[0].get("bookmakers") or [])
    return []
