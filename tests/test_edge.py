"""Tests for best-price matching, edge math and provider bet mapping."""

import pytest

from ticketforge.selection.edge import compute_edge, find_best_price, model_probability
from ticketforge.selection.market_map import extract_bookmakers, has_coverage, market_bet_ids
from ticketforge.selection.rules import Line

from conftest import bookmaker, odds_payload

OVER_25 = Line("goals", "over", 2.5)


class TestFindBestPrice:
    """Exact-line matching across bookmakers."""

    def test_picks_highest_price(self):
        books = [
            bookmaker("Bet365", {5: [("Over 2.5", 1.80), ("Under 2.5", 2.00)]}),
            bookmaker("Pinnacle", {5: [("Over 2.5", 1.85)]}),
        ]
        best = find_best_price(books, OVER_25)
        assert best.odds == pytest.approx(1.85)
        assert best.bookmaker == "Pinnacle"

    def test_neighbouring_line_never_matches(self):
        books = [bookmaker("Bet365", {5: [("Over 1.5", 1.30), ("Over 3.5", 2.90)]})]
        assert find_best_price(books, OVER_25) is None

    def test_half_time_variant_not_matched(self):
        books = [bookmaker("Bet365", {5: [("Over 2.5 (1st half)", 4.0)]})]
        assert find_best_price(books, OVER_25) is None

    def test_value_matching_is_trimmed_and_case_insensitive(self):
        books = [bookmaker("Bet365", {5: [("  OVER 2.5 ", 1.9)]})]
        assert find_best_price(books, OVER_25).odds == pytest.approx(1.9)

    def test_other_market_bet_ignored(self):
        books = [bookmaker("Bet365", {45: [("Over 2.5", 1.9)]})]
        assert find_best_price(books, OVER_25) is None

    def test_string_bet_id_matches(self):
        books = [{"name": "X", "bets": [{"id": "5", "values": [{"value": "Over 2.5", "odd": "1.95"}]}]}]
        assert find_best_price(books, OVER_25).odds == pytest.approx(1.95)

    @pytest.mark.parametrize("bet_id", [None, "five", "", [5]])
    def test_unparseable_bet_id_skipped(self, bet_id):
        books = [{"name": "X", "bets": [{"id": bet_id, "values": [{"value": "Over 2.5", "odd": "1.95"}]}]}]
        assert find_best_price(books, OVER_25) is None

    @pytest.mark.parametrize("odd", ["1.00", "0.5", "abc", None, "inf"])
    def test_malformed_odds_skipped(self, odd):
        books = [{"name": "X", "bets": [{"id": 5, "values": [{"value": "Over 2.5", "odd": odd}]}]}]
        assert find_best_price(books, OVER_25) is None

    def test_missing_name_falls_back_to_id(self):
        books = [{"id": 8, "bets": [{"id": 5, "values": [{"value": "Over 2.5", "odd": "1.7"}]}]}]
        assert find_best_price(books, OVER_25).bookmaker == "Bookmaker 8"

    def test_uncovered_market(self):
        books = [bookmaker("Bet365", {5: [("Over 23.5", 1.9)]})]
        assert find_best_price(books, Line("fouls", "over", 23.5)) is None


class TestComputeEdge:
    def test_reference_scenario(self):
        """Combined 3.0 on Over 2.5 at 1.80."""
        edge = compute_edge(OVER_25, 1.80, 3.0)
        assert edge.implied_prob == pytest.approx(0.5556, abs=1e-4)
        assert edge.model_prob == pytest.approx(0.6)
        assert edge.edge_pct == pytest.approx(8.0, abs=0.01)

    def test_negative_edge(self):
        edge = compute_edge(OVER_25, 1.30, 3.0)
        assert edge.edge_pct < 0

    def test_model_probability_is_clamped(self):
        assert model_probability(100.0, 0.5) == 0.95
        assert model_probability(0.0, 2.5) == 0.05

    def test_rejects_non_positive_edge_odds(self):
        with pytest.raises(ValueError):
            compute_edge(OVER_25, 1.0, 3.0)


class TestMarketMap:
    def test_covered_markets(self):
        assert market_bet_ids("goals") == {5}
        assert has_coverage("cards")
        assert not has_coverage("fouls")
        assert not has_coverage("offsides")

    def test_extract_from_envelope_and_unwrapped(self):
        books = [bookmaker("A", {5: [("Over 2.5", 1.8)]})]
        assert extract_bookmakers(odds_payload(*books)) == books
        assert extract_bookmakers({"bookmakers": books}) == books

    def test_extract_empty(self):
        assert extract_bookmakers(None) == []
        assert extract_bookmakers({"response": []}) == []
