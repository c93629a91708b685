"""
Team stats integrity.

Goals-first validation of cached team stats, recomputation from stored
results, and the cache audit/heal job.
"""

from ticketforge.stats.integrity import (
    MIN_SAMPLE_SIZE,
    StatsValidation,
    validate_fixture_stats,
    validate_fixtures_batch,
)
from ticketforge.stats.recompute import (
    get_team_db_fixture_count,
    recompute_team_stats_from_db,
    refresh_team_stats_cache_from_db,
    validate_stats_against_db,
)

__all__ = [
    "MIN_SAMPLE_SIZE",
    "StatsValidation",
    "validate_fixture_stats",
    "validate_fixtures_batch",
    "get_team_db_fixture_count",
    "recompute_team_stats_from_db",
    "refresh_team_stats_cache_from_db",
    "validate_stats_against_db",
]
