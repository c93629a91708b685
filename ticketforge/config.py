"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # "production" makes an empty API_KEY block admin endpoints
    ENVIRONMENT: str = "development"

    # API Security
    API_KEY: str = ""  # Optional API key for admin endpoints
    API_KEY_HEADER: str = "X-API-Key"
    RATE_LIMIT_PER_MINUTE: str = "60/minute"

    # Background scheduler
    SCHEDULER_ENABLED: bool = False

    # ═══════════════════════════════════════════════════════════════
    # Selections refresh (stats gate → line rules → edge vs best price)
    # ═══════════════════════════════════════════════════════════════
    SELECTIONS_REFRESH_ENABLED: bool = True
    SELECTIONS_REFRESH_INTERVAL_MINUTES: int = 30
    SELECTIONS_WINDOW_HOURS: int = 168  # now → +7 days
    # Overlap guard: an unfinished run younger than this blocks a new one
    SELECTIONS_OVERLAP_STALE_SECONDS: int = 180
    SELECTIONS_RULES_VERSION: str = "v1.0-sheet"

    # Performance weights cache
    WEIGHTS_CACHE_TTL_SECONDS: int = 3600  # weights change weekly at most
    WEIGHTS_PRIOR_STRENGTH: float = 10.0  # pseudo-observations of a 50/50 prior

    # Ticket outcome backfill
    BACKFILL_ENABLED: bool = True
    BACKFILL_INTERVAL_MINUTES: int = 60
    BACKFILL_DEFAULT_BATCH_SIZE: int = 50
    BACKFILL_MAX_BATCH_SIZE: int = 200
    BACKFILL_MAX_BATCHES_PER_RUN: int = 10

    # Stats recomputation from stored results
    STATS_RECOMPUTE_MAX_FIXTURES: int = 5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
