"""Database models using SQLModel."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


FINISHED_STATUSES = ("FT", "AET", "PEN")


def utc_now() -> datetime:
    """Current UTC time as a naive datetime; every timestamp column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Fixture(SQLModel, table=True):
    """Fixture as stored from the sports-data provider."""

    __tablename__ = "fixtures"

    id: int = Field(primary_key=True, description="Provider fixture ID")
    league_id: int = Field(index=True, description="Provider league ID")
    country_code: Optional[str] = Field(default=None, max_length=10)
    home_team_id: int = Field(index=True)
    away_team_id: int = Field(index=True)
    kickoff_at: datetime = Field(index=True, sa_type=DateTime, description="Kickoff (UTC)")
    status: str = Field(max_length=20, default="NS", description="NS, 1H, FT, AET, PEN, etc.")


class FixtureResult(SQLModel, table=True):
    """Final stat line for a finished fixture (home/away per metric)."""

    __tablename__ = "fixture_results"

    fixture_id: int = Field(primary_key=True, foreign_key="fixtures.id")

    goals_home: Optional[int] = None
    goals_away: Optional[int] = None
    corners_home: Optional[int] = None
    corners_away: Optional[int] = None
    cards_home: Optional[int] = None
    cards_away: Optional[int] = None
    fouls_home: Optional[int] = None
    fouls_away: Optional[int] = None
    offsides_home: Optional[int] = None
    offsides_away: Optional[int] = None

    fetched_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)


class StatsCache(SQLModel, table=True):
    """Rolling per-team averages used by the selection pipeline."""

    __tablename__ = "stats_cache"

    team_id: int = Field(primary_key=True)
    goals: float = 0.0
    corners: float = 0.0
    cards: float = 0.0
    fouls: float = 0.0
    offsides: float = 0.0
    sample_size: int = Field(default=0, description="Fixtures contributing to goals")
    fixture_ids: Optional[list] = Field(default=None, sa_column=Column(JSON))
    source: str = Field(default="api-football", max_length=30, description="'api-football' or 'db'")
    computed_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)


class StatsHealthViolation(SQLModel, table=True):
    """Health-check finding for a team metric. Unresolved while resolved_at is NULL."""

    __tablename__ = "stats_health_violations"

    id: Optional[int] = Field(default=None, primary_key=True)
    team_id: int = Field(index=True)
    metric: str = Field(max_length=20)
    severity: str = Field(max_length=20, description="'info', 'warning' or 'critical'")
    details: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)
    resolved_at: Optional[datetime] = Field(default=None, sa_type=DateTime)


class OddsCache(SQLModel, table=True):
    """Latest pre-match odds payload per fixture (bookmakers → bets → values)."""

    __tablename__ = "odds_cache"

    fixture_id: int = Field(primary_key=True)
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    captured_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)


class OptimizedSelection(SQLModel, table=True):
    """Recommended line priced against the best available bookmaker."""

    __tablename__ = "optimized_selections"
    __table_args__ = (
        UniqueConstraint(
            "fixture_id", "market", "side", "line", "bookmaker", "is_live",
            name="uq_selection_fixture_market_line_book",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    fixture_id: int = Field(index=True)
    league_id: Optional[int] = Field(default=None, index=True)
    country_code: Optional[str] = Field(default=None, max_length=10)
    utc_kickoff: datetime = Field(index=True, sa_type=DateTime)

    market: str = Field(max_length=20)
    side: str = Field(max_length=10)
    line: float
    bookmaker: str = Field(max_length=100)
    odds: float
    is_live: bool = Field(default=False)

    edge_pct: float
    model_prob: float
    sample_size: int
    combined_snapshot: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    rules_version: str = Field(max_length=40)
    source: str = Field(default="api-football", max_length=30)
    computed_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)


class PerformanceWeight(SQLModel, table=True):
    """Historical win-rate derived weight per (market, side, line, league)."""

    __tablename__ = "performance_weights"
    __table_args__ = (
        UniqueConstraint("market", "side", "line", "league_key", name="uq_weight_market_line_league"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    market: str = Field(max_length=20)
    side: str = Field(max_length=10)
    line: float
    league_id: Optional[int] = Field(default=None, description="NULL = global row")
    league_key: int = Field(default=-1, description="league_id or -1 for global")

    sample_size: int = 0
    wins: int = 0
    losses: int = 0
    pushes: int = 0
    raw_win_rate: float = 0.0
    bayes_win_rate: float = 0.5
    roi_pct: float = 0.0
    weight: float = 1.0
    computed_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)


class GeneratedTicket(SQLModel, table=True):
    """Ticket produced by the ticket builder. Legs are stored as a JSON array."""

    __tablename__ = "generated_tickets"

    id: str = Field(primary_key=True, max_length=36)
    user_id: Optional[str] = Field(default=None, max_length=36, index=True)
    total_odds: float = 0.0
    legs: list = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime, index=True)


class TicketLegOutcome(SQLModel, table=True):
    """One row per leg of a historical ticket, PENDING until settled."""

    __tablename__ = "ticket_leg_outcomes"
    __table_args__ = (
        UniqueConstraint(
            "ticket_id", "fixture_id", "market", "side", "line",
            name="uq_leg_outcome_ticket_fixture_selection",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    ticket_id: str = Field(max_length=36, index=True)
    user_id: Optional[str] = Field(default=None, max_length=36)
    fixture_id: int = Field(index=True)
    league_id: Optional[int] = None
    market: str = Field(max_length=20)
    side: str = Field(max_length=10)
    line: float
    odds: Optional[float] = None
    selection_key: str = Field(max_length=60)
    selection: Optional[str] = Field(default=None, max_length=100)
    source: str = Field(default="prematch", max_length=20)
    picked_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    kickoff_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    result_status: str = Field(default="PENDING", max_length=10)
    derived_from_selection: bool = Field(default=False)
    settled_at: Optional[datetime] = Field(default=None, sa_type=DateTime)


class TicketOutcome(SQLModel, table=True):
    """Per-ticket rollup of leg settlement counts."""

    __tablename__ = "ticket_outcomes"

    ticket_id: str = Field(primary_key=True, max_length=36)
    user_id: Optional[str] = Field(default=None, max_length=36)
    legs_total: int = 0
    legs_settled: int = 0
    legs_won: int = 0
    legs_lost: int = 0
    legs_pushed: int = 0
    legs_void: int = 0
    ticket_status: str = Field(default="PENDING", max_length=10)
    total_odds: Optional[float] = None
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)


class OptimizerRunLog(SQLModel, table=True):
    """Append-only audit row per job invocation; also the overlap guard's signal."""

    __tablename__ = "optimizer_run_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    run_type: str = Field(max_length=60, index=True)
    window_start: Optional[datetime] = Field(default=None, sa_type=DateTime)
    window_end: Optional[datetime] = Field(default=None, sa_type=DateTime)
    scope: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    scanned: int = 0
    with_odds: int = 0
    upserted: int = 0
    skipped: int = 0
    failed: int = 0

    started_at: datetime = Field(default_factory=utc_now, sa_type=DateTime, index=True)
    finished_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    duration_ms: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=500)
