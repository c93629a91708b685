"""Shared fixtures: in-memory SQLite session and row factories."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import ticketforge.models  # noqa: F401
from ticketforge.models import Fixture, FixtureResult, StatsCache
from ticketforge.security import limiter
from ticketforge.weights.store import performance_weights

NOW = datetime(2026, 3, 1, 12, 0, 0)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    factory = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture(autouse=True)
def _isolate_globals():
    """Fresh weight cache and no rate limiting per test."""
    performance_weights.invalidate()
    limiter.enabled = False
    yield
    performance_weights.invalidate()


@pytest.fixture
def now():
    return NOW


def make_cache(team_id: int, sample_size: int = 5, goals: float = 1.5, corners: float = 5.0,
               cards: float = 2.0, fouls: float = 11.0, offsides: float = 1.5) -> StatsCache:
    return StatsCache(
        team_id=team_id,
        sample_size=sample_size,
        goals=goals,
        corners=corners,
        cards=cards,
        fouls=fouls,
        offsides=offsides,
    )


def make_fixture(fixture_id: int, home: int, away: int, kickoff: datetime,
                 status: str = "FT", league_id: int = 39) -> Fixture:
    return Fixture(
        id=fixture_id,
        league_id=league_id,
        home_team_id=home,
        away_team_id=away,
        kickoff_at=kickoff,
        status=status,
    )


def make_result(fixture_id: int, goals=(1, 1), corners=(5, 4), cards=(2, 1),
                fouls=(10, 12), offsides=(1, 2)) -> FixtureResult:
    return FixtureResult(
        fixture_id=fixture_id,
        goals_home=goals[0], goals_away=goals[1],
        corners_home=corners[0], corners_away=corners[1],
        cards_home=cards[0], cards_away=cards[1],
        fouls_home=fouls[0], fouls_away=fouls[1],
        offsides_home=offsides[0], offsides_away=offsides[1],
    )


def odds_payload(*bookmakers) -> dict:
    """Provider envelope for a fixture's odds."""
    return {"response": [{"bookmakers": list(bookmakers)}]}


def bookmaker(name: str, bets: dict) -> dict:
    """bets: {bet_id: [(value, odd), ...]}"""
    return {
        "id": abs(hash(name)) % 1000,
        "name": name,
        "bets": [
            {"id": bet_id, "name": f"bet {bet_id}", "values": [{"value": v, "odd": str(o)} for v, o in values]}
            for bet_id, values in bets.items()
        ],
    }


def days_ago(n: float) -> datetime:
    return NOW - timedelta(days=n)
