"""Async database connection using SQLAlchemy (supports SQLite and PostgreSQL)."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from ticketforge.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def get_database_url(url: str) -> str:
    """Convert database URL to async format."""
    # SQLite
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    # PostgreSQL
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


DATABASE_URL = get_database_url(settings.DATABASE_URL)
is_sqlite = DATABASE_URL.startswith("sqlite")

# Engine configuration
engine_kwargs = {
    "echo": False,
}

if is_sqlite:
    engine_kwargs["connect_args"] = {"check_same_thread": False}
    engine_kwargs["poolclass"] = StaticPool
else:
    engine_kwargs["pool_pre_ping"] = True
    engine_kwargs["pool_size"] = 10
    engine_kwargs["max_overflow"] = 20
    engine_kwargs["pool_recycle"] = 300
    # Refresh windows can scan hundreds of fixtures; keep a hard ceiling per statement
    engine_kwargs["connect_args"] = {
        "server_settings": {"statement_timeout": "60000"}
    }

async_engine = create_async_engine(DATABASE_URL, **engine_kwargs)

AsyncSessionLocal = sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db() -> None:
    """Initialize database tables."""
    # Register table models on the metadata before create_all
    import ticketforge.models  # noqa: F401

    logger.info("[DB] Creating tables")
    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await async_engine.dispose()
    logger.info("[DB] Connections closed")


async def _connect_session(max_retries: int, retry_delay: float) -> AsyncSession:
    attempts = max(1, max_retries)
    delay = retry_delay
    for attempt in range(1, attempts + 1):
        session = AsyncSessionLocal()
        try:
            await session.connection()
            return session
        except (InterfaceError, OperationalError) as e:
            await session.close()
            if attempt == attempts:
                raise
            logger.warning(f"[DB] Connect failed ({attempt}/{attempts}): {e}. Retrying in {delay}s")
            await asyncio.sleep(delay)
            delay *= 2


@asynccontextmanager
async def get_session_with_retry(max_retries: int = 3, retry_delay: float = 1.0):
    """
    Session for scheduled jobs, retrying the initial connect with backoff.

    Only opening the connection is retried; errors raised inside the block
    propagate to the job.
    """
    session = await _connect_session(max_retries, retry_delay)
    try:
        yield session
    finally:
        await session.close()
