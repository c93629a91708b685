"""Tests for dialect-aware upserts."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from ticketforge import database
from ticketforge.db_utils import _dialect_insert, upsert_many
from ticketforge.models import StatsCache


class TestUpsertMany:
    @pytest.mark.asyncio
    async def test_insert_then_update(self, session):
        row = {"team_id": 1, "goals": 1.0, "corners": 4.0, "cards": 2.0, "fouls": 10.0,
               "offsides": 1.0, "sample_size": 3, "source": "db"}
        assert await upsert_many(session, StatsCache, [row], conflict_columns=["team_id"]) == 1
        await session.commit()

        await upsert_many(session, StatsCache, [{**row, "goals": 2.5}], conflict_columns=["team_id"])
        await session.commit()

        result = await session.execute(select(StatsCache).execution_options(populate_existing=True))
        rows = result.scalars().all()
        assert len(rows) == 1
        assert rows[0].goals == 2.5

    @pytest.mark.asyncio
    async def test_ignore_duplicates_keeps_first(self, session):
        row = {"team_id": 1, "goals": 1.0, "sample_size": 3}
        await upsert_many(session, StatsCache, [row], conflict_columns=["team_id"])
        await upsert_many(
            session, StatsCache, [{**row, "goals": 9.0}], conflict_columns=["team_id"], ignore_duplicates=True
        )
        await session.commit()

        cache = (await session.execute(select(StatsCache))).scalar_one()
        assert cache.goals == 1.0

    @pytest.mark.asyncio
    async def test_empty_list_is_noop(self, session):
        assert await upsert_many(session, StatsCache, [], conflict_columns=["team_id"]) == 0

    def test_unsupported_dialect(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "mysql"
        with pytest.raises(NotImplementedError):
            _dialect_insert(session, StatsCache)


def _fake_session(fails: bool):
    session = MagicMock()
    error = OperationalError("SELECT 1", {}, Exception("connection refused"))
    session.connection = AsyncMock(side_effect=error if fails else None)
    session.close = AsyncMock()
    return session


class TestSessionWithRetry:
    """Connect retries for scheduled jobs."""

    @pytest.mark.asyncio
    async def test_retries_then_yields_session(self):
        sessions = [_fake_session(True), _fake_session(False)]
        sleep = AsyncMock()
        with patch.object(database, "AsyncSessionLocal", MagicMock(side_effect=sessions)), \
                patch.object(database.asyncio, "sleep", sleep):
            async with database.get_session_with_retry(max_retries=3, retry_delay=0.5) as session:
                assert session is sessions[1]

        sessions[0].close.assert_awaited_once()
        sessions[1].close.assert_awaited_once()
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        sessions = [_fake_session(True) for _ in range(2)]
        with patch.object(database, "AsyncSessionLocal", MagicMock(side_effect=sessions)), \
                patch.object(database.asyncio, "sleep", AsyncMock()):
            with pytest.raises(OperationalError):
                async with database.get_session_with_retry(max_retries=2, retry_delay=0.1):
                    pass

        assert all(s.close.await_count == 1 for s in sessions)

    @pytest.mark.asyncio
    async def test_errors_inside_block_propagate_without_retry(self):
        session = _fake_session(False)
        factory = MagicMock(return_value=session)
        with patch.object(database, "AsyncSessionLocal", factory):
            with pytest.raises(ValueError):
                async with database.get_session_with_retry():
                    raise ValueError("job failed")

        assert factory.call_count == 1
        session.close.assert_awaited_once()
