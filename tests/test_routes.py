"""
Tests for the HTTP surface.

Requests go through httpx.AsyncClient over ASGITransport, with the database
dependency overridden to the per-test SQLite session.
"""

from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from ticketforge import security
from ticketforge.database import get_async_session
from ticketforge.main import app
from ticketforge.models import GeneratedTicket, OptimizedSelection, utc_now

from conftest import make_cache


@pytest_asyncio.fixture
async def client(session):
    async def override_session():
        yield session

    app.dependency_overrides[get_async_session] = override_session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


class TestCoreRoutes:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "weights_loaded": False}

    @pytest.mark.asyncio
    async def test_metrics(self, client):
        response = await client.get("/metrics")
        assert response.status_code == 200
        assert "ticketforge_" in response.text


class TestApiKey:
    """Admin routes require the configured key."""

    @pytest.mark.asyncio
    async def test_missing_key(self, client, monkeypatch):
        monkeypatch.setattr(security.settings, "API_KEY", "secret")
        response = await client.post("/weights/reload")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_key(self, client, monkeypatch):
        monkeypatch.setattr(security.settings, "API_KEY", "secret")
        response = await client.post("/weights/reload", headers={"X-API-Key": "nope"})
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_valid_key(self, client, monkeypatch):
        monkeypatch.setattr(security.settings, "API_KEY", "secret")
        response = await client.post("/weights/reload", headers={"X-API-Key": "secret"})
        assert response.status_code == 200
        assert response.json() == {"reloaded": True, "rows": 0}

    @pytest.mark.asyncio
    async def test_production_without_key_fails_closed(self, client, monkeypatch):
        monkeypatch.setattr(security, "IS_PRODUCTION", True)
        response = await client.post("/weights/reload")
        assert response.status_code == 503


class TestPipelineRoutes:
    @pytest.mark.asyncio
    async def test_stats_validation(self, client, session):
        session.add_all([make_cache(10), make_cache(20)])
        await session.commit()

        response = await client.post(
            "/fixtures/stats-validation",
            json={"fixtures": [
                {"fixture_id": 1, "home_team_id": 10, "away_team_id": 20},
                {"fixture_id": 2, "home_team_id": 10, "away_team_id": 99},
            ]},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["1"]["is_valid"] is True
        assert body["2"]["reason"] == "Away team (99) has no stats_cache"

    @pytest.mark.asyncio
    async def test_team_stats_audit(self, client):
        response = await client.get("/teams/5/stats-audit")
        assert response.status_code == 200
        assert response.json()["reason"] == "No DB history to validate against"

    @pytest.mark.asyncio
    async def test_selections_refresh_without_body(self, client):
        response = await client.post("/selections/refresh")
        assert response.status_code == 200
        assert response.json()["scanned"] == 0

    @pytest.mark.asyncio
    async def test_generate_no_candidates_is_422(self, client):
        response = await client.post("/tickets/generate", json={"mode": "balanced"})
        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "no_candidates"
        assert body["pool_size"] == 0

    @pytest.mark.asyncio
    async def test_generate_unknown_mode_is_400(self, client):
        response = await client.post("/tickets/generate", json={"mode": "yolo"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_generate_ticket(self, client, session):
        kickoff = utc_now() + timedelta(hours=6)
        session.add_all([
            OptimizedSelection(
                fixture_id=i, league_id=39, utc_kickoff=kickoff, market="goals", side="over",
                line=1.5, bookmaker="Bet365", odds=odds, edge_pct=3.0, model_prob=0.6,
                sample_size=5, rules_version="v1.0-sheet",
            )
            for i, odds in ((1, 1.8), (2, 1.9), (3, 1.7))
        ])
        await session.commit()

        response = await client.post("/tickets/generate", json={"mode": "balanced", "seed": 1})
        assert response.status_code == 200
        body = response.json()
        assert len(body["legs"]) == 3
        assert body["in_target"] is True
        assert await session.get(GeneratedTicket, body["ticket_id"]) is not None

    @pytest.mark.asyncio
    async def test_backfill_param_errors_are_400(self, client):
        response = await client.post(
            "/backfill/ticket-outcomes", params={"cursor": "2026-01-01T00:00:00", "target_ids": "a"}
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_backfill_dry_run(self, client):
        response = await client.post("/backfill/ticket-outcomes", params={"dry_run": "true"})
        assert response.status_code == 200
        assert response.json()["would_process_tickets"] == 0
