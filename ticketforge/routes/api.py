"""Admin API routes for the selection, weights, ticket and backfill pipeline.

All endpoints require the admin API key and are rate limited.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ticketforge.backfill.outcomes import BackfillParamsError, backfill_ticket_outcomes
from ticketforge.config import get_settings
from ticketforge.database import get_async_session
from ticketforge.security import limiter, verify_api_key
from ticketforge.selection.refresh_job import refresh_selections
from ticketforge.stats.audit_job import audit_team_stats
from ticketforge.stats.integrity import validate_fixtures_batch
from ticketforge.stats.recompute import validate_stats_against_db
from ticketforge.tickets.assembler import NoCandidatesError, generate_ticket
from ticketforge.weights.store import performance_weights

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(tags=["pipeline"], dependencies=[Depends(verify_api_key)])


class FixtureRef(BaseModel):
    fixture_id: int
    home_team_id: int
    away_team_id: int


class StatsValidationRequest(BaseModel):
    fixtures: list[FixtureRef] = Field(..., max_length=500)


class StatsAuditRequest(BaseModel):
    team_ids: list[int] = Field(..., min_length=1, max_length=200)
    heal: bool = False


class SelectionsRefreshRequest(BaseModel):
    window_hours: Optional[int] = Field(default=None, ge=1, le=24 * 14)


class GenerateTicketRequest(BaseModel):
    mode: str = "balanced"
    fixture_ids: Optional[list[int]] = None
    seed: Optional[int] = None
    user_id: Optional[str] = None


@router.post("/fixtures/stats-validation")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def fixtures_stats_validation(
    request: Request,
    body: StatsValidationRequest,
    session: AsyncSession = Depends(get_async_session),
):
    """Goals-first stats gate for a batch of fixtures (two bulk queries)."""
    try:
        results = await validate_fixtures_batch(
            session, [(f.fixture_id, f.home_team_id, f.away_team_id) for f in body.fixtures]
        )
        return {str(fixture_id): v.to_dict() for fixture_id, v in results.items()}
    except Exception as e:
        logger.error(f"[STATS_INTEGRITY] Batch validation failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/teams/{team_id}/stats-audit")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def team_stats_audit(
    request: Request,
    team_id: int,
    session: AsyncSession = Depends(get_async_session),
):
    """Compare one team's stats_cache row with the DB recomputation."""
    try:
        audit = await validate_stats_against_db(session, team_id, settings.STATS_RECOMPUTE_MAX_FIXTURES)
        return audit.to_dict()
    except Exception as e:
        logger.error(f"[STATS_DB] Audit failed for team {team_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/teams/stats-audit")
@limiter.limit("10/minute")
async def teams_stats_audit(
    request: Request,
    body: StatsAuditRequest,
    session: AsyncSession = Depends(get_async_session),
):
    """Batch cache audit; with heal=true diverged caches are rebuilt from DB."""
    try:
        return await audit_team_stats(
            session, body.team_ids, heal=body.heal, max_fixtures=settings.STATS_RECOMPUTE_MAX_FIXTURES
        )
    except Exception as e:
        logger.error(f"[STATS_DB] Batch audit failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/selections/refresh")
@limiter.limit("5/minute")
async def selections_refresh(
    request: Request,
    body: Optional[SelectionsRefreshRequest] = None,
    session: AsyncSession = Depends(get_async_session),
):
    """
    Run the selection refresh for the upcoming window.

    Returns {"skipped": true, "reason": "concurrent_run_in_progress"} when a
    recent run has not finished yet.
    """
    window_hours = body.window_hours if body else None
    try:
        return await refresh_selections(session, window_hours=window_hours)
    except Exception as e:
        logger.error(f"[SELECTIONS] Refresh failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/weights/reload")
@limiter.limit("10/minute")
async def weights_reload(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
):
    """Force a reload of the performance weight cache."""
    try:
        reloaded = await performance_weights.load_weights(session, force=True)
        return {"reloaded": reloaded, "rows": performance_weights.size}
    except Exception as e:
        logger.error(f"[WEIGHTS] Reload failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/tickets/generate")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def tickets_generate(
    request: Request,
    body: GenerateTicketRequest,
    session: AsyncSession = Depends(get_async_session),
):
    """
    Build and store a ticket for the requested mode.

    "No candidates" is a 422 with error="no_candidates", distinct from a 500.
    """
    try:
        record, ticket = await generate_ticket(
            session,
            body.mode,
            performance_weights,
            fixture_ids=body.fixture_ids,
            seed=body.seed,
            user_id=body.user_id,
        )
    except NoCandidatesError as e:
        return JSONResponse(
            status_code=422,
            content={"error": "no_candidates", "message": str(e), "pool_size": e.pool_size},
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"[TICKETS] Generation failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    return {"ticket_id": record.id, **ticket.to_dict()}


@router.post("/backfill/ticket-outcomes")
@limiter.limit("30/minute")
async def backfill_outcomes(
    request: Request,
    batch_size: Optional[int] = Query(default=None),
    cursor: Optional[str] = Query(default=None),
    target_ids: Optional[str] = Query(default=None, description="Comma-separated ticket IDs"),
    dry_run: bool = Query(default=False),
    session: AsyncSession = Depends(get_async_session),
):
    """One backfill batch; pass the returned next_cursor to continue."""
    try:
        return await backfill_ticket_outcomes(
            session, batch_size=batch_size, cursor=cursor, target_ids=target_ids, dry_run=dry_run
        )
    except BackfillParamsError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"[BACKFILL] Batch failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")
