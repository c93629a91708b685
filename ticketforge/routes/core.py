"""Core routes: health and Prometheus metrics."""

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from ticketforge.security import limiter
from ticketforge.telemetry.metrics import get_metrics_text
from ticketforge.weights.store import performance_weights

router = APIRouter(tags=["core"])


class HealthResponse(BaseModel):
    status: str
    weights_loaded: bool


@router.get("/health", response_model=HealthResponse)
@limiter.limit("120/minute")
async def health_check(request: Request):
    """Health check endpoint."""
    return HealthResponse(status="ok", weights_loaded=performance_weights.is_loaded)


@router.get("/metrics")
async def prometheus_metrics():
    """Prometheus exposition of job, selection, backfill and weight-cache metrics."""
    content, content_type = get_metrics_text()
    return PlainTextResponse(content=content, media_type=content_type)
