"""FastAPI application for the ticket selection pipeline."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ticketforge.config import get_settings
from ticketforge.database import AsyncSessionLocal, close_db, init_db
from ticketforge.routes.api import router as api_router
from ticketforge.routes.core import router as core_router
from ticketforge.scheduler import start_scheduler, stop_scheduler
from ticketforge.security import limiter
from ticketforge.weights.store import performance_weights

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting ticketforge...")
    await init_db()

    async with AsyncSessionLocal() as session:
        await performance_weights.load_weights(session)

    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")

    yield

    logger.info("Shutting down ticketforge...")
    stop_scheduler()
    await close_db()


app = FastAPI(
    title="ticketforge",
    description="Stats-gated line selection, edge scoring and ticket assembly",
    version="1.0.0",
    lifespan=lifespan,
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Include routers
app.include_router(core_router)
app.include_router(api_router)
