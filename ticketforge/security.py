"""Security middleware: rate limiting and API key authentication."""

import logging
from typing import Optional

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.util import get_remote_address

from ticketforge.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

IS_PRODUCTION = settings.ENVIRONMENT.lower() == "production"

# API Key header for admin endpoints
api_key_header = APIKeyHeader(name=settings.API_KEY_HEADER, auto_error=False)


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
) -> bool:
    """
    Verify API key for protected endpoints.

    SECURITY: In production, API_KEY must be configured. Empty API_KEY
    blocks all admin requests (fail-closed). In development, empty API_KEY
    allows all requests for convenience.
    """
    if not settings.API_KEY:
        if IS_PRODUCTION:
            logger.error("API_KEY not configured in production - blocking admin access")
            raise HTTPException(
                status_code=503,
                detail="Service misconfigured. Admin access disabled.",
            )
        return True

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail=f"Missing API key. Provide it via {settings.API_KEY_HEADER} header.",
        )

    if api_key != settings.API_KEY:
        logger.warning("Invalid API key attempt from request")
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def get_rate_limit_key(request: Request) -> str:
    """
    Rate limit key based on IP and optional API key.

    Authenticated requests get their own bucket.
    """
    api_key = request.headers.get(settings.API_KEY_HEADER)
    if settings.API_KEY and api_key == settings.API_KEY:
        return f"authenticated:{api_key[:8]}"
    return get_remote_address(request)


# Rate limiter keyed by client IP (or API key bucket)
limiter = Limiter(key_func=get_rate_limit_key)
