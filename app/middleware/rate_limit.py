"""
Rate limiting middleware using slowapi.
Keyed per end user where the acting-user header is present, else per API key or IP.
"""
import os
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.exceptions import ErrorCode

logger = logging.getLogger(__name__)

RATE_LIMIT_ENABLED = os.getenv('RATE_LIMIT_ENABLED', 'true').lower() == 'true'
RATE_LIMIT_DEFAULT = os.getenv('RATE_LIMIT_DEFAULT', '100/minute')
# Connection requests fan out notifications, so they get their own budget
RATE_LIMIT_CONNECTION_REQUESTS = os.getenv('RATE_LIMIT_CONNECTION_REQUESTS', '20/minute')

# Redis URL for distributed rate limiting (optional)
REDIS_URL = os.getenv('REDIS_URL')


def get_client_key(request: Request) -> str:
    """Rate limit key: acting user, then API key prefix, then client address."""
    user_id = request.headers.get('X-User-ID')
    if user_id:
        return f"user:{user_id}"
    api_key = request.headers.get('X-API-KEY')
    if api_key:
        # Use first 16 chars of API key as identifier (for privacy)
        return f"apikey:{api_key[:16]}"
    return get_remote_address(request)


def create_limiter() -> Limiter:
    """Redis-backed limiter when REDIS_URL is set, in-memory otherwise."""
    if REDIS_URL and RATE_LIMIT_ENABLED:
        return Limiter(
            key_func=get_client_key,
            default_limits=[RATE_LIMIT_DEFAULT],
            storage_uri=REDIS_URL,
            strategy="fixed-window",
            enabled=True
        )
    return Limiter(
        key_func=get_client_key,
        default_limits=[RATE_LIMIT_DEFAULT],
        strategy="fixed-window",
        enabled=RATE_LIMIT_ENABLED
    )


# Create global limiter instance
limiter = create_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the common error envelope with a Retry-After header."""
    logger.warning(f"Rate limit exceeded for {get_client_key(request)}: {exc.detail}")
    retry_after = getattr(exc, 'retry_after', 60)

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": ErrorCode.RATE_LIMITED.value,
                "message": "Rate limit exceeded. Please slow down your requests.",
                "details": {"limit": str(exc.detail), "retry_after_seconds": retry_after},
                "path": request.url.path
            }
        },
        headers={"Retry-After": str(retry_after)}
    )


def limit_connection_requests(func):
    """Apply the connection-request limit."""
    return limiter.limit(RATE_LIMIT_CONNECTION_REQUESTS)(func)
