"""Rate limiting middleware using Redis."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Rate limit for public token endpoints: 10 requests per minute per IP
RATE_LIMIT_MAX_REQUESTS = 10
RATE_LIMIT_WINDOW_SECONDS = 60

# Public routes reachable without credentials (token guessing surface)
RATE_LIMITED_PATHS = frozenset({"/api/appointments/confirm"})


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Middleware to enforce rate limiting using Redis.

    Limits POSTs to the public action-token route to 10 per minute per
    source IP address. Returns 429 Too Many Requests if the limit is
    exceeded. Fails open when Redis is unavailable or not configured.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process request with rate limiting.

        Args:
            request: Incoming HTTP request
            call_next: Next middleware/route handler

        Returns:
            Response with rate limit headers
            429 if rate limit exceeded
        """
        if request.method != "POST" or request.url.path not in RATE_LIMITED_PATHS:
            return await call_next(request)

        redis_client = getattr(request.app.state, "redis", None)
        if redis_client is None:
            return await call_next(request)

        # Extract client IP (consider X-Forwarded-For for proxied requests)
        client_ip = request.client.host if request.client else "unknown"
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()

        current_minute = datetime.now(UTC).strftime("%Y-%m-%d:%H:%M")
        redis_key = f"rate_limit:{request.url.path}:{client_ip}:{current_minute}"

        try:
            request_count = await redis_client.incr(redis_key)
            if request_count == 1:
                await redis_client.expire(redis_key, RATE_LIMIT_WINDOW_SECONDS)
        except Exception as e:
            # Don't block requests if Redis fails
            logger.error(f"Rate limit check failed for IP {client_ip}: {e}")
            return await call_next(request)

        remaining = max(0, RATE_LIMIT_MAX_REQUESTS - request_count)

        if request_count > RATE_LIMIT_MAX_REQUESTS:
            logger.warning(
                f"Rate limit exceeded for IP {client_ip}: {request_count} requests",
                extra={"request_path": request.url.path},
            )
            return JSONResponse(
                status_code=429,
                content={"error": "rate_limited", "message": "Demasiadas solicitudes"},
                headers={
                    "X-RateLimit-Remaining": "0",
                    "Retry-After": str(RATE_LIMIT_WINDOW_SECONDS),
                },
            )

        response: Response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
