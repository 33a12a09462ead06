"""Per-IP request rate limiting for the /api/ routes."""

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.exceptions import NotConnected
from core.logging import get_logger

logger = get_logger(__name__)

LIMITED_PREFIX = "/api/"
RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window request counter per client IP, kept in the Redis cache.

    Counters live under the cache key prefix, so the window is shared by every
    worker. When the cache is down requests pass uncounted.
    """

    async def dispatch(self, request: Request, call_next):
        settings = container.settings()
        if not settings.rate_limit_enabled or not request.url.path.startswith(LIMITED_PREFIX):
            return await call_next(request)

        cache = container.cache()
        ip = client_ip(request)
        try:
            hits, reset = await cache.increment(cache.make_key("ratelimit", {"ip": ip}),
                                                settings.rate_limit_window)
        except NotConnected as e:
            logger.warning("Rate limit skipped, cache unavailable", client_ip=ip, error=str(e))
            return await call_next(request)

        limit = settings.rate_limit_requests
        headers = {
            "RateLimit-Limit": str(limit),
            "RateLimit-Remaining": str(max(0, limit - hits)),
            "RateLimit-Reset": str(reset),
        }

        if hits > limit:
            logger.warning("Rate limit exceeded", client_ip=ip, hits=hits, limit=limit)
            return JSONResponse(
                status_code=429,
                content={"error": RATE_LIMIT_MESSAGE},
                headers={**headers, "Retry-After": str(reset)}
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
