"""
FastAPI backend for the metered places proxy.

Forwards place-search and LLM queries to paid upstream APIs behind a Redis
response cache and a persistent daily call budget.
"""

# Performance: Install uvloop if available (Linux/macOS only)
try:
    import uvloop
    uvloop.install()
except ImportError:
    pass  # Windows - uvloop not available, use default asyncio

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse

from core.container import container
from core.config import Settings
from core.health import CacheHealthProbe, get_health_status, set_startup_time
from core.logging import configure_logging, get_logger
from middleware.rate_limit import RateLimitMiddleware
from middleware.security import SecurityHeadersMiddleware
from routers import llm, maps, places, usage
from services.exceptions import (
    LLMUnavailableError,
    MissingApiKeyError,
    QuotaExceededError,
    UpstreamError,
)

# Initialize settings and logging
settings: Settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting metered places proxy")
    set_startup_time()

    # Without the cache there is no quota protection: ConnectionFailure aborts startup
    cache = container.cache()
    await cache.connect()
    await container.usage_ledger().initialize()

    probe = CacheHealthProbe(cache, settings.health_check_interval)
    await probe.start()

    logger.info("Services started successfully",
                daily_limit=settings.google_maps_daily_limit,
                usage_file=settings.usage_file)
    yield

    await probe.stop()
    await cache.shutdown()
    logger.info("Services shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Metered Places Proxy",
    version="1.0.0",
    description="Cached, quota-gated proxy for Google Places and LLM queries",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)


@app.exception_handler(QuotaExceededError)
async def quota_exceeded_handler(request: Request, exc: QuotaExceededError):
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": "Daily API limit reached",
            "message": str(exc),
            "limit": exc.decision.limit,
            "used": exc.decision.used,
            "remaining": exc.decision.remaining,
        }
    )


@app.exception_handler(MissingApiKeyError)
async def missing_api_key_handler(request: Request, exc: MissingApiKeyError):
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": f"{exc.service} API key not configured", "message": str(exc)}
    )


@app.exception_handler(LLMUnavailableError)
async def llm_unavailable_handler(request: Request, exc: LLMUnavailableError):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": "LLM service unavailable", "message": str(exc)}
    )


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    logger.error("Upstream call failed", path=request.url.path, error=str(exc))
    code = exc.status_code if exc.status_code and exc.status_code >= 400 else status.HTTP_502_BAD_GATEWAY
    return JSONResponse(status_code=code, content={"error": {"message": str(exc)}})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {type(exc).__name__}: {str(exc)}", exc_info=exc)
    content = {"error": {"message": str(exc) or "Internal server error"}}
    if settings.is_development:
        content["error"]["type"] = type(exc).__name__
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


# Request rate limiting and security headers
app.add_middleware(RateLimitMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(places.router)
app.include_router(maps.router)
app.include_router(usage.router)
app.include_router(llm.router)


@app.get("/health")
async def health_check():
    """Cache connection state and uptime."""
    return get_health_status(container.cache(), settings)


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting metered places proxy",
                host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers
    )
