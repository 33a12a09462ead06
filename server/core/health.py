"""Health check utilities.

Provides uptime tracking, the /health payload and the background probe that
keeps the cache's connection state current.
"""
import time
import asyncio
from datetime import datetime
from typing import Dict, Any, Optional, TYPE_CHECKING

from core.logging import get_logger

if TYPE_CHECKING:
    from core.config import Settings
    from core.cache import CacheStore

logger = get_logger(__name__)

# Module-level startup time tracking
_startup_time: float = 0.0


def set_startup_time() -> None:
    """Record the application startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    """Get uptime in seconds since startup."""
    return time.time() - _startup_time if _startup_time else 0.0


def get_health_status(cache: "CacheStore", settings: "Settings") -> Dict[str, Any]:
    """Health payload; reports the cache's last known state without a round trip."""
    redis_connected = cache.is_connected()
    return {
        "status": "ok" if redis_connected else "error",
        "timestamp": datetime.now().isoformat(),
        "redis": "connected" if redis_connected else "disconnected",
        "uptime_seconds": round(get_uptime(), 1),
        "environment": "development" if settings.is_development else "production",
    }


class CacheHealthProbe:
    """Periodically pings the cache so a recovered Redis is noticed again."""

    def __init__(self, cache: "CacheStore", interval: float):
        self.cache = cache
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Cache health probe started", interval_seconds=self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Cache health probe stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            was_connected = self.cache.is_connected()
            healthy = await self.cache.ping()
            if healthy != was_connected:
                logger.info("Cache connection state changed", connected=healthy)
