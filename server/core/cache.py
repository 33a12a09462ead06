"""Redis-backed response cache.

The store is fail-closed: when Redis is unreachable every operation raises
NotConnected instead of degrading into an always-miss cache, so callers never
mistake an outage for a miss and skip quota accounting.
"""

import json
import asyncio
from typing import Any, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from core.config import Settings
from core.exceptions import ConnectionFailure, NotConnected
from core.keys import derive_key
from core.logging import get_logger, log_cache_operation

logger = get_logger(__name__)

_TRANSPORT_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


class CacheStore:
    """Async key-value cache with per-entry TTL on top of Redis.

    The Redis client is injectable so tests can hand in a double; by default
    one is built from ``settings.redis_url`` on first connect.
    """

    def __init__(self, settings: Settings, client: Optional[redis.Redis] = None):
        self.settings = settings
        self.redis: Optional[redis.Redis] = client
        self._connected = False

    def _build_client(self) -> redis.Redis:
        return redis.from_url(
            self.settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=self.settings.redis_socket_timeout,
            socket_connect_timeout=self.settings.redis_socket_timeout,
        )

    def retry_delay(self, attempt: int) -> float:
        """Seconds to wait before the next attempt: linear, capped."""
        delay_ms = min(attempt * self.settings.redis_retry_step_ms, self.settings.redis_retry_cap_ms)
        return delay_ms / 1000

    async def connect(self) -> bool:
        """Connect to Redis, retrying with linear backoff.

        Raises:
            ConnectionFailure: Redis did not answer a PING within the
                configured number of attempts.
        """
        if self._connected:
            return True

        if self.redis is None:
            self.redis = self._build_client()

        attempts = self.settings.redis_connect_attempts
        last_error = "unknown error"
        for attempt in range(1, attempts + 1):
            try:
                await self.redis.ping()
                self._mark_connected()
                logger.info("Redis cache connected", url=self.settings.redis_url, attempt=attempt)
                return True
            except (RedisError, OSError) as e:
                last_error = str(e)
                if attempt == attempts:
                    break
                delay = self.retry_delay(attempt)
                logger.warning("Redis connection attempt failed",
                               attempt=attempt,
                               max_attempts=attempts,
                               retry_in_seconds=delay,
                               error=last_error)
                await asyncio.sleep(delay)

        self._connected = False
        logger.error("Redis connection failed", url=self.settings.redis_url, error=last_error)
        raise ConnectionFailure(self.settings.redis_url, attempts, last_error)

    async def shutdown(self):
        """Close cache connections."""
        if self.redis:
            await self.redis.aclose()
            logger.info("Redis cache connections closed")
        self._connected = False

    def is_connected(self) -> bool:
        """Last known connection state; does not touch the network."""
        return self._connected and self.redis is not None

    async def ping(self) -> bool:
        """Round-trip liveness check that also updates the connection state."""
        if self.redis is None:
            return False
        try:
            await self.redis.ping()
        except (RedisError, OSError) as e:
            self._mark_disconnected(e)
            return False
        self._mark_connected()
        return True

    def _mark_connected(self) -> None:
        if not self._connected:
            logger.info("Redis ready")
        self._connected = True

    def _mark_disconnected(self, error: Exception) -> None:
        if self._connected:
            logger.error("Redis connection lost", error=str(error))
        self._connected = False

    def _require_connection(self) -> redis.Redis:
        if not self.is_connected():
            raise NotConnected("Redis is not connected")
        return self.redis

    def make_key(self, namespace: str, params: dict) -> str:
        """Derive a cache key under this store's application prefix."""
        return derive_key(namespace, params, prefix=self.settings.cache_key_prefix)

    async def get(self, key: str) -> Optional[Any]:
        """Get a cached payload, or None when absent or expired.

        Raises:
            NotConnected: Redis is down; this is not a miss.
        """
        client = self._require_connection()
        try:
            value = await client.get(key)
        except _TRANSPORT_ERRORS as e:
            self._mark_disconnected(e)
            raise NotConnected(f"Cache get failed: {e}") from e

        if value is None:
            log_cache_operation(logger, "get", key, hit=False)
            return None

        try:
            payload = json.loads(value)
        except ValueError:
            logger.warning("Cache entry is not JSON, treating as miss", key=key)
            return None

        log_cache_operation(logger, "get", key, hit=True)
        return payload

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """Store a payload under key for ttl seconds, replacing any previous entry."""
        client = self._require_connection()
        serialized = json.dumps(value)
        try:
            await client.setex(key, ttl, serialized)
        except _TRANSPORT_ERRORS as e:
            self._mark_disconnected(e)
            raise NotConnected(f"Cache set failed: {e}") from e

        log_cache_operation(logger, "set", key, ttl=ttl)
        return True

    def scope_pattern(self, pattern: str) -> str:
        """Confine a glob pattern to this application's key prefix."""
        prefix = f"{self.settings.cache_key_prefix}:"
        return pattern if pattern.startswith(prefix) else prefix + pattern

    async def purge(self, pattern: str) -> int:
        """Delete every key of this application matching a glob pattern.

        Patterns outside the key prefix are scoped into it, so "*" only
        clears this application's entries. Returns how many keys went.
        """
        client = self._require_connection()
        pattern = self.scope_pattern(pattern)
        try:
            keys = await client.keys(pattern)
            deleted = await client.delete(*keys) if keys else 0
        except _TRANSPORT_ERRORS as e:
            self._mark_disconnected(e)
            raise NotConnected(f"Cache purge failed: {e}") from e

        log_cache_operation(logger, "purge", pattern, deleted=deleted)
        logger.info("Cache purged", pattern=pattern, deleted=deleted)
        return deleted

    async def increment(self, key: str, window: int) -> Tuple[int, int]:
        """Count a hit in a fixed window; returns (hits so far, seconds until reset).

        The window starts with the first hit and the counter expires with it.
        """
        client = self._require_connection()
        try:
            count = await client.incr(key)
            if count == 1:
                await client.expire(key, window)
                ttl = window
            else:
                ttl = await client.ttl(key)
                if ttl < 0:
                    await client.expire(key, window)
                    ttl = window
        except _TRANSPORT_ERRORS as e:
            self._mark_disconnected(e)
            raise NotConnected(f"Cache increment failed: {e}") from e

        return count, ttl
