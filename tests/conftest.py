"""
Shared fixtures: settings pointed at a temp ledger, an in-memory Redis double
and a controllable clock.
"""

import time
import fnmatch
from datetime import date, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from core.cache import CacheStore
from core.config import Settings
from core.quota import QuotaGate
from core.usage import UsageLedger


class FakeRedis:
    """In-memory redis.asyncio.Redis double covering the commands CacheStore uses."""

    def __init__(self):
        self.store = {}
        self.down = False
        self.ping_calls = 0
        self.closed = False

    def _check(self):
        if self.down:
            raise RedisConnectionError("Connection refused")

    def _live(self, key):
        entry = self.store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if time.monotonic() >= expires_at:
            del self.store[key]
            return None
        return value

    async def ping(self):
        self.ping_calls += 1
        self._check()
        return True

    async def get(self, key):
        self._check()
        return self._live(key)

    async def setex(self, key, ttl, value):
        self._check()
        self.store[key] = (value, time.monotonic() + ttl)
        return True

    async def keys(self, pattern):
        self._check()
        return [k for k in list(self.store) if self._live(k) is not None and fnmatch.fnmatchcase(k, pattern)]

    async def incr(self, key):
        self._check()
        entry = self.store[key] if self._live(key) is not None else ("0", float("inf"))
        value = int(entry[0]) + 1
        self.store[key] = (str(value), entry[1])
        return value

    async def expire(self, key, ttl):
        self._check()
        if self._live(key) is None:
            return False
        self.store[key] = (self.store[key][0], time.monotonic() + ttl)
        return True

    async def ttl(self, key):
        self._check()
        if self._live(key) is None:
            return -2
        expires_at = self.store[key][1]
        if expires_at == float("inf"):
            return -1
        return max(0, int(round(expires_at - time.monotonic())))

    async def delete(self, *keys):
        self._check()
        return sum(1 for k in keys if self.store.pop(k, None) is not None)

    async def aclose(self):
        self.closed = True


class FakeClock:
    """Callable returning a settable 'today'."""

    def __init__(self, today: date):
        self.today = today

    def __call__(self) -> date:
        return self.today

    def advance(self, days: int = 1):
        self.today += timedelta(days=days)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        usage_file=str(tmp_path / "data" / "usage.json"),
        google_maps_daily_limit=5,
        google_maps_api_key="test-key",
        redis_connect_attempts=3,
        redis_retry_step_ms=1,
        redis_retry_cap_ms=2,
        cache_key_prefix="app",
        admin_token=None,
        rate_limit_enabled=True,
        rate_limit_requests=100,
        rate_limit_window=900,
    )


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def clock():
    return FakeClock(date(2024, 3, 31))


@pytest_asyncio.fixture
async def cache(settings, fake_redis):
    store = CacheStore(settings, client=fake_redis)
    await store.connect()
    return store


@pytest.fixture
def ledger(settings, clock):
    return UsageLedger(settings, clock=clock)


@pytest.fixture
def quota(ledger, settings):
    return QuotaGate(ledger, settings)


@pytest.fixture
def deny_ledger_access(monkeypatch, ledger):
    """Returns a switch that makes every stat/read of the ledger file fail with EACCES."""
    real_stat = Path.stat
    real_read_bytes = Path.read_bytes

    def stat(self, *args, **kwargs):
        if self == ledger.path:
            raise PermissionError(13, "Permission denied", str(self))
        return real_stat(self, *args, **kwargs)

    def read_bytes(self):
        if self == ledger.path:
            raise PermissionError(13, "Permission denied", str(self))
        return real_read_bytes(self)

    def deny():
        monkeypatch.setattr(Path, "stat", stat)
        monkeypatch.setattr(Path, "read_bytes", read_bytes)

    return deny
