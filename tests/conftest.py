"""
Fixtures shared by the cache and service tests.
"""
import fnmatch
from datetime import UTC, datetime, timedelta

import pytest

from sadaqah_rates.cache.rate_cache import RateCache

START_TIME = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)


class FakeRedis:
    """In-memory stand-in for the redis.asyncio commands RateCache uses"""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.expiry: dict[str, int] = {}
        self.calls: list[str] = []

    async def get(self, key):
        self.calls.append("get")
        return self.store.get(key)

    async def mget(self, keys):
        self.calls.append("mget")
        return [self.store.get(key) for key in keys]

    async def set(self, key, value, ex=None):
        self.calls.append("set")
        self.store[key] = value
        if ex is not None:
            self.expiry[key] = ex
        return True

    async def delete(self, *keys):
        self.calls.append("delete")
        deleted = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                deleted += 1
        return deleted

    async def scan_iter(self, match=None):
        for key in list(self.store):
            if match is None or fnmatch.fnmatch(key, match):
                yield key

    async def ping(self):
        return True

    async def aclose(self):
        pass


class Clock:
    """Controllable UTC clock"""

    def __init__(self, now: datetime = START_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def rate_cache(fake_redis, clock):
    return RateCache(fake_redis, ttl=timedelta(hours=1), retention=timedelta(days=7), clock=clock)
