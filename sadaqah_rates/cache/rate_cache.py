import asyncio
import json
import time
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

from redis import asyncio as redis
from redis.exceptions import RedisError

from sadaqah_rates.exceptions import CacheError
from sadaqah_rates.models import CacheLookup, RateCacheEntry
from sadaqah_rates.monitoring.logger import LogLevel, get_production_logger


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class RateCache:
    """USD value per currency code, stored in Redis.

    Freshness is decided here from `fetched_at` and the TTL, not by Redis expiry:
    the raw value is kept for `retention` so an expired rate can still serve as a
    stale fallback. Any Redis failure raises `CacheError`.
    """

    KEY_PREFIX = "rates:usd:"

    def __init__(self,
                 redis_client: redis.Redis,
                 ttl: timedelta = timedelta(hours=1),
                 retention: timedelta = timedelta(days=7),
                 clock: Callable[[], datetime] = utc_now):
        self.redis = redis_client
        self.ttl = ttl
        self.retention = max(retention, ttl)
        self.clock = clock
        self.production_logger = get_production_logger()
        self._write_locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_url(cls, redis_url: str, **kwargs: Any) -> "RateCache":
        return cls(redis.from_url(redis_url, decode_responses=True), **kwargs)

    def _make_key(self, code: str) -> str:
        return f"{self.KEY_PREFIX}{code}"

    def _lock_for(self, code: str) -> asyncio.Lock:
        lock = self._write_locks.get(code)
        if lock is None:
            lock = asyncio.Lock()
            self._write_locks[code] = lock
        return lock

    def _decode(self, code: str, raw: str | None) -> RateCacheEntry | None:
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return RateCacheEntry(
                currency_code=code,
                usd_value=float(data["usd_value"]),
                fetched_at=datetime.fromisoformat(data["fetched_at"]),
                source=data.get("source", "unknown"),
            )
        except (ValueError, KeyError, TypeError) as e:
            # A corrupt row is treated as missing and will be overwritten on refresh
            self.production_logger.log_cache_operation(
                "decode", self._make_key(code), hit=False, duration_ms=0,
                level=LogLevel.WARNING, error_message=str(e)
            )
            return None

    def _age(self, entry: RateCacheEntry) -> timedelta:
        return self.clock() - entry.fetched_at

    def is_fresh(self, entry: RateCacheEntry) -> bool:
        return self._age(entry) < self.ttl

    async def get(self, code: str) -> RateCacheEntry | None:
        """Return the entry for `code` only while it is younger than the TTL"""
        start_time = time.time()
        key = self._make_key(code)
        try:
            raw = await self.redis.get(key)
        except RedisError as e:
            raise CacheError("get", e) from e

        entry = self._decode(code, raw)
        fresh = entry is not None and self.is_fresh(entry)
        self.production_logger.log_cache_operation(
            "get", key, hit=fresh,
            duration_ms=(time.time() - start_time) * 1000,
            data_age_seconds=self._age(entry).total_seconds() if entry else None
        )
        return entry if fresh else None

    async def get_many(self, codes: Iterable[str]) -> CacheLookup:
        """Split `codes` into fresh entries and stale-or-missing codes in one round trip"""
        codes = list(codes)
        lookup = CacheLookup()
        if not codes:
            return lookup

        start_time = time.time()
        try:
            values = await self.redis.mget([self._make_key(code) for code in codes])
        except RedisError as e:
            raise CacheError("get_many", e) from e

        for code, raw in zip(codes, values, strict=True):
            entry = self._decode(code, raw)
            if entry is not None and self.is_fresh(entry):
                lookup.fresh[code] = entry
            else:
                lookup.stale.append(code)

        self.production_logger.log_cache_operation(
            "get_many", f"{self.KEY_PREFIX}*", hit=not lookup.stale,
            duration_ms=(time.time() - start_time) * 1000
        )
        return lookup

    async def get_stale(self, code: str, max_age: timedelta) -> RateCacheEntry | None:
        """Expired entry still younger than `max_age`, used when every provider failed"""
        try:
            raw = await self.redis.get(self._make_key(code))
        except RedisError as e:
            raise CacheError("get_stale", e) from e

        entry = self._decode(code, raw)
        if entry is None or self._age(entry) >= max_age:
            return None
        return entry

    async def upsert(self, code: str, usd_value: float, fetched_at: datetime | None = None,
                     source: str = "unknown") -> RateCacheEntry:
        """Store the rate for `code`; an older `fetched_at` never replaces a newer one"""
        fetched_at = fetched_at or self.clock()
        key = self._make_key(code)
        entry = RateCacheEntry(currency_code=code, usd_value=usd_value, fetched_at=fetched_at, source=source)

        async with self._lock_for(code):
            try:
                current = self._decode(code, await self.redis.get(key))
                if current is not None and current.fetched_at > fetched_at:
                    return current

                await self.redis.set(
                    key,
                    json.dumps({
                        "usd_value": usd_value,
                        "fetched_at": fetched_at.isoformat(),
                        "source": source,
                    }),
                    ex=int(self.retention.total_seconds()),
                )
            except RedisError as e:
                raise CacheError("upsert", e) from e

        self.production_logger.log_cache_operation("upsert", key, hit=False, duration_ms=0)
        return entry

    async def cached_codes(self) -> list[str]:
        """Every code with a stored rate, fresh or expired"""
        try:
            keys = [key async for key in self.redis.scan_iter(match=f"{self.KEY_PREFIX}*")]
        except RedisError as e:
            raise CacheError("cached_codes", e) from e
        return sorted(key.removeprefix(self.KEY_PREFIX) for key in keys)

    async def invalidate(self, codes: Iterable[str] | None = None) -> int:
        """Drop the given codes, or every cached rate when `codes` is None"""
        try:
            if codes is None:
                keys = [key async for key in self.redis.scan_iter(match=f"{self.KEY_PREFIX}*")]
            else:
                keys = [self._make_key(code) for code in codes]
            if not keys:
                return 0
            deleted = await self.redis.delete(*keys)
        except RedisError as e:
            raise CacheError("invalidate", e) from e

        self.production_logger.log_cache_operation(
            "invalidate", f"{self.KEY_PREFIX}*", hit=False, duration_ms=0, level=LogLevel.INFO
        )
        return deleted

    async def health_check(self) -> dict[str, Any]:
        """Check Redis connection health"""
        try:
            start_time = datetime.now()
            await self.redis.ping()
            response_time = (datetime.now() - start_time).total_seconds() * 1000

            return {
                "status": "healthy",
                "response_time_ms": round(response_time, 2)
            }
        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e)
            }

    async def close(self):
        await self.redis.aclose()
