import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any

from sadaqah_rates.cache.rate_cache import RateCache
from sadaqah_rates.exceptions import RatesEngineError
from sadaqah_rates.gold_math import price_per_troy_ounce
from sadaqah_rates.models import RateResult
from sadaqah_rates.monitoring.logger import get_production_logger
from sadaqah_rates.providers.base import ProviderRates, RateProvider
from sadaqah_rates.repositories.rate_attempts import RateAttemptRepository
from sadaqah_rates.services.circuit_breaker import CircuitBreaker, CircuitBreakerError
from sadaqah_rates.services.currency_types import CODE_PATTERN, CurrencyClassifier, CurrencyType, normalize_code

PIVOT_CURRENCY = "USD"


class Origin(Enum):
    CACHE = "cache"
    FETCHED = "fetched"
    STALE = "stale"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Resolution:
    """How one code was settled; shared with every caller waiting on the same code"""
    origin: Origin
    usd_value: float | None = None
    message: str | None = None


@dataclass
class ChainOutcome:
    """Result of walking one provider fallback chain"""
    resolved: dict[str, tuple[float, str]] = field(default_factory=dict)  # code -> (usd_value, provider)
    missing: set[str] = field(default_factory=set)  # answered by a reachable provider without the code
    extra: dict[str, tuple[float, str]] = field(default_factory=dict)  # returned alongside, never requested
    errors: list[str] = field(default_factory=list)


def _mark_retrieved(future: asyncio.Future):
    # Nobody may be waiting on a failed fetch; keep asyncio from reporting it
    if not future.cancelled():
        future.exception()


class ExchangeRateService:
    """Resolves USD values for any mix of fiat, crypto and commodity codes.

    Fresh cache entries are served as-is. Everything else is fetched once per
    code across all concurrent callers, walking the provider chain configured
    for the code's type: later providers only see the codes earlier ones failed.
    """

    def __init__(self,
                 cache: RateCache,
                 providers: dict[CurrencyType, list[RateProvider]],  # currency type -> fallback chain
                 circuit_breakers: dict[str, CircuitBreaker],  # provider_name -> circuit_breaker
                 attempt_repository: RateAttemptRepository | None = None,
                 classifier: CurrencyClassifier | None = None,
                 base_currency: str = "USD",
                 gold_code: str = "XAU",
                 provider_timeout: float = 10.0,
                 stale_fallback_max_age: timedelta = timedelta(hours=24),
                 not_found_cooldown: timedelta = timedelta(hours=1)):
        self.cache = cache
        self.providers = providers
        self.circuit_breakers = circuit_breakers
        self.attempt_repository = attempt_repository
        self.classifier = classifier or CurrencyClassifier()
        self.base_currency = normalize_code(base_currency)
        self.gold_code = normalize_code(gold_code)
        self.provider_timeout = provider_timeout
        self.stale_fallback_max_age = stale_fallback_max_age
        self.not_found_cooldown = not_found_cooldown

        self.logger = logging.getLogger(__name__)
        self.production_logger = get_production_logger()
        self._in_flight: dict[str, asyncio.Future] = {}
        self._bookkeeping_lock = asyncio.Lock()

    async def get_rates(self, codes: Iterable[str]) -> RateResult:
        """
        Main method: USD value for every requested code plus the base currency and gold.
        1. Normalize codes (raises InvalidCurrencyError before any I/O)
        2. Serve fresh cache entries
        3. Fetch the rest once per code, sharing in-flight fetches
        4. Derive the gold spot price and overall success
        """
        start_time = time.time()
        requested = self._prepare_codes(codes)

        usd_rates: dict[str, float] = {}
        origins: dict[str, Origin] = {}
        errors: list[str] = []

        if PIVOT_CURRENCY in requested:
            usd_rates[PIVOT_CURRENCY] = 1.0
            origins[PIVOT_CURRENCY] = Origin.CACHE

        lookup = await self.cache.get_many(code for code in requested if code != PIVOT_CURRENCY)
        for code, entry in lookup.fresh.items():
            usd_rates[code] = entry.usd_value
            origins[code] = Origin.CACHE

        resolutions, fetch_errors = await self._resolve(lookup.stale)
        errors.extend(fetch_errors)
        for code, resolution in resolutions.items():
            origins[code] = resolution.origin
            if resolution.usd_value is not None:
                usd_rates[code] = resolution.usd_value
            if resolution.message:
                errors.append(resolution.message)

        def with_origin(origin: Origin) -> list[str]:
            return [code for code in requested if origins.get(code) == origin]

        not_found = with_origin(Origin.NOT_FOUND)
        if not_found:
            errors.append(f"No rate found for: {', '.join(not_found)}")

        success = True
        if self.base_currency not in usd_rates:
            success = False
            errors.append(f"Base currency {self.base_currency} rate unavailable")

        gold_per_gram = usd_rates.get(self.gold_code)
        if gold_per_gram is None:
            success = False
            errors.append(f"Gold price ({self.gold_code}) unavailable")

        result = RateResult(
            success=success,
            usd_rates=usd_rates,
            gold_price_usd=price_per_troy_ounce(gold_per_gram) if gold_per_gram else 0.0,
            errors=errors,
            from_cache=with_origin(Origin.CACHE),
            newly_fetched=with_origin(Origin.FETCHED),
            not_found=not_found,
            stale_fallback=with_origin(Origin.STALE),
            gold_code=self.gold_code,
        )

        self.production_logger.log_rate_aggregation(
            requested, result.success, result.from_cache, result.newly_fetched,
            result.not_found, result.stale_fallback,
            total_duration_ms=(time.time() - start_time) * 1000,
            errors=result.errors
        )
        return result

    async def get_usd_value(self, code: str) -> float | None:
        """USD value of one unit of `code`, or None when no provider knows it"""
        code = normalize_code(code)
        if code == PIVOT_CURRENCY:
            return 1.0

        entry = await self.cache.get(code)
        if entry is not None:
            return entry.usd_value

        resolutions, _ = await self._resolve([code])
        return resolutions[code].usd_value

    async def force_refresh(self, codes: Iterable[str] | None = None) -> RateResult:
        """Drop cached rates and attempt history, then fetch again.

        Without `codes` every currency currently in the cache is refetched.
        """
        normalized = None if codes is None else [normalize_code(code) for code in codes]
        refetch = normalized if normalized is not None else await self.cache.cached_codes()

        await self.cache.invalidate(normalized)
        if self.attempt_repository:
            await self._bookkeeping(self.attempt_repository.clear, normalized)

        self.production_logger.log_service_lifecycle(
            "Forced rate refresh", codes=normalized or "all", refetching=len(refetch)
        )
        return await self.get_rates(refetch)

    def _prepare_codes(self, codes: Iterable[str]) -> list[str]:
        normalized = [normalize_code(code) for code in codes]
        return list(dict.fromkeys([*normalized, self.base_currency, self.gold_code]))

    async def _resolve(self, codes: list[str]) -> tuple[dict[str, Resolution], list[str]]:
        """Settle every code, fetching only those no other caller is already fetching"""
        loop = asyncio.get_running_loop()
        waiting: dict[str, asyncio.Future] = {}
        owned: list[str] = []

        # Registration must not await: it is what makes one fetch per code
        for code in codes:
            future = self._in_flight.get(code)
            if future is not None:
                waiting[code] = future
            else:
                future = loop.create_future()
                future.add_done_callback(_mark_retrieved)
                self._in_flight[code] = future
                owned.append(code)

        resolutions: dict[str, Resolution] = {}
        errors: list[str] = []

        if owned:
            try:
                fetched, errors = await self._fetch_owned(owned)
            except BaseException as e:
                failure = e if isinstance(e, Exception) else RatesEngineError("Rate fetch was cancelled")
                for code in owned:
                    if not self._in_flight[code].done():
                        self._in_flight[code].set_exception(failure)
                raise
            else:
                for code in owned:
                    if not self._in_flight[code].done():
                        self._in_flight[code].set_result(fetched[code])
                resolutions.update(fetched)
            finally:
                for code in owned:
                    self._in_flight.pop(code, None)

        if waiting:
            self.logger.debug(f"Joining in-flight fetches for {sorted(waiting)}")
            # Shielded: a cancelled waiter must not cancel the fetch other callers share
            shared = await asyncio.gather(*(asyncio.shield(future) for future in waiting.values()))
            resolutions.update(zip(waiting, shared, strict=True))

        return resolutions, errors

    async def _fetch_owned(self, codes: list[str]) -> tuple[dict[str, Resolution], list[str]]:
        # Another caller may have finished these codes while we were reading the cache
        lookup = await self.cache.get_many(codes)
        resolutions = {
            code: Resolution(Origin.CACHE, entry.usd_value)
            for code, entry in lookup.fresh.items()
        }
        pending = lookup.stale
        if not pending:
            return resolutions, []

        cooling = set()
        if self.attempt_repository:
            cooling = await self._bookkeeping(
                self.attempt_repository.codes_in_cooldown, pending, self.not_found_cooldown
            )
            if cooling:
                self.logger.debug(f"Skipping upstream for codes in cooldown: {sorted(cooling)}")

        groups = self.classifier.group([code for code in pending if code not in cooling])
        outcomes = await asyncio.gather(*(
            self._fetch_with_fallback(currency_type, group_codes)
            for currency_type, group_codes in groups.items()
        ))

        resolved: dict[str, tuple[float, str]] = {}
        extra: dict[str, tuple[float, str]] = {}
        missing: set[str] = set()
        errors: list[str] = []
        for outcome in outcomes:
            resolved.update(outcome.resolved)
            extra.update(outcome.extra)
            missing |= outcome.missing
            errors.extend(outcome.errors)

        fetched_at = self.cache.clock()
        entries = await asyncio.gather(*(
            self.cache.upsert(code, usd_value, fetched_at, source)
            for code, (usd_value, source) in resolved.items()
        ))
        # The rest of a full table is cached too, so later requests for it stay local
        await asyncio.gather(*(
            self.cache.upsert(code, usd_value, fetched_at, source)
            for code, (usd_value, source) in extra.items() if code not in pending
        ))
        for entry in entries:
            resolutions[entry.currency_code] = Resolution(Origin.FETCHED, entry.usd_value)

        if self.attempt_repository:
            by_source: dict[str, dict[str, float]] = {}
            for code, (usd_value, source) in resolved.items():
                by_source.setdefault(source, {})[code] = usd_value
            for source, rates in by_source.items():
                await self._bookkeeping(self.attempt_repository.record_success, rates, source)
            await self._bookkeeping(self.attempt_repository.record_not_found, missing - cooling)

        for code in pending:
            if code not in resolutions:
                resolutions[code] = await self._stale_fallback(code)

        return resolutions, errors

    async def _fetch_with_fallback(self, currency_type: CurrencyType, codes: list[str]) -> ChainOutcome:
        """Walk the provider chain for one currency type; each provider is called at most once"""
        outcome = ChainOutcome()
        chain = self.providers.get(currency_type, [])
        if not chain:
            outcome.errors.append(f"No provider configured for {currency_type.value} codes")
            return outcome

        remaining = list(codes)
        for provider in chain:
            if not remaining:
                break

            result = await self._call_provider(provider, remaining)
            for code, rate in result.rates.items():
                outcome.resolved[code] = (rate, provider.name)
            for code, rate in result.extra_rates.items():
                if code not in outcome.extra and self._cacheable_extra(code, currency_type):
                    outcome.extra[code] = (rate, provider.name)

            if result.reachable:
                outcome.missing.update(result.failed_codes)
            else:
                outcome.errors.append(f"{provider.name} unavailable: {result.error_message}")

            remaining = [code for code in remaining if code not in result.rates]
            if remaining and provider is not chain[-1]:
                self.logger.info(
                    f"{provider.name} could not price {remaining}, trying next {currency_type.value} provider"
                )

        outcome.missing -= outcome.resolved.keys()
        for code in outcome.resolved.keys() | set(codes):
            outcome.extra.pop(code, None)
        return outcome

    def _cacheable_extra(self, code: str, currency_type: CurrencyType) -> bool:
        return (
            code != PIVOT_CURRENCY
            and CODE_PATTERN.match(code) is not None
            and self.classifier.classify(code) == currency_type
        )

    async def _call_provider(self, provider: RateProvider, codes: list[str]) -> ProviderRates:
        """One provider call behind its circuit breaker and timeout. Never raises."""
        circuit_breaker = self.circuit_breakers.get(provider.name)

        def call():
            return asyncio.wait_for(provider.fetch_rates(codes), timeout=self.provider_timeout)

        try:
            if circuit_breaker:
                result = await circuit_breaker.call(call)
            else:
                result = await call()
        except CircuitBreakerError as e:
            self.logger.warning(f"Circuit breaker OPEN for {provider.name}. Call blocked.")
            return ProviderRates.failure(provider.name, codes, str(e))
        except TimeoutError:
            self.logger.warning(f"{provider.name} timed out after {self.provider_timeout}s")
            result = ProviderRates.failure(
                provider.name, codes, f"Timed out after {self.provider_timeout}s",
                response_time_ms=int(self.provider_timeout * 1000)
            )
        except Exception as e:
            self.logger.exception(f"API call failed unexpectedly for {provider.name}: {e}")
            result = ProviderRates.failure(provider.name, codes, f"{type(e).__name__}: {e}")

        if self.attempt_repository:
            await self._bookkeeping(self.attempt_repository.log_api_call, codes, result)
        return result

    async def _bookkeeping(self, method, *args):
        """Run a blocking repository call on a worker thread, one at a time"""
        async with self._bookkeeping_lock:
            return await asyncio.to_thread(method, *args)

    async def _stale_fallback(self, code: str) -> Resolution:
        if self.stale_fallback_max_age <= timedelta(0):
            return Resolution(Origin.NOT_FOUND)

        entry = await self.cache.get_stale(code, self.stale_fallback_max_age)
        if entry is None:
            return Resolution(Origin.NOT_FOUND)

        self.logger.warning(f"All providers failed for {code}, using stale rate from {entry.fetched_at.isoformat()}")
        return Resolution(
            Origin.STALE,
            entry.usd_value,
            f"Using stale rate for {code} (fetched {entry.fetched_at.isoformat()} from {entry.source})"
        )

    def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {"in_flight": sorted(self._in_flight)}
        if self.attempt_repository:
            since = self.cache.clock() - timedelta(days=1)
            stats["attempts"] = self.attempt_repository.get_stats()
            stats["providers_last_24h"] = self.attempt_repository.get_provider_stats(since)
        return stats

    async def get_health_status(self) -> dict[str, Any]:
        """Get health status of all providers and the cache"""
        provider_statuses = {
            name: cb.get_status()
            for name, cb in self.circuit_breakers.items()
        }
        cache_status = await self.cache.health_check()
        healthy = (
            cache_status["status"] == "healthy"
            and all(p["status"] == "healthy" for p in provider_statuses.values())
        )
        status = "healthy" if healthy else "degraded"
        self.production_logger.log_health_check(
            "exchange_rate_service", status,
            {"open_breakers": [name for name, p in provider_statuses.items() if p["status"] != "healthy"]}
        )
        return {
            "service": "exchange_rate_service",
            "status": status,
            "providers": provider_statuses,
            "cache_status": cache_status,
        }

    async def close(self):
        for chain in self.providers.values():
            for provider in chain:
                await provider.close()
        await self.cache.close()
