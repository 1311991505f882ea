import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from sadaqah_rates.exceptions import ProviderError
from sadaqah_rates.monitoring.logger import get_production_logger


@dataclass
class APICallResult:
    """Tracks the API call performance and outcome"""
    provider_name: str
    endpoint: str
    http_status_code: int | None
    response_time_ms: int
    was_successful: bool
    error_message: str | None = None
    raw_response: Any = None


@dataclass
class ProviderRates:
    """Standardized answer from any provider: USD value per unit for each resolved code"""
    provider_name: str
    rates: dict[str, float] = field(default_factory=dict)
    failed_codes: list[str] = field(default_factory=list)
    error_message: str | None = None
    response_time_ms: int = 0
    http_status_code: int | None = None
    reachable: bool = True  # False when the upstream call itself failed
    extra_rates: dict[str, float] = field(default_factory=dict)  # priced in the same response but not requested

    @property
    def is_successful(self) -> bool:
        """At least one requested code was priced"""
        return bool(self.rates)

    @classmethod
    def failure(cls, provider_name: str, codes: Iterable[str], error_message: str,
                response_time_ms: int = 0, http_status_code: int | None = None) -> "ProviderRates":
        return cls(
            provider_name=provider_name,
            failed_codes=list(codes),
            error_message=error_message,
            response_time_ms=response_time_ms,
            http_status_code=http_status_code,
            reachable=False,
        )


class RateProvider(ABC):
    """Abstract base class for all rate providers.

    Subclasses only know how to build a request and read their payload;
    `fetch_rates` turns every transport or parsing problem into failed codes.
    """

    CONNECT_ATTEMPTS = 2

    def __init__(self, base_url: str, name: str, api_key: str = "", timeout: float = 10,
                 extra_headers: dict | None = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.name = name
        self.timeout = timeout
        self.logger = logging.getLogger(f"provider.{name}")
        self.production_logger = get_production_logger()

        headers = {"accept": "application/json", "user-agent": "SadaqahBox/1.0"}
        if extra_headers:
            headers.update(extra_headers)

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers=headers,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10)
        )

    def supports(self, code: str) -> bool:
        """Whether this provider can price `code` at all"""
        return True

    @abstractmethod
    async def _fetch(self, codes: list[str]) -> tuple[dict[str, float], APICallResult]:
        """Query the upstream API and return USD value per unit for the codes it knows"""
        pass

    @abstractmethod
    def _build_request_url(self, endpoint: str, params: dict[str, Any]) -> str:
        """Build API-specific request URL with authentication"""
        pass

    async def fetch_rates(self, codes: Iterable[str]) -> ProviderRates:
        """Resolve USD values for `codes`. Never raises for upstream failures."""
        codes = list(dict.fromkeys(codes))
        supported = [code for code in codes if self.supports(code)]
        unsupported = [code for code in codes if not self.supports(code)]

        if not supported:
            return ProviderRates(self.name, failed_codes=codes, error_message="No requested code is supported")

        start_time = time.time()
        try:
            rates, call = await self._fetch(supported)
        except (httpx.HTTPError, ProviderError, ValueError, KeyError, TypeError, AttributeError) as e:
            response_time_ms = int((time.time() - start_time) * 1000)
            status_code = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            self.production_logger.log_api_call(
                self.name, self.base_url, success=False, response_time_ms=response_time_ms,
                requested_codes=supported, error_message=self._describe(e)
            )
            return ProviderRates.failure(
                self.name, codes, self._describe(e),
                response_time_ms=response_time_ms, http_status_code=status_code
            )

        resolved = {code: rate for code, rate in rates.items() if code in supported and rate > 0}
        failed = [code for code in supported if code not in resolved] + unsupported
        extra_rates = {
            code: rate for code, rate in rates.items()
            if code not in codes and rate > 0 and self.supports(code)
        }

        self.production_logger.log_api_call(
            self.name, call.endpoint, success=bool(resolved),
            response_time_ms=call.response_time_ms, requested_codes=supported,
            resolved_count=len(resolved),
            error_message=None if resolved else "No requested code in response"
        )
        return ProviderRates(
            provider_name=self.name,
            rates=resolved,
            failed_codes=failed,
            error_message=None if not failed else f"{len(failed)} codes not resolved",
            response_time_ms=call.response_time_ms,
            http_status_code=call.http_status_code,
            extra_rates=extra_rates,
        )

    def _describe(self, error: Exception) -> str:
        if isinstance(error, httpx.TimeoutException):
            return f"Timeout after {self.timeout}s"
        if isinstance(error, httpx.HTTPStatusError):
            return f"HTTP {error.response.status_code}: {error.response.text[:200]}"
        return f"{type(error).__name__}: {error}"

    async def _make_request(self, endpoint: str, params: dict[str, Any] | None = None) -> APICallResult:
        """Common HTTP request handling with timing. Raises on transport or HTTP errors."""
        start_time = datetime.now()
        url = self._build_request_url(endpoint, params or {})

        # Only refused/reset connections are retried; a timeout already used the budget
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.CONNECT_ATTEMPTS),
            wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
            retry=retry_if_exception_type(httpx.ConnectError),
            reraise=True,
        ):
            with attempt:
                response = await self.client.get(url)
                response.raise_for_status()  # Raises HTTPStatusError for 4xx/5xx responses

        response_time_ms = int((datetime.now() - start_time).total_seconds() * 1000)
        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(f"{self.name} returned a non-JSON body") from e

        return APICallResult(
            provider_name=self.name,
            endpoint=endpoint,
            http_status_code=response.status_code,
            response_time_ms=response_time_ms,
            was_successful=True,
            raw_response=payload
        )

    async def close(self):
        """Clean up HTTP client"""
        await self.client.aclose()

    def __repr__(self):
        return f"<{self.__class__.__name__}(name={self.name})>"


def invert_rates(units_per_usd: dict[str, Any]) -> dict[str, float]:
    """Turn "1 USD = X units" into "1 unit = Y USD", skipping non-positive entries"""
    rates = {}
    for code, rate in units_per_usd.items():
        if isinstance(rate, (int, float)) and not isinstance(rate, bool) and rate > 0:
            rates[code.upper()] = 1 / rate
    return rates
