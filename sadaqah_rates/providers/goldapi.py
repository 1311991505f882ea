import asyncio
from typing import Any

from sadaqah_rates.exceptions import ProviderError
from sadaqah_rates.gold_math import price_per_gram

from .base import APICallResult, RateProvider

METAL_CODES = ("XAU", "XAG", "XPT", "XPD")


class GoldAPIProvider(RateProvider):
    """Primary commodity provider (goldapi.io). Prices are quoted per troy ounce."""

    def __init__(self, api_key: str, timeout: float = 10):
        super().__init__(
            base_url="https://www.goldapi.io/api",
            name="GoldAPI",
            api_key=api_key,
            timeout=timeout,
            extra_headers={"x-access-token": api_key}
        )

    def supports(self, code: str) -> bool:
        return code in METAL_CODES

    def _build_request_url(self, endpoint: str, params: dict[str, Any]) -> str:
        """Authentication travels in the x-access-token header"""
        return f"{self.base_url}/{endpoint}"

    async def _fetch_metal(self, code: str) -> tuple[float, APICallResult]:
        result = await self._make_request(f"{code}/USD")
        price = result.raw_response.get('price')
        if not isinstance(price, (int, float)) or price <= 0:
            raise ProviderError(f"No price for {code} in response")
        return price_per_gram(price), result

    async def _fetch(self, codes: list[str]) -> tuple[dict[str, float], APICallResult]:
        if not self.api_key:
            raise ProviderError("No GoldAPI token configured")

        outcomes = await asyncio.gather(*(self._fetch_metal(code) for code in codes), return_exceptions=True)

        rates = {}
        last_call = None
        errors = []
        for code, outcome in zip(codes, outcomes, strict=True):
            if isinstance(outcome, Exception):
                self.logger.warning(f"{self.name}: {code} failed: {outcome}")
                errors.append(outcome)
                continue
            rates[code], last_call = outcome

        if last_call is None:
            raise errors[0]
        return rates, last_call
