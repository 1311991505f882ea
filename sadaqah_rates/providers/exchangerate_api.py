from typing import Any

from sadaqah_rates.exceptions import ProviderError

from .base import APICallResult, RateProvider, invert_rates


class ExchangeRateAPIProvider(RateProvider):
    """Primary fiat provider (open.er-api.com, no key required)"""

    def __init__(self, timeout: float = 10):
        super().__init__(
            base_url="https://open.er-api.com/v6",
            name="ExchangeRateAPI",
            timeout=timeout
        )

    def _build_request_url(self, endpoint: str, params: dict[str, Any]) -> str:
        return f"{self.base_url}/{endpoint}"

    async def _fetch(self, codes: list[str]) -> tuple[dict[str, float], APICallResult]:
        # Always the full USD table; the free tier has no symbol filter
        result = await self._make_request('latest/USD')
        payload = result.raw_response

        if payload.get('result') != 'success':
            raise ProviderError(f"ExchangeRateAPI error: {payload.get('error-type', 'unknown')}")

        rates = payload.get('rates')
        if not isinstance(rates, dict) or not rates:
            raise ProviderError("No rates in response")

        return invert_rates(rates), result
