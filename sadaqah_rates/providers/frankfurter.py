import urllib.parse
from typing import Any

from sadaqah_rates.exceptions import ProviderError

from .base import APICallResult, RateProvider, invert_rates


class FrankfurterProvider(RateProvider):
    """Secondary fiat provider backed by ECB reference rates"""

    def __init__(self, timeout: float = 10):
        super().__init__(
            base_url="https://api.frankfurter.app",
            name="Frankfurter",
            timeout=timeout
        )

    def _build_request_url(self, endpoint: str, params: dict[str, Any]) -> str:
        return f"{self.base_url}/{endpoint}?{urllib.parse.urlencode(params)}"

    async def _fetch(self, codes: list[str]) -> tuple[dict[str, float], APICallResult]:
        # Full table: a single unknown symbol in `to` turns the whole request into a 404
        result = await self._make_request('latest', {'from': 'USD'})
        payload = result.raw_response

        if 'message' in payload and 'rates' not in payload:
            raise ProviderError(f"Frankfurter error: {payload['message']}")

        rates = payload.get('rates')
        if not isinstance(rates, dict):
            raise ProviderError("No rates in response")

        return invert_rates(rates), result
