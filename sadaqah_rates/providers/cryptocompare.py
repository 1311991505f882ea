import urllib.parse
from typing import Any

from sadaqah_rates.exceptions import ProviderError

from .base import APICallResult, RateProvider
from .coingecko import COIN_IDS


class CryptoCompareProvider(RateProvider):
    """Secondary crypto provider (min-api.cryptocompare.com, key optional)"""

    def __init__(self, api_key: str = "", timeout: float = 10, symbols: set[str] | None = None):
        super().__init__(
            base_url="https://min-api.cryptocompare.com/data",
            name="CryptoCompare",
            api_key=api_key,
            timeout=timeout
        )
        self.symbols = symbols if symbols is not None else set(COIN_IDS)

    def supports(self, code: str) -> bool:
        return code in self.symbols

    def _build_request_url(self, endpoint: str, params: dict[str, Any]) -> str:
        if self.api_key:
            params['api_key'] = self.api_key
        return f"{self.base_url}/{endpoint}?{urllib.parse.urlencode(params)}"

    async def _fetch(self, codes: list[str]) -> tuple[dict[str, float], APICallResult]:
        result = await self._make_request('pricemulti', {'fsyms': ','.join(codes), 'tsyms': 'USD'})
        payload = result.raw_response

        if not isinstance(payload, dict):
            raise ProviderError("Unexpected CryptoCompare payload")
        # Errors come back as HTTP 200 with a Response/Message body
        if payload.get('Response') == 'Error':
            raise ProviderError(f"CryptoCompare error: {payload.get('Message', 'unknown')}")

        rates = {}
        for code, prices in payload.items():
            usd = prices.get('USD') if isinstance(prices, dict) else None
            if isinstance(usd, (int, float)) and usd > 0:
                rates[code.upper()] = float(usd)

        return rates, result
