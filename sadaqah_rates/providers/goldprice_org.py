from typing import Any

from sadaqah_rates.exceptions import ProviderError
from sadaqah_rates.gold_math import price_per_gram

from .base import APICallResult, RateProvider

# Commodity code -> price field in the goldprice.org item
PRICE_FIELDS = {"XAU": "xauPrice", "XAG": "xagPrice"}


class GoldPriceOrgProvider(RateProvider):
    """Secondary commodity provider (goldprice.org spot feed, USD per troy ounce)"""

    def __init__(self, timeout: float = 10):
        super().__init__(
            base_url="https://data-asg.goldprice.org",
            name="GoldPriceOrg",
            timeout=timeout
        )

    def supports(self, code: str) -> bool:
        return code in PRICE_FIELDS

    def _build_request_url(self, endpoint: str, params: dict[str, Any]) -> str:
        return f"{self.base_url}/{endpoint}"

    async def _fetch(self, codes: list[str]) -> tuple[dict[str, float], APICallResult]:
        result = await self._make_request('dbXRates/USD')
        items = result.raw_response.get('items')
        if not isinstance(items, list) or not items:
            raise ProviderError("No items in response")

        item = items[0]
        rates = {}
        for code in codes:
            price = item.get(PRICE_FIELDS[code])
            if isinstance(price, (int, float)) and price > 0:
                rates[code] = price_per_gram(price)

        return rates, result
