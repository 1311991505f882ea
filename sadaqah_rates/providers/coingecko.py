import urllib.parse
from typing import Any

from sadaqah_rates.exceptions import ProviderError

from .base import APICallResult, RateProvider

# Ticker -> CoinGecko coin id
COIN_IDS: dict[str, str] = {
    "BTC": "bitcoin", "ETH": "ethereum", "BNB": "binancecoin", "XRP": "ripple",
    "ADA": "cardano", "SOL": "solana", "DOT": "polkadot", "DOGE": "dogecoin",
    "AVAX": "avalanche-2", "LINK": "chainlink", "LTC": "litecoin", "UNI": "uniswap",
    "XLM": "stellar", "USDT": "tether", "USDC": "usd-coin", "BCH": "bitcoin-cash",
    "CRO": "cronos", "DAI": "dai", "HBAR": "hedera-hashgraph", "ICP": "internet-computer",
    "KAS": "kaspa", "LEO": "leo-token", "NEAR": "near", "PEPE": "pepe",
    "SHIB": "shiba-inu", "SUI": "sui", "TON": "the-open-network", "TRX": "tron",
    "VET": "vechain", "APT": "aptos", "MATIC": "polygon", "ATOM": "cosmos",
    "FIL": "filecoin", "ETC": "ethereum-classic", "ALGO": "algorand", "ARB": "arbitrum",
    "OP": "optimism", "IMX": "immutable-x", "GRT": "the-graph", "STX": "stacks",
}


class CoinGeckoProvider(RateProvider):
    """Cryptocurrency prices from CoinGecko's simple price endpoint"""

    def __init__(self, api_key: str = "", timeout: float = 10, coin_ids: dict[str, str] | None = None):
        # A key switches to the pro host; the key itself travels in the query string
        super().__init__(
            base_url="https://pro-api.coingecko.com/api/v3" if api_key else "https://api.coingecko.com/api/v3",
            name="CoinGecko",
            api_key=api_key,
            timeout=timeout
        )
        self.coin_ids = coin_ids or COIN_IDS
        self._codes_by_id = {coin_id: code for code, coin_id in self.coin_ids.items()}

    def supports(self, code: str) -> bool:
        return code in self.coin_ids

    def _build_request_url(self, endpoint: str, params: dict[str, Any]) -> str:
        if self.api_key:
            params['x_cg_pro_api_key'] = self.api_key
        return f"{self.base_url}/{endpoint}?{urllib.parse.urlencode(params)}"

    async def _fetch(self, codes: list[str]) -> tuple[dict[str, float], APICallResult]:
        params = {
            'ids': ','.join(self.coin_ids[code] for code in codes),
            'vs_currencies': 'usd'
        }
        result = await self._make_request('simple/price', params)
        payload = result.raw_response

        if not isinstance(payload, dict):
            raise ProviderError("Unexpected CoinGecko payload")
        if 'status' in payload and 'error_message' in payload.get('status', {}):
            raise ProviderError(f"CoinGecko error: {payload['status']['error_message']}")

        rates = {}
        for coin_id, price in payload.items():
            code = self._codes_by_id.get(coin_id)
            usd = price.get('usd') if isinstance(price, dict) else None
            if code and isinstance(usd, (int, float)) and usd > 0:
                rates[code] = float(usd)

        return rates, result
