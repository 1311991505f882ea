from .base import APICallResult, ProviderRates, RateProvider
from .coingecko import CoinGeckoProvider
from .cryptocompare import CryptoCompareProvider
from .exchangerate_api import ExchangeRateAPIProvider
from .frankfurter import FrankfurterProvider
from .goldapi import GoldAPIProvider
from .goldprice_org import GoldPriceOrgProvider

__all__ = [
    "APICallResult",
    "ProviderRates",
    "RateProvider",
    "CoinGeckoProvider",
    "CryptoCompareProvider",
    "ExchangeRateAPIProvider",
    "FrankfurterProvider",
    "GoldAPIProvider",
    "GoldPriceOrgProvider",
]
