from .exceptions import CacheError, InvalidCurrencyError, ProviderError, RatesEngineError
from .models import ConversionOutcome, ExtraEntry, MonetaryEntry, RateCacheEntry, RateResult
from .services import ExchangeRateService, ServiceFactory, ValueConverter

__all__ = [
    "CacheError",
    "InvalidCurrencyError",
    "ProviderError",
    "RatesEngineError",
    "ConversionOutcome",
    "ExtraEntry",
    "MonetaryEntry",
    "RateCacheEntry",
    "RateResult",
    "ExchangeRateService",
    "ServiceFactory",
    "ValueConverter",
]
