from .circuit_breaker import CircuitBreaker, CircuitBreakerError, CircuitBreakerState
from .currency_types import CurrencyClassifier, CurrencyType, normalize_code
from .exchange_rate_service import ExchangeRateService
from .service_factory import ServiceFactory
from .value_converter import ValueConverter

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerError",
    "CircuitBreakerState",
    "CurrencyClassifier",
    "CurrencyType",
    "normalize_code",
    "ExchangeRateService",
    "ServiceFactory",
    "ValueConverter",
]
