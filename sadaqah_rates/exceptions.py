class RatesEngineError(Exception):
    pass


class InvalidCurrencyError(RatesEngineError):
    pass


class ProviderError(RatesEngineError):
    """Raised inside an adapter; never escapes `fetch_rates`"""
    pass


class CacheError(RatesEngineError):
    """The store backing the rate cache failed; fatal for the aggregation call"""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Rate cache {operation} failed: {cause}")
