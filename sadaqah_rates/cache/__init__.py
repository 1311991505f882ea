from .rate_cache import RateCache, utc_now

__all__ = ["RateCache", "utc_now"]
