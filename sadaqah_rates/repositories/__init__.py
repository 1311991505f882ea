from .rate_attempts import RateAttemptRepository

__all__ = ["RateAttemptRepository"]
