from .models import APICallLog, Base, CurrencyRateAttempt

__all__ = ["APICallLog", "Base", "CurrencyRateAttempt"]
