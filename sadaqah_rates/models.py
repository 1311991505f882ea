from dataclasses import dataclass, field
from datetime import datetime

from sadaqah_rates.gold_math import currency_from_gold, gold_grams


@dataclass(frozen=True)
class RateCacheEntry:
    currency_code: str
    usd_value: float  # USD for one unit of the currency
    fetched_at: datetime
    source: str = "unknown"


@dataclass
class CacheLookup:
    """Batch answer of the rate cache"""
    fresh: dict[str, RateCacheEntry] = field(default_factory=dict)
    stale: list[str] = field(default_factory=list)


@dataclass
class RateResult:
    """Outcome of one aggregation call. Never persisted."""
    success: bool
    usd_rates: dict[str, float]
    gold_price_usd: float  # USD per troy ounce
    errors: list[str] = field(default_factory=list)
    from_cache: list[str] = field(default_factory=list)
    newly_fetched: list[str] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)
    stale_fallback: list[str] = field(default_factory=list)
    gold_code: str = "XAU"

    @property
    def gold_usd_per_gram(self) -> float | None:
        return self.usd_rates.get(self.gold_code)

    def gold_grams(self, amount: float, code: str) -> float:
        """Gold mass of `amount` units of `code`, using this result's spot price"""
        return gold_grams(amount, self.usd_rates.get(code), self.gold_usd_per_gram)

    def from_gold(self, grams: float, code: str) -> float:
        return currency_from_gold(grams, self.usd_rates.get(code), self.gold_usd_per_gram)


@dataclass(frozen=True)
class MonetaryEntry:
    value: float
    currency_id: str
    currency_name: str | None = None


@dataclass
class ExtraEntry:
    total: float
    code: str
    name: str


@dataclass
class ConversionOutcome:
    total: float
    extra: dict[str, ExtraEntry] = field(default_factory=dict)
