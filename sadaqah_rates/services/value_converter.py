import logging
from collections.abc import Iterable, Mapping

from sadaqah_rates.models import ConversionOutcome, ExtraEntry, MonetaryEntry, RateResult
from sadaqah_rates.services.currency_types import normalize_code


class ValueConverter:
    """Folds monetary entries into one base-currency total.

    Entries that cannot be priced (their currency or the base has no rate) are
    kept per currency in `extra` instead of being dropped.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def convert(self,
                entries: Iterable[MonetaryEntry],
                base_code: str,
                rates: RateResult | Mapping[str, float],
                currency_names: Mapping[str, str] | None = None) -> ConversionOutcome:
        """`rates` is an aggregation result, or a bare code -> USD value of one unit map"""
        if isinstance(rates, RateResult):
            rates = rates.usd_rates

        base = normalize_code(base_code)
        base_rate = rates.get(base)
        base_priced = base_rate is not None and base_rate > 0
        outcome = ConversionOutcome(total=0.0)

        for entry in entries:
            code = normalize_code(entry.currency_id)

            if code == base:
                outcome.total += entry.value
                continue

            rate = rates.get(code)
            if base_priced and rate is not None and rate > 0:
                outcome.total += entry.value * rate / base_rate
                continue

            name = entry.currency_name or (currency_names or {}).get(code) or code
            extra = outcome.extra.get(code)
            if extra is None:
                outcome.extra[code] = ExtraEntry(total=entry.value, code=code, name=name)
            else:
                extra.total += entry.value

        if outcome.extra:
            self.logger.debug(f"Unpriced currencies left in extra: {sorted(outcome.extra)}")
        return outcome

    @staticmethod
    def merge_extra(extras: Iterable[Mapping[str, ExtraEntry] | None]) -> dict[str, ExtraEntry]:
        """Sum several `extra` maps per currency, e.g. across all boxes of a user"""
        merged: dict[str, ExtraEntry] = {}
        for extra in extras:
            for code, entry in (extra or {}).items():
                if code in merged:
                    merged[code].total += entry.total
                else:
                    merged[code] = ExtraEntry(total=entry.total, code=entry.code, name=entry.name)
        return merged
