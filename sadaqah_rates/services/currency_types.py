import re
from enum import Enum

from sadaqah_rates.exceptions import InvalidCurrencyError
from sadaqah_rates.providers.coingecko import COIN_IDS
from sadaqah_rates.providers.goldapi import METAL_CODES

CODE_PATTERN = re.compile(r"^[A-Z0-9]{1,10}$")


class CurrencyType(Enum):
    FIAT = "fiat"
    CRYPTO = "crypto"
    COMMODITY = "commodity"


def normalize_code(code: str) -> str:
    """Upper-case and validate a currency code"""
    if not isinstance(code, str):
        raise InvalidCurrencyError(f"Currency code must be a string, got {type(code).__name__}")
    normalized = code.strip().upper()
    if not CODE_PATTERN.match(normalized):
        raise InvalidCurrencyError(f"Invalid currency code: {code!r}")
    return normalized


class CurrencyClassifier:
    """Decides which provider family prices a code. Unknown codes are treated as fiat."""

    def __init__(self,
                 crypto_codes: set[str] | None = None,
                 commodity_codes: set[str] | None = None):
        self.crypto_codes = crypto_codes if crypto_codes is not None else set(COIN_IDS)
        self.commodity_codes = commodity_codes if commodity_codes is not None else set(METAL_CODES)

    def classify(self, code: str) -> CurrencyType:
        if code in self.commodity_codes:
            return CurrencyType.COMMODITY
        if code in self.crypto_codes:
            return CurrencyType.CRYPTO
        return CurrencyType.FIAT

    def group(self, codes: list[str]) -> dict[CurrencyType, list[str]]:
        groups: dict[CurrencyType, list[str]] = {}
        for code in codes:
            groups.setdefault(self.classify(code), []).append(code)
        return groups
