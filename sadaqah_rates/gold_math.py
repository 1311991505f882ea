"""
Gold-mass arithmetic.

Every currency is priced in USD for one unit; gold (XAU) is priced in USD for one
gram. Dividing the two gives the gold-mass equivalent of a currency, which is the
common denominator across fiat, crypto and commodity codes.
"""

TROY_OUNCE_TO_GRAMS = 31.1034768


def gold_value(usd_value: float, xau_usd_value: float) -> float:
    """Grams of gold for one unit of a currency worth `usd_value` USD"""
    if xau_usd_value <= 0:
        return 0
    return usd_value / xau_usd_value


def _valid_price(price: float | None) -> bool:
    return price is not None and price > 0


def gold_grams(amount: float, currency_usd_value: float | None, xau_usd_value: float | None) -> float:
    """Grams of gold equivalent to `amount` units of the currency"""
    if not _valid_price(currency_usd_value) or not _valid_price(xau_usd_value):
        return 0
    return (amount * currency_usd_value) / xau_usd_value


def currency_from_gold(grams: float, currency_usd_value: float | None, xau_usd_value: float | None) -> float:
    """Inverse of `gold_grams`"""
    if not _valid_price(currency_usd_value) or not _valid_price(xau_usd_value):
        return 0
    return (grams * xau_usd_value) / currency_usd_value


def price_per_gram(price_per_troy_ounce: float) -> float:
    return price_per_troy_ounce / TROY_OUNCE_TO_GRAMS


def price_per_troy_ounce(price_per_gram: float) -> float:
    return price_per_gram * TROY_OUNCE_TO_GRAMS
