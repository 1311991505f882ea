import pytest

from sadaqah_rates.exceptions import InvalidCurrencyError
from sadaqah_rates.services.currency_types import CurrencyClassifier, CurrencyType, normalize_code


class TestNormalizeCode:

    @pytest.mark.parametrize("raw, expected", [
        ("usd", "USD"),
        (" eur ", "EUR"),
        ("Btc", "BTC"),
        ("1INCH", "1INCH"),
    ])
    def test_normalizes(self, raw, expected):
        assert normalize_code(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "US-D", "EUR$", "ABCDEFGHIJK", None, 840])
    def test_rejects(self, raw):
        with pytest.raises(InvalidCurrencyError):
            normalize_code(raw)


class TestCurrencyClassifier:

    def test_default_classification(self):
        classifier = CurrencyClassifier()

        assert classifier.classify("XAU") == CurrencyType.COMMODITY
        assert classifier.classify("BTC") == CurrencyType.CRYPTO
        assert classifier.classify("EUR") == CurrencyType.FIAT
        assert classifier.classify("ZZZ") == CurrencyType.FIAT

    def test_group_keeps_request_order(self):
        classifier = CurrencyClassifier(crypto_codes={"BTC", "ETH"}, commodity_codes={"XAU"})

        groups = classifier.group(["ETH", "EUR", "XAU", "BTC", "GBP"])

        assert groups == {
            CurrencyType.CRYPTO: ["ETH", "BTC"],
            CurrencyType.FIAT: ["EUR", "GBP"],
            CurrencyType.COMMODITY: ["XAU"],
        }
