"""
Shared test configuration and fixtures for provider tests.
"""

import httpx
import pytest
from unittest.mock import Mock

from sadaqah_rates.providers import (
    CoinGeckoProvider,
    CryptoCompareProvider,
    ExchangeRateAPIProvider,
    FrankfurterProvider,
    GoldAPIProvider,
    GoldPriceOrgProvider,
)
from .fixtures.api_responses import (
    COINGECKO_RESPONSES,
    CRYPTOCOMPARE_RESPONSES,
    EXCHANGERATE_API_RESPONSES,
    FRANKFURTER_RESPONSES,
    GOLDAPI_RESPONSES,
    GOLDPRICE_ORG_RESPONSES,
)

# Test Configuration
TEST_API_KEY = "test_api_key_12345"
TEST_TIMEOUT = 3


@pytest.fixture
def exchangerate_api_provider():
    return ExchangeRateAPIProvider(timeout=TEST_TIMEOUT)


@pytest.fixture
def frankfurter_provider():
    return FrankfurterProvider(timeout=TEST_TIMEOUT)


@pytest.fixture
def coingecko_provider():
    return CoinGeckoProvider(timeout=TEST_TIMEOUT)


@pytest.fixture
def cryptocompare_provider():
    return CryptoCompareProvider(timeout=TEST_TIMEOUT)


@pytest.fixture
def goldapi_provider():
    return GoldAPIProvider(api_key=TEST_API_KEY, timeout=TEST_TIMEOUT)


@pytest.fixture
def goldprice_org_provider():
    return GoldPriceOrgProvider(timeout=TEST_TIMEOUT)


class MockResponse:
    """Mock HTTP response for testing"""
    def __init__(self, json_data, status_code=200, text=None):
        self.json_data = json_data
        self.status_code = status_code
        self.text = text or str(json_data)

    def json(self):
        if isinstance(self.json_data, Exception):
            raise self.json_data
        return self.json_data

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"HTTP {self.status_code}", request=Mock(), response=self
            )


# Response fixtures for each provider
@pytest.fixture
def exchangerate_api_success_response():
    return MockResponse(EXCHANGERATE_API_RESPONSES["latest_success"])


@pytest.fixture
def frankfurter_success_response():
    return MockResponse(FRANKFURTER_RESPONSES["latest_success"])


@pytest.fixture
def coingecko_success_response():
    return MockResponse(COINGECKO_RESPONSES["price_success"])


@pytest.fixture
def cryptocompare_success_response():
    return MockResponse(CRYPTOCOMPARE_RESPONSES["pricemulti_success"])


@pytest.fixture
def goldapi_xau_response():
    return MockResponse(GOLDAPI_RESPONSES["xau_success"])


@pytest.fixture
def goldprice_org_success_response():
    return MockResponse(GOLDPRICE_ORG_RESPONSES["rates_success"])


# Assertion helpers
def assert_provider_rates(result, expected_rates, expected_failed=()):
    """Helper to assert ProviderRates properties"""
    assert result.reachable is True
    assert set(result.rates) == set(expected_rates)
    for code, rate in expected_rates.items():
        assert result.rates[code] == pytest.approx(rate)
    assert sorted(result.failed_codes) == sorted(expected_failed)
    assert isinstance(result.response_time_ms, int)
    assert result.response_time_ms >= 0


def assert_failed_call(result, codes):
    """Every requested code failed because the upstream call failed"""
    assert result.reachable is False
    assert result.rates == {}
    assert sorted(result.failed_codes) == sorted(codes)
    assert result.error_message


# Custom markers for different test types
def pytest_configure(config):
    """Configure custom pytest markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "network: Tests requiring network access")
