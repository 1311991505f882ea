"""
Tests for the fiat providers: ExchangeRateAPI (primary) and Frankfurter (secondary).
Both quote units per USD and must be inverted to USD per unit.
"""
import urllib.parse
from unittest.mock import patch

import httpx
import pytest

from sadaqah_rates.providers import ExchangeRateAPIProvider, FrankfurterProvider, RateProvider

from .conftest import MockResponse, assert_failed_call, assert_provider_rates
from .fixtures.api_responses import EXCHANGERATE_API_RESPONSES, FRANKFURTER_RESPONSES


class TestExchangeRateAPIProvider:

    def test_provider_initialization(self, exchangerate_api_provider):
        assert exchangerate_api_provider.name == "ExchangeRateAPI"
        assert exchangerate_api_provider.base_url == "https://open.er-api.com/v6"
        assert exchangerate_api_provider.timeout == 3
        assert isinstance(exchangerate_api_provider, RateProvider)

    def test_build_request_url(self, exchangerate_api_provider):
        url = exchangerate_api_provider._build_request_url("latest/USD", {})
        assert url == "https://open.er-api.com/v6/latest/USD"

    @pytest.mark.asyncio
    async def test_fetch_rates_inverts_table(self, exchangerate_api_provider, exchangerate_api_success_response):
        with patch.object(exchangerate_api_provider.client, 'get',
                          return_value=exchangerate_api_success_response) as mock_get:
            result = await exchangerate_api_provider.fetch_rates(["EUR", "NGN"])

        mock_get.assert_called_once_with("https://open.er-api.com/v6/latest/USD")
        assert_provider_rates(result, {"EUR": 1.25, "NGN": 1 / 1500})

    @pytest.mark.asyncio
    async def test_rest_of_table_returned_as_extra_rates(self, exchangerate_api_provider,
                                                         exchangerate_api_success_response):
        with patch.object(exchangerate_api_provider.client, 'get',
                          return_value=exchangerate_api_success_response):
            result = await exchangerate_api_provider.fetch_rates(["EUR"])

        assert set(result.rates) == {"EUR"}
        assert set(result.extra_rates) == {"USD", "GBP", "JPY", "NGN", "PKR"}
        assert result.extra_rates["PKR"] == pytest.approx(1 / 280)

    @pytest.mark.asyncio
    async def test_unknown_code_is_failed_not_fatal(self, exchangerate_api_provider,
                                                    exchangerate_api_success_response):
        with patch.object(exchangerate_api_provider.client, 'get',
                          return_value=exchangerate_api_success_response):
            result = await exchangerate_api_provider.fetch_rates(["GBP", "ZZZ"])

        assert_provider_rates(result, {"GBP": 1 / 0.75}, expected_failed=["ZZZ"])

    @pytest.mark.asyncio
    async def test_api_error_payload(self, exchangerate_api_provider):
        response = MockResponse(EXCHANGERATE_API_RESPONSES["api_error"])

        with patch.object(exchangerate_api_provider.client, 'get', return_value=response):
            result = await exchangerate_api_provider.fetch_rates(["EUR"])

        assert_failed_call(result, ["EUR"])
        assert "unsupported-code" in result.error_message

    @pytest.mark.asyncio
    async def test_empty_rates(self, exchangerate_api_provider):
        response = MockResponse(EXCHANGERATE_API_RESPONSES["empty_rates"])

        with patch.object(exchangerate_api_provider.client, 'get', return_value=response):
            result = await exchangerate_api_provider.fetch_rates(["EUR"])

        assert_failed_call(result, ["EUR"])

    @pytest.mark.asyncio
    async def test_server_error(self, exchangerate_api_provider):
        response = MockResponse({"error": "down"}, status_code=502, text="Bad Gateway")

        with patch.object(exchangerate_api_provider.client, 'get', return_value=response):
            result = await exchangerate_api_provider.fetch_rates(["EUR", "GBP"])

        assert_failed_call(result, ["EUR", "GBP"])
        assert result.http_status_code == 502


class TestFrankfurterProvider:

    def test_provider_initialization(self, frankfurter_provider):
        assert frankfurter_provider.name == "Frankfurter"
        assert frankfurter_provider.base_url == "https://api.frankfurter.app"

    @pytest.mark.asyncio
    async def test_requests_full_usd_table(self, frankfurter_provider, frankfurter_success_response):
        with patch.object(frankfurter_provider.client, 'get',
                          return_value=frankfurter_success_response) as mock_get:
            result = await frankfurter_provider.fetch_rates(["EUR", "CHF"])

        url = mock_get.call_args[0][0]
        parsed = urllib.parse.urlparse(url)
        assert parsed.path == "/latest"
        assert urllib.parse.parse_qs(parsed.query) == {"from": ["USD"]}
        assert_provider_rates(result, {"EUR": 1.25, "CHF": 1 / 0.9})

    @pytest.mark.asyncio
    async def test_code_outside_ecb_set(self, frankfurter_provider, frankfurter_success_response):
        with patch.object(frankfurter_provider.client, 'get', return_value=frankfurter_success_response):
            result = await frankfurter_provider.fetch_rates(["NGN", "GBP"])

        assert_provider_rates(result, {"GBP": 1 / 0.75}, expected_failed=["NGN"])

    @pytest.mark.asyncio
    async def test_error_message_payload(self, frankfurter_provider):
        response = MockResponse(FRANKFURTER_RESPONSES["not_found"])

        with patch.object(frankfurter_provider.client, 'get', return_value=response):
            result = await frankfurter_provider.fetch_rates(["EUR"])

        assert_failed_call(result, ["EUR"])
        assert "not found" in result.error_message

    @pytest.mark.asyncio
    async def test_connection_refused(self, frankfurter_provider):
        with patch.object(frankfurter_provider.client, 'get',
                          side_effect=httpx.ConnectError("Connection refused")):
            result = await frankfurter_provider.fetch_rates(["EUR"])

        assert_failed_call(result, ["EUR"])
        assert "ConnectError" in result.error_message
