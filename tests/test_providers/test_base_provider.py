"""
Tests for the abstract base RateProvider class.
These tests ensure our foundation works correctly.
"""

from typing import Any
from unittest.mock import Mock, patch

import httpx
import pytest

from sadaqah_rates.exceptions import ProviderError
from sadaqah_rates.providers.base import APICallResult, ProviderRates, RateProvider, invert_rates


class ConcreteProvider(RateProvider):
    """Concrete implementation for testing the abstract base class."""

    def __init__(self):
        super().__init__(
            base_url="https://api.example.com/",
            name="TestProvider",
            api_key="test_key",
            timeout=3
        )

    def supports(self, code: str) -> bool:
        return code != "XXX"

    def _build_request_url(self, endpoint: str, params: dict[str, Any]) -> str:
        return f"{self.base_url}/{endpoint}?api_key={self.api_key}"

    async def _fetch(self, codes: list[str]) -> tuple[dict[str, float], APICallResult]:
        result = await self._make_request("latest")
        return result.raw_response["rates"], result


def json_response(payload, status_code=200):
    response = Mock(spec=httpx.Response)
    response.status_code = status_code
    response.json.return_value = payload
    return response


def error_response(status_code, text):
    response = Mock(spec=httpx.Response)
    response.status_code = status_code
    response.text = text
    response.raise_for_status.side_effect = httpx.HTTPStatusError(
        text, request=Mock(), response=response
    )
    return response


class TestRateProviderInitialization:
    """Test provider initialization and configuration"""

    def test_provider_initialization(self):
        provider = ConcreteProvider()

        assert provider.api_key == "test_key"
        assert provider.base_url == "https://api.example.com"
        assert provider.name == "TestProvider"
        assert provider.timeout == 3
        assert repr(provider) == "<ConcreteProvider(name=TestProvider)>"

    def test_http_client_configuration(self):
        """Test that httpx client is configured correctly"""
        provider = ConcreteProvider()

        assert isinstance(provider.client, httpx.AsyncClient)
        assert provider.client.timeout.read == 3
        assert provider.client.headers.get("accept") == "application/json"
        assert provider.client.headers.get("user-agent") == "SadaqahBox/1.0"


class TestRateProviderHttpCalls:
    """Test the _make_request method which handles all HTTP calls"""

    @pytest.mark.asyncio
    async def test_successful_request(self):
        provider = ConcreteProvider()
        mock_response = json_response({"test": "data"})

        with patch.object(provider.client, 'get', return_value=mock_response) as mock_get:
            result = await provider._make_request("test_endpoint", {"param": "value"})

            mock_get.assert_called_once_with("https://api.example.com/test_endpoint?api_key=test_key")
            mock_response.raise_for_status.assert_called_once()

            assert result.was_successful is True
            assert result.http_status_code == 200
            assert result.raw_response == {"test": "data"}

    @pytest.mark.asyncio
    async def test_http_error_response(self):
        """4xx/5xx responses raise and are not retried"""
        provider = ConcreteProvider()

        with patch.object(provider.client, 'get', return_value=error_response(404, "Not Found")) as mock_get:
            with pytest.raises(httpx.HTTPStatusError):
                await provider._make_request("missing_endpoint")

            assert mock_get.call_count == 1

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self):
        provider = ConcreteProvider()

        with patch.object(provider.client, 'get', side_effect=httpx.TimeoutException("Timeout")) as mock_get:
            with pytest.raises(httpx.TimeoutException):
                await provider._make_request("slow_endpoint")

            assert mock_get.call_count == 1

    @pytest.mark.asyncio
    async def test_connection_error_is_retried(self):
        provider = ConcreteProvider()

        with patch.object(provider.client, 'get', side_effect=httpx.ConnectError("Failed to connect")) as mock_get:
            with pytest.raises(httpx.ConnectError):
                await provider._make_request("unreachable_endpoint")

            assert mock_get.call_count == RateProvider.CONNECT_ATTEMPTS

    @pytest.mark.asyncio
    async def test_connection_error_then_success(self):
        provider = ConcreteProvider()
        side_effect = [httpx.ConnectError("reset"), json_response({"ok": True})]

        with patch.object(provider.client, 'get', side_effect=side_effect):
            result = await provider._make_request("flaky_endpoint")

        assert result.raw_response == {"ok": True}

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        provider = ConcreteProvider()
        mock_response = json_response(None)
        mock_response.json.side_effect = ValueError("Expecting value")

        with patch.object(provider.client, 'get', return_value=mock_response):
            with pytest.raises(ProviderError):
                await provider._make_request("html_endpoint")


class TestFetchRates:
    """fetch_rates never raises; failures become failed codes"""

    @pytest.mark.asyncio
    async def test_all_codes_resolved(self):
        provider = ConcreteProvider()
        response = json_response({"rates": {"EUR": 1.25, "GBP": 1.3}})

        with patch.object(provider.client, 'get', return_value=response):
            result = await provider.fetch_rates(["EUR", "GBP"])

        assert result.rates == {"EUR": 1.25, "GBP": 1.3}
        assert result.failed_codes == []
        assert result.error_message is None
        assert result.is_successful is True
        assert result.reachable is True

    @pytest.mark.asyncio
    async def test_partial_answer(self):
        """Codes missing from the payload, non-positive or unsupported are failed"""
        provider = ConcreteProvider()
        response = json_response({"rates": {"EUR": 1.25, "GBP": 0, "CHF": 1.1}})

        with patch.object(provider.client, 'get', return_value=response):
            result = await provider.fetch_rates(["EUR", "GBP", "JPY", "XXX"])

        assert result.rates == {"EUR": 1.25}
        assert sorted(result.failed_codes) == ["GBP", "JPY", "XXX"]
        assert result.error_message == "3 codes not resolved"
        assert result.reachable is True

    @pytest.mark.asyncio
    async def test_duplicate_codes_requested_once(self):
        provider = ConcreteProvider()
        response = json_response({"rates": {"EUR": 1.25}})

        with patch.object(provider.client, 'get', return_value=response) as mock_get:
            result = await provider.fetch_rates(["EUR", "EUR"])

        assert mock_get.call_count == 1
        assert result.failed_codes == []

    @pytest.mark.asyncio
    async def test_nothing_supported_skips_the_call(self):
        provider = ConcreteProvider()

        with patch.object(provider.client, 'get') as mock_get:
            result = await provider.fetch_rates(["XXX"])

        mock_get.assert_not_called()
        assert result.failed_codes == ["XXX"]
        assert result.reachable is True
        assert result.is_successful is False

    @pytest.mark.asyncio
    async def test_http_error_fails_every_code(self):
        provider = ConcreteProvider()

        with patch.object(provider.client, 'get', return_value=error_response(503, "Service Unavailable")):
            result = await provider.fetch_rates(["EUR", "GBP"])

        assert result.reachable is False
        assert result.rates == {}
        assert result.failed_codes == ["EUR", "GBP"]
        assert result.http_status_code == 503
        assert result.error_message.startswith("HTTP 503")

    @pytest.mark.asyncio
    async def test_timeout_fails_every_code(self):
        provider = ConcreteProvider()

        with patch.object(provider.client, 'get', side_effect=httpx.ReadTimeout("Timeout")):
            result = await provider.fetch_rates(["EUR"])

        assert result.reachable is False
        assert result.failed_codes == ["EUR"]
        assert result.error_message == "Timeout after 3s"

    @pytest.mark.asyncio
    async def test_malformed_payload_fails_every_code(self):
        provider = ConcreteProvider()

        with patch.object(provider.client, 'get', return_value=json_response({"unexpected": []})):
            result = await provider.fetch_rates(["EUR"])

        assert result.reachable is False
        assert result.failed_codes == ["EUR"]
        assert "KeyError" in result.error_message


class TestRateProviderCleanup:
    """Test resource cleanup"""

    @pytest.mark.asyncio
    async def test_client_cleanup(self):
        provider = ConcreteProvider()

        with patch.object(provider.client, 'aclose') as mock_close:
            await provider.close()
            mock_close.assert_called_once()


class TestProviderRates:
    """Test the ProviderRates dataclass"""

    def test_failure_constructor(self):
        result = ProviderRates.failure("TestProvider", ["EUR", "GBP"], "boom", response_time_ms=12)

        assert result.provider_name == "TestProvider"
        assert result.failed_codes == ["EUR", "GBP"]
        assert result.error_message == "boom"
        assert result.response_time_ms == 12
        assert result.reachable is False
        assert result.is_successful is False


class TestInvertRates:

    def test_units_per_usd_become_usd_per_unit(self):
        rates = invert_rates({"eur": 0.8, "JPY": 150})

        assert rates["EUR"] == pytest.approx(1.25)
        assert rates["JPY"] == pytest.approx(1 / 150)

    def test_skips_non_positive_and_non_numeric(self):
        assert invert_rates({"AAA": 0, "BBB": -1, "CCC": "1.2", "DDD": None, "EEE": True}) == {}
