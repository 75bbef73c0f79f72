"""
Unit tests for the vehicle API manager.

Tests request building, configuration validation, retries, the one-way
transport fallback, error classification and journey detail caching.
"""

import asyncio
import io
import urllib.error
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from livetrain.api.api_manager import (
    AiohttpTransport,
    APIManager,
    AuthenticationException,
    NetworkException,
    RateLimitException,
    Transport,
    TransportError,
    UrllibTransport,
    raise_for_status,
    select_transports,
)
from livetrain.managers.config_manager import ConfigurationError
from livetrain.models.train_data import JourneyDetails

from conftest import FakeClock


class FakeTransport(Transport):
    """Transport returning queued results; the last result repeats."""

    def __init__(self, name, *results):
        self.name = name
        self.results = list(results)
        self.requests = []
        self.closed = False

    async def get_json(self, url, params, headers, timeout):
        self.requests.append({"url": url, "params": dict(params), "headers": dict(headers), "timeout": timeout})
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result

    async def close(self):
        self.closed = True


@pytest.fixture
def payload(test_api_responses):
    return test_api_responses["two_trains"]


@pytest.fixture
def no_sleep():
    with patch("livetrain.api.api_manager.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


def _manager(config, primary, secondary, clock=None):
    return APIManager(config, transports=(primary, secondary), clock=clock or FakeClock())


class TestRequestBuilding:
    def test_build_url(self, test_config):
        manager = APIManager(test_config)
        assert manager.build_url("/vehicle") == "https://gateway.example.test/virtual-train-api/api/vehicle"
        assert manager.build_url("vehicle") == "https://gateway.example.test/virtual-train-api/api/vehicle"

    def test_build_url_with_cors_proxy(self, test_config):
        test_config.api.use_cors_proxy = True
        test_config.api.cors_proxy_url = "https://proxy.example.test/?url="
        manager = APIManager(test_config)

        url = manager.build_url("/vehicle")
        assert url.startswith("https://proxy.example.test/?url=https%3A%2F%2Fgateway.example.test")
        assert url.endswith("%2Fvehicle")

    def test_build_headers(self, test_config):
        headers = APIManager(test_config).build_headers()
        assert headers["Ocp-Apim-Subscription-Key"] == "test_key"
        assert headers["Accept"] == "application/json"
        assert headers["Content-Type"] == "application/json"

    def test_custom_auth_header(self, test_config):
        test_config.api.auth_header_name = "X-Api-Key"
        headers = APIManager(test_config).build_headers()
        assert headers["X-Api-Key"] == "test_key"
        assert "Ocp-Apim-Subscription-Key" not in headers

    def test_default_params(self, test_config):
        params = APIManager(test_config).build_params()
        assert params == {"lat": 52.3676, "lng": 4.9041, "features": "trein"}

    def test_small_filter_is_sent(self, test_config):
        params = APIManager(test_config).build_params(["1234", " 5678 ", None, ""])
        assert params["trainNumbers"] == "1234,5678"

    def test_large_filter_is_not_sent(self, test_config):
        params = APIManager(test_config).build_params([str(i) for i in range(11)])
        assert "trainNumbers" not in params

    def test_build_params_does_not_modify_defaults(self, test_config):
        APIManager(test_config).build_params(["1"])
        assert "trainNumbers" not in test_config.api.default_params


class TestFetchTrainLocations:
    @pytest.mark.asyncio
    async def test_success_on_primary(self, test_config, payload):
        primary = FakeTransport("primary", payload)
        secondary = FakeTransport("secondary", payload)
        manager = _manager(test_config, primary, secondary)

        result = await manager.fetch_train_locations()

        assert result == payload
        assert len(primary.requests) == 1
        assert secondary.requests == []
        assert not manager.using_fallback_transport
        request = primary.requests[0]
        assert request["url"].endswith("/vehicle")
        assert request["timeout"] == 5
        assert request["headers"]["Ocp-Apim-Subscription-Key"] == "test_key"

    @pytest.mark.asyncio
    async def test_primary_failure_switches_to_secondary_for_good(self, test_config, payload, no_sleep):
        primary = FakeTransport("primary", NetworkException("connection refused"))
        secondary = FakeTransport("secondary", payload)
        manager = _manager(test_config, primary, secondary)

        assert await manager.fetch_train_locations() == payload
        assert manager.using_fallback_transport
        assert manager.transport is secondary

        await manager.fetch_train_locations()
        assert len(primary.requests) == 1
        assert len(secondary.requests) == 2

    @pytest.mark.asyncio
    async def test_fallback_is_not_reversed_by_success(self, test_config, payload, no_sleep):
        primary = FakeTransport("primary", TransportError("bad gateway", 502), payload)
        secondary = FakeTransport("secondary", payload)
        manager = _manager(test_config, primary, secondary)

        for _ in range(3):
            await manager.fetch_train_locations()

        assert manager.using_fallback_transport
        assert len(primary.requests) == 1

    @pytest.mark.asyncio
    async def test_retries_exhausted_raise_last_error(self, test_config, no_sleep):
        test_config.api.retry_delay_seconds = 1.0
        primary = FakeTransport("primary", NetworkException("down"))
        secondary = FakeTransport(
            "secondary", TransportError("first", 500), TransportError("last", 503)
        )
        manager = _manager(test_config, primary, secondary)

        with pytest.raises(TransportError) as exc_info:
            await manager.fetch_train_locations()

        assert str(exc_info.value) == "last"
        assert exc_info.value.status == 503
        assert len(primary.requests) + len(secondary.requests) == 3
        assert no_sleep.await_count == 2
        no_sleep.assert_awaited_with(1.0)

    @pytest.mark.asyncio
    async def test_no_retries_configured(self, test_config, no_sleep):
        test_config.api.max_retries = 0
        primary = FakeTransport("primary", NetworkException("down"))
        secondary = FakeTransport("secondary", {"payload": {"treinen": []}})
        manager = _manager(test_config, primary, secondary)

        with pytest.raises(NetworkException):
            await manager.fetch_train_locations()
        assert secondary.requests == []
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_response_raises(self, test_config):
        manager = _manager(test_config, FakeTransport("primary", None), FakeTransport("secondary", None))
        with pytest.raises(TransportError, match="Empty response"):
            await manager.fetch_train_locations()

    @pytest.mark.asyncio
    async def test_response_is_post_filtered(self, test_config, payload):
        primary = FakeTransport("primary", payload)
        manager = _manager(test_config, primary, FakeTransport("secondary", payload))

        result = await manager.fetch_train_locations(["5678"])

        assert [e["treinNummer"] for e in result["payload"]["treinen"]] == ["5678"]
        assert primary.requests[0]["params"]["trainNumbers"] == "5678"

    @pytest.mark.asyncio
    async def test_large_filter_applied_client_side(self, test_config, payload):
        primary = FakeTransport("primary", payload)
        manager = _manager(test_config, primary, FakeTransport("secondary", payload))
        ids = ["1234"] + [str(i) for i in range(20)]

        result = await manager.fetch_train_locations(ids)

        assert "trainNumbers" not in primary.requests[0]["params"]
        assert [e["treinNummer"] for e in result["payload"]["treinen"]] == ["1234"]


class TestConfigurationValidation:
    @pytest.mark.asyncio
    async def test_missing_key_raises_before_request(self, unconfigured_config):
        primary = FakeTransport("primary", {})
        manager = _manager(unconfigured_config, primary, FakeTransport("secondary", {}))

        with pytest.raises(ConfigurationError) as exc_info:
            await manager.fetch_train_locations()

        assert any("API key" in error for error in exc_info.value.errors)
        assert primary.requests == []

    def test_invalid_result_is_cached_within_interval(self, unconfigured_config):
        clock = FakeClock()
        manager = _manager(unconfigured_config, FakeTransport("p", {}), FakeTransport("s", {}), clock)

        with pytest.raises(ConfigurationError):
            manager.validate_configuration()

        unconfigured_config.api.api_key = "now-set"
        clock.advance(30)
        with pytest.raises(ConfigurationError):
            manager.validate_configuration()

        clock.advance(30)
        assert manager.validate_configuration().is_valid

    def test_reset_validation_forces_recheck(self, unconfigured_config):
        manager = _manager(unconfigured_config, FakeTransport("p", {}), FakeTransport("s", {}))

        with pytest.raises(ConfigurationError):
            manager.validate_configuration()

        unconfigured_config.api.api_key = "now-set"
        manager.reset_validation()
        assert manager.validate_configuration().is_valid

    def test_valid_result_is_cached_within_interval(self, test_config):
        clock = FakeClock()
        manager = _manager(test_config, FakeTransport("p", {}), FakeTransport("s", {}), clock)

        assert manager.validate_configuration().is_valid
        test_config.api.api_key = ""
        clock.advance(59)
        assert manager.validate_configuration().is_valid

        clock.advance(1)
        with pytest.raises(ConfigurationError):
            manager.validate_configuration()

    def test_proxy_without_url_is_invalid(self, test_config):
        test_config.api.use_cors_proxy = True
        manager = _manager(test_config, FakeTransport("p", {}), FakeTransport("s", {}))

        with pytest.raises(ConfigurationError) as exc_info:
            manager.validate_configuration()
        assert any("proxy" in error for error in exc_info.value.errors)


class TestErrorClassification:
    @pytest.mark.parametrize(
        "status, exception",
        [
            (401, AuthenticationException),
            (403, AuthenticationException),
            (429, RateLimitException),
            (500, TransportError),
            (404, TransportError),
        ],
    )
    def test_raise_for_status(self, status, exception):
        with pytest.raises(exception) as exc_info:
            raise_for_status(status, "Reason", "body text")
        assert exc_info.value.status == status

    def test_success_status_does_not_raise(self):
        raise_for_status(200)
        raise_for_status(204)

    def test_error_message_includes_truncated_body(self):
        with pytest.raises(TransportError) as exc_info:
            raise_for_status(500, "Internal Server Error", "x" * 500)
        message = str(exc_info.value)
        assert message.startswith("API error 500 Internal Server Error: ")
        assert message.count("x") == 200

    def test_exception_hierarchy(self):
        assert issubclass(NetworkException, TransportError)
        assert issubclass(AuthenticationException, TransportError)
        assert issubclass(RateLimitException, TransportError)


class TestAiohttpTransport:
    def _session(self, response=None, error=None):
        session = MagicMock()
        session.closed = False
        if error is not None:
            session.get.side_effect = error
        else:
            session.get.return_value.__aenter__.return_value = response
        return session

    @pytest.mark.asyncio
    async def test_success(self):
        response = MagicMock(status=200, reason="OK")
        response.json = AsyncMock(return_value={"payload": {"treinen": []}})
        transport = AiohttpTransport()
        transport.session = self._session(response)

        result = await transport.get_json("https://x.test/vehicle", {"lat": 1}, {"A": "b"}, 5)

        assert result == {"payload": {"treinen": []}}
        args, kwargs = transport.session.get.call_args
        assert args == ("https://x.test/vehicle",)
        assert kwargs["params"] == {"lat": 1}
        assert kwargs["headers"] == {"A": "b"}
        assert kwargs["timeout"].total == 5

    @pytest.mark.asyncio
    async def test_timeout_follows_each_request(self):
        response = MagicMock(status=200, reason="OK")
        response.json = AsyncMock(return_value={})
        transport = AiohttpTransport()
        transport.session = self._session(response)

        await transport.get_json("https://x.test", {}, {}, 15)
        await transport.get_json("https://x.test", {}, {}, 30)

        timeouts = [call.kwargs["timeout"].total for call in transport.session.get.call_args_list]
        assert timeouts == [15, 30]

    @pytest.mark.asyncio
    async def test_auth_error(self):
        response = MagicMock(status=401, reason="Unauthorized")
        response.text = AsyncMock(return_value="denied")
        transport = AiohttpTransport()
        transport.session = self._session(response)

        with pytest.raises(AuthenticationException):
            await transport.get_json("https://x.test", {}, {}, 5)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        response = MagicMock(status=200, reason="OK")
        response.json = AsyncMock(side_effect=ValueError("Expecting value"))
        transport = AiohttpTransport()
        transport.session = self._session(response)

        with pytest.raises(TransportError, match="Invalid JSON"):
            await transport.get_json("https://x.test", {}, {}, 5)

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self):
        transport = AiohttpTransport()
        transport.session = self._session(error=asyncio.TimeoutError())

        with pytest.raises(NetworkException, match="timed out"):
            await transport.get_json("https://x.test", {}, {}, 20)

    @pytest.mark.asyncio
    async def test_close(self):
        transport = AiohttpTransport()
        session = self._session()
        session.close = AsyncMock()
        transport.session = session

        await transport.close()

        session.close.assert_awaited_once()
        assert transport.session is None


class TestUrllibTransport:
    @pytest.mark.asyncio
    async def test_success(self):
        with patch("livetrain.api.api_manager.urllib.request.urlopen") as mock_urlopen:
            mock_urlopen.return_value.__enter__.return_value.read.return_value = b'{"payload": {"treinen": []}}'
            result = await UrllibTransport().get_json(
                "https://x.test/vehicle", {"lat": 52.3676, "features": "trein"}, {"A": "b"}, 5
            )

        assert result == {"payload": {"treinen": []}}
        request = mock_urlopen.call_args[0][0]
        assert request.full_url == "https://x.test/vehicle?lat=52.3676&features=trein"
        assert request.get_header("A") == "b"
        assert mock_urlopen.call_args[1]["timeout"] == 5

    @pytest.mark.asyncio
    async def test_http_error_is_classified(self):
        error = urllib.error.HTTPError("https://x.test", 429, "Too Many Requests", {}, io.BytesIO(b"slow down"))
        with patch("livetrain.api.api_manager.urllib.request.urlopen", side_effect=error):
            with pytest.raises(RateLimitException):
                await UrllibTransport().get_json("https://x.test", {}, {}, 5)

    @pytest.mark.asyncio
    async def test_unhandled_http_status_is_transport_error(self):
        error = urllib.error.HTTPError("https://x.test", 206, "Partial Content", {}, io.BytesIO(b""))
        with patch("livetrain.api.api_manager.urllib.request.urlopen", side_effect=error):
            with pytest.raises(TransportError) as exc_info:
                await UrllibTransport().get_json("https://x.test", {}, {}, 5)

        assert exc_info.value.status == 206
        assert not isinstance(exc_info.value, urllib.error.HTTPError)

    @pytest.mark.asyncio
    async def test_url_error_is_network_error(self):
        error = urllib.error.URLError("Name or service not known")
        with patch("livetrain.api.api_manager.urllib.request.urlopen", side_effect=error):
            with pytest.raises(NetworkException):
                await UrllibTransport().get_json("https://x.test", {}, {}, 5)


class TestTransportSelection:
    def test_default_selection(self, test_config):
        primary, secondary = select_transports(test_config)
        assert isinstance(primary, AiohttpTransport)
        assert isinstance(secondary, UrllibTransport)

    def test_legacy_preference(self, test_config):
        test_config.api.prefer_legacy_transport = True
        primary, secondary = select_transports(test_config)
        assert primary is secondary
        assert isinstance(primary, UrllibTransport)
        assert APIManager(test_config).using_fallback_transport

    @pytest.mark.asyncio
    async def test_context_manager_closes_transports(self, test_config):
        primary, secondary = FakeTransport("p", {}), FakeTransport("s", {})
        async with _manager(test_config, primary, secondary):
            pass
        assert primary.closed and secondary.closed


class TestJourneyDetails:
    @pytest.mark.asyncio
    async def test_journey_details(self, test_config, test_api_responses):
        primary = FakeTransport("primary", test_api_responses["journey"])
        manager = _manager(test_config, primary, FakeTransport("secondary", {}))

        details = await manager.get_journey_details(" 1234 ")

        assert details == JourneyDetails("1234", "Utrecht Centraal", 240)
        request = primary.requests[0]
        assert request["url"] == "https://gateway.apiportal.ns.nl/reisinformatie-api/api/v2/journey"
        assert request["params"] == {"train": "1234", "omitCrowdForecast": "false"}

    @pytest.mark.asyncio
    async def test_journey_details_are_cached_for_ttl(self, test_config, test_api_responses):
        clock = FakeClock()
        primary = FakeTransport("primary", test_api_responses["journey"])
        manager = _manager(test_config, primary, FakeTransport("secondary", {}), clock)

        await manager.get_journey_details("1234")
        clock.advance(10)
        await manager.get_journey_details("1234")
        assert len(primary.requests) == 1

        clock.advance(5)
        await manager.get_journey_details("1234")
        assert len(primary.requests) == 2

    def test_arrival_delay_is_used_without_departures(self):
        data = {"payload": {"stops": [{}, {"destination": "Gouda", "arrivals": [{"delayInSeconds": 120}]}]}}
        details = APIManager.parse_journey_response("1", data)
        assert details.next_stop_destination == "Gouda"
        assert details.delay_seconds == 120
        assert details.delay_minutes == 2

    @pytest.mark.parametrize("data", [None, {}, {"payload": {"stops": [{}]}}, {"payload": {"stops": "x"}}])
    def test_missing_stops(self, data):
        assert APIManager.parse_journey_response("1", data) == JourneyDetails("1")
