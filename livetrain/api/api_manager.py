"""
Vehicle API manager for fetching live train positions.

This module handles all communication with the vehicle and journey APIs,
including configuration checks, retries, transport fallback and error
classification.
"""

import asyncio
import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import aiohttp

from .. import __version__
from ..cache.memory_cache import CacheKey, MemoryCache
from ..managers.config_manager import ConfigData, ConfigurationError, ValidationResult, validate_api_config
from ..models.train_data import JourneyDetails
from .response_transformer import filter_by_train_numbers

logger = logging.getLogger(__name__)

USER_AGENT = f"LiveTrain/{__version__}"


class APIException(Exception):
    """Base exception for API-related errors."""

    pass


class TransportError(APIException):
    """Exception for failed requests, carrying the HTTP status when known."""

    def __init__(self, message: str, status: Optional[int] = None, reason: str = ""):
        super().__init__(message)
        self.status = status
        self.reason = reason


class NetworkException(TransportError):
    """Exception for network-related errors and timeouts."""

    pass


class RateLimitException(TransportError):
    """Exception for rate limit exceeded errors."""

    pass


class AuthenticationException(TransportError):
    """Exception for authentication failures."""

    pass


def raise_for_status(status: int, reason: str = "", body: str = "") -> None:
    """
    Raise the matching TransportError for a non-2xx status.

    Args:
        status: HTTP status code
        reason: HTTP reason phrase
        body: Response body text, included in the message when present
    """
    if 200 <= status < 300:
        return
    if status in (401, 403):
        raise AuthenticationException("Invalid API credentials", status, reason)
    if status == 429:
        raise RateLimitException("Rate limit exceeded", status, reason)

    message = f"API error {status} {reason}".strip()
    if body:
        message += f": {body[:200]}"
    raise TransportError(message, status, reason)


class Transport(ABC):
    """Strategy interface for executing a JSON GET request."""

    name = "transport"

    @abstractmethod
    async def get_json(
        self, url: str, params: Dict[str, Any], headers: Dict[str, str], timeout: float
    ) -> Any:
        """
        Perform a GET request and decode the JSON body.

        Raises:
            TransportError: For any failed request
        """

    async def close(self) -> None:
        """Release transport resources."""


class AiohttpTransport(Transport):
    """Primary transport using a shared aiohttp session."""

    name = "aiohttp"

    def __init__(self):
        self.session: Optional[aiohttp.ClientSession] = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(headers={"User-Agent": USER_AGENT})
        return self.session

    async def get_json(self, url, params, headers, timeout):
        session = self._ensure_session()
        request_timeout = aiohttp.ClientTimeout(total=timeout)
        try:
            async with session.get(
                url, params=params, headers=headers, timeout=request_timeout
            ) as response:
                if response.status < 200 or response.status >= 300:
                    error_text = await response.text()
                    raise_for_status(response.status, response.reason or "", error_text)
                try:
                    return await response.json(content_type=None)
                except (ValueError, aiohttp.ContentTypeError) as e:
                    raise TransportError(f"Invalid JSON in response: {e}", response.status)
        except asyncio.TimeoutError:
            raise NetworkException(f"Request timed out after {timeout:g}s")
        except aiohttp.ClientError as e:
            raise NetworkException(f"Network error: {e}")

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None


class UrllibTransport(Transport):
    """Secondary transport running urllib in a worker thread."""

    name = "urllib"

    def _get_blocking(self, url, params, headers, timeout):
        query = urllib.parse.urlencode(params)
        full_url = f"{url}{'&' if '?' in url else '?'}{query}" if query else url
        request = urllib.request.Request(full_url, headers={"User-Agent": USER_AGENT, **headers})
        try:
            with urllib.request.urlopen(request, timeout=timeout) as response:
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            raise_for_status(e.code, e.reason or "", e.read().decode("utf-8", "replace"))
            raise TransportError(f"Unexpected HTTP status {e.code} {e.reason}".strip(), e.code, e.reason or "")
        except (urllib.error.URLError, OSError) as e:
            raise NetworkException(f"Network error: {e}")

        try:
            return json.loads(body) if body else None
        except ValueError as e:
            raise TransportError(f"Invalid JSON in response: {e}")

    async def get_json(self, url, params, headers, timeout):
        return await asyncio.to_thread(self._get_blocking, url, params, headers, timeout)


def select_transports(config: ConfigData) -> Tuple[Transport, Transport]:
    """
    Pick the primary and secondary transport.

    aiohttp is preferred unless the configuration asks for the legacy
    transport, in which case urllib serves both roles.

    Returns:
        Tuple of (primary, secondary)
    """
    if config.api.prefer_legacy_transport:
        legacy = UrllibTransport()
        return legacy, legacy
    return AiohttpTransport(), UrllibTransport()


class APIManager:
    """
    Handles vehicle API communications with retries and error handling.

    The manager starts on the primary transport and switches to the
    secondary one for the rest of its lifetime once the primary fails on
    a first attempt.
    """

    def __init__(
        self,
        config: ConfigData,
        transports: Optional[Tuple[Transport, Transport]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize API manager.

        Args:
            config: Configuration containing API credentials and endpoints
            transports: (primary, secondary) transports, probed when omitted
            clock: Monotonic time source used for validation throttling
        """
        self.config = config
        self.primary_transport, self.secondary_transport = transports or select_transports(config)
        self.using_fallback_transport = self.primary_transport is self.secondary_transport
        self._clock = clock
        self._last_validation_at: Optional[float] = None
        self._last_validation: Optional[ValidationResult] = None
        self.journey_cache = MemoryCache(default_ttl=config.api.journey_cache_ttl_seconds, clock=clock)

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close both transports."""
        await self.primary_transport.close()
        if self.secondary_transport is not self.primary_transport:
            await self.secondary_transport.close()

    @property
    def transport(self) -> Transport:
        """Transport used for the next request."""
        return self.secondary_transport if self.using_fallback_transport else self.primary_transport

    def reset_validation(self) -> None:
        """Force the next request to re-check the configuration."""
        self._last_validation_at = None
        self._last_validation = None

    def validate_configuration(self) -> ValidationResult:
        """
        Check API configuration, at most once per validation interval.

        Raises:
            ConfigurationError: If credentials or base URL are missing
        """
        now = self._clock()
        interval = self.config.api.validation_interval_seconds
        if (
            self._last_validation is None
            or self._last_validation_at is None
            or now - self._last_validation_at >= interval
        ):
            self._last_validation = validate_api_config(self.config.api)
            self._last_validation_at = now

        result = self._last_validation
        if not result.is_valid:
            logger.error(f"Invalid API configuration: {', '.join(result.errors)}")
            raise ConfigurationError(
                "Invalid API configuration. Check the API key and settings.", result.errors
            )
        return result

    def build_url(self, endpoint: str, base_url: Optional[str] = None) -> str:
        """
        Build the full URL for an endpoint.

        When the CORS proxy is enabled the URL is appended, encoded, to the
        proxy URL.
        """
        api = self.config.api
        base = base_url or api.base_url
        url = base.rstrip("/") + (endpoint if endpoint.startswith("/") else "/" + endpoint)
        if api.use_cors_proxy and api.cors_proxy_url:
            return api.cors_proxy_url + urllib.parse.quote(url, safe="")
        return url

    def build_headers(self) -> Dict[str, str]:
        """Build request headers including the subscription key."""
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        api = self.config.api
        if api.api_key:
            headers[api.auth_header_name] = api.api_key
        return headers

    def build_params(self, filter_ids: Optional[Iterable[Any]] = None) -> Dict[str, Any]:
        """
        Merge default parameters with an optional train number filter.

        The filter is only sent when it is small enough to keep the URL
        short; larger filters are applied to the response instead.
        """
        params: Dict[str, Any] = dict(self.config.api.default_params)
        ids = self._normalize_ids(filter_ids)
        if ids and len(ids) <= self.config.api.max_filter_ids:
            params["trainNumbers"] = ",".join(ids)
        return params

    @staticmethod
    def _normalize_ids(filter_ids: Optional[Iterable[Any]]) -> List[str]:
        if not filter_ids:
            return []
        return [str(i).strip() for i in filter_ids if i is not None and str(i).strip()]

    async def fetch_train_locations(self, filter_ids: Optional[Iterable[Any]] = None) -> dict:
        """
        Fetch raw train locations.

        Args:
            filter_ids: Optional train numbers to restrict the result to

        Returns:
            dict: Raw API response, filtered when filter_ids is given

        Raises:
            ConfigurationError: If the API configuration is invalid
            TransportError: When all attempts fail
        """
        self.validate_configuration()

        filter_ids = list(filter_ids) if filter_ids else []
        url = self.build_url(self.config.api.endpoints.train_locations)
        params = self.build_params(filter_ids)

        response = await self._execute_with_retry(url, params)
        if response is None:
            raise TransportError("Empty response received from API")

        if filter_ids:
            return filter_by_train_numbers(response, filter_ids)
        return response

    async def _execute_with_retry(self, url: str, params: Dict[str, Any]) -> Any:
        """
        Execute a GET with a fixed delay between retries.

        A failure of the primary transport on the first attempt switches the
        manager to the secondary transport permanently.
        """
        api = self.config.api
        headers = self.build_headers()
        attempts = api.max_retries + 1

        for attempt in range(attempts):
            transport = self.transport
            try:
                logger.debug(f"Fetching {url} via {transport.name} (attempt {attempt + 1}/{attempts})")
                return await transport.get_json(url, params, headers, api.timeout_seconds)
            except TransportError as e:
                if attempt == 0 and not self.using_fallback_transport:
                    logger.warning(
                        f"{self.primary_transport.name} transport failed, "
                        f"switching to {self.secondary_transport.name} for this session"
                    )
                    self.using_fallback_transport = True

                if attempt == attempts - 1:
                    logger.error(f"Request failed after {attempts} attempts: {e}")
                    raise

                logger.warning(
                    f"Request failed, retrying in {api.retry_delay_seconds:g}s "
                    f"({attempt + 1}/{api.max_retries}): {e}"
                )
                await asyncio.sleep(api.retry_delay_seconds)

        raise TransportError("No request attempts were made")

    async def get_journey_details(self, train_number: str) -> JourneyDetails:
        """
        Get next stop and delay for a single train.

        Results are cached for a few seconds per train number.

        Args:
            train_number: Train number to look up

        Returns:
            JourneyDetails: Next stop destination and delay

        Raises:
            ConfigurationError: If the API configuration is invalid
            TransportError: When the request fails
        """
        self.validate_configuration()

        key = CacheKey.journey_key(train_number)
        cached = self.journey_cache.get(key)
        if cached is not None:
            return cached

        api = self.config.api
        url = self.build_url(api.endpoints.journey, base_url=api.journey_base_url)
        params = {"train": str(train_number).strip(), "omitCrowdForecast": "false"}

        data = await self._execute_with_retry(url, params)
        details = self.parse_journey_response(str(train_number).strip(), data)
        self.journey_cache.put(key, details)
        return details

    @staticmethod
    def parse_journey_response(train_number: str, data: Any) -> JourneyDetails:
        """
        Parse a journey response.

        The next stop is the second entry of payload.stops; its delay comes
        from the first departure, falling back to the first arrival.
        """
        stops = []
        if isinstance(data, dict) and isinstance(data.get("payload"), dict):
            stops = data["payload"].get("stops") or []

        if not isinstance(stops, list) or len(stops) < 2 or not isinstance(stops[1], dict):
            return JourneyDetails(train_number=train_number)

        next_stop = stops[1]
        delay_seconds = 0
        for key in ("departures", "arrivals"):
            events = next_stop.get(key)
            if isinstance(events, list) and events and isinstance(events[0], dict):
                delay_seconds = int(events[0].get("delayInSeconds") or 0)
                break

        return JourneyDetails(
            train_number=train_number,
            next_stop_destination=str(next_stop.get("destination") or ""),
            delay_seconds=delay_seconds,
        )
