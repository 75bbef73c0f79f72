"""
Train data service for polling, caching and refreshing live positions.

This service owns the snapshot cache, the auto-refresh timer and the
consecutive-failure breaker. It orchestrates the API manager and the
response transformer and notifies registered refresh callbacks.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Union

from ..api.api_manager import APIManager
from ..api.response_transformer import ResponseTransformer
from ..models.train_data import TrainRecord
from .config_manager import ConfigData, ValidationResult, apply_api_options, validate_api_config

logger = logging.getLogger(__name__)

RefreshCallback = Callable[
    [Optional[List[TrainRecord]], Optional[BaseException]], Union[None, Awaitable[None]]
]


@dataclass
class CacheState:
    """Mutable state owned by TrainDataService."""

    last_snapshot: Optional[List[TrainRecord]] = None
    last_update_time: Optional[datetime] = None
    error_count: int = 0
    refresh_task: Optional["asyncio.Task"] = None

    def store(self, snapshot: List[TrainRecord], update_time: datetime) -> None:
        """Replace snapshot and timestamp together after a successful fetch."""
        self.last_snapshot, self.last_update_time, self.error_count = snapshot, update_time, 0

    def reset(self) -> None:
        self.last_snapshot = None
        self.last_update_time = None
        self.error_count = 0
        self.refresh_task = None


class TrainDataService:
    """
    Service for fetching, caching and auto-refreshing train positions.

    One timer drives all registered callbacks. A timer tick is skipped while
    the previous refresh is still in flight, and the timer is stopped after
    ``refresh.max_error_count`` consecutive failures.
    """

    def __init__(
        self,
        config: ConfigData,
        api_manager: Optional[APIManager] = None,
        transformer: Optional[ResponseTransformer] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize train data service.

        Args:
            config: Configuration
            api_manager: API manager (created from config when omitted)
            transformer: Response transformer (created when omitted)
            clock: Source of "now" for update timestamps
        """
        self.config = config
        self.api_manager = api_manager or APIManager(config)
        self.transformer = transformer or ResponseTransformer(clock=clock)
        self._clock = clock

        self.state = CacheState()
        self._callbacks: List[RefreshCallback] = []
        self._interval_seconds: Optional[float] = None
        self._refresh_in_flight: Optional[asyncio.Task] = None

    # Snapshot access

    async def get_train_locations(self, filter_ids: Optional[Iterable[Any]] = None) -> List[TrainRecord]:
        """
        Fetch, transform and cache the current train positions.

        The result always replaces the cached snapshot, including filtered
        results, so filtered and unfiltered calls share one cache slot.

        Args:
            filter_ids: Optional train numbers to restrict the result to

        Returns:
            List[TrainRecord]: The new snapshot

        Raises:
            ConfigurationError: If the API configuration is invalid
            TransportError: When the fetch fails after retries
        """
        try:
            response = await self.api_manager.fetch_train_locations(filter_ids)
        except Exception as e:
            self._record_failure(e)
            raise

        trains = self.transformer.transform(response)
        self.state.store(trains, self._clock())
        logger.info(f"Fetched {len(trains)} trains")
        return trains

    def get_cached_snapshot(self) -> Optional[List[TrainRecord]]:
        """Get the last snapshot without a network call."""
        return self.state.last_snapshot

    def get_last_update_time(self) -> Optional[datetime]:
        """Get timestamp of last successful update."""
        return self.state.last_update_time

    @property
    def error_count(self) -> int:
        return self.state.error_count

    @property
    def circuit_open(self) -> bool:
        """True once the consecutive-failure limit has been reached."""
        return self.state.error_count >= self.config.refresh.max_error_count

    def _record_failure(self, error: BaseException) -> None:
        self.state.error_count += 1
        logger.error(
            f"Error fetching train data ({self.state.error_count} consecutive): {error}"
        )
        if self.circuit_open:
            self.stop_auto_refresh()
            logger.error(
                f"Automatic refresh stopped after {self.config.refresh.max_error_count} "
                "consecutive failures"
            )

    # Auto refresh

    @property
    def is_auto_refreshing(self) -> bool:
        task = self.state.refresh_task
        return task is not None and not task.done()

    @property
    def refresh_interval_seconds(self) -> Optional[float]:
        return self._interval_seconds

    @property
    def callbacks(self) -> List[RefreshCallback]:
        return list(self._callbacks)

    def start_auto_refresh(
        self, callback: Optional[RefreshCallback] = None, interval_seconds: Optional[float] = None
    ) -> None:
        """
        Register a callback and (re)start the refresh timer.

        Must be called from within a running event loop.

        Args:
            callback: Called with (trains, None) or (None, error) after each cycle
            interval_seconds: Refresh interval, clamped to the configured range
        """
        if callback is not None and callback not in self._callbacks:
            self._callbacks.append(callback)

        self.stop_auto_refresh()

        refresh = self.config.refresh
        if interval_seconds is None:
            interval_seconds = refresh.resolve_interval_seconds()
        self._interval_seconds = refresh.clamp_interval(interval_seconds)

        self.state.refresh_task = asyncio.get_running_loop().create_task(
            self._run_timer(self._interval_seconds)
        )
        logger.info(f"Automatic refresh started with interval: {self._interval_seconds:g}s")

    def stop_auto_refresh(self) -> None:
        """Stop the refresh timer; callbacks and in-flight fetches are kept."""
        task = self.state.refresh_task
        self.state.refresh_task = None
        if task is not None and not task.done():
            task.cancel()
            logger.info("Automatic refresh stopped")

    def remove_refresh_callback(self, callback: RefreshCallback) -> bool:
        """
        Remove a registered refresh callback.

        Returns:
            bool: True if the callback was registered
        """
        if callback in self._callbacks:
            self._callbacks.remove(callback)
            return True
        return False

    async def _run_timer(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.trigger_refresh()

    def trigger_refresh(self) -> Optional[asyncio.Task]:
        """
        Run one refresh cycle unless one is already in flight.

        Returns:
            The refresh task, or None when the cycle was skipped
        """
        if self._refresh_in_flight is not None and not self._refresh_in_flight.done():
            logger.debug("Refresh still in progress, skipping timer tick")
            return None

        self._refresh_in_flight = asyncio.get_running_loop().create_task(self._perform_refresh())
        return self._refresh_in_flight

    async def _perform_refresh(self) -> None:
        try:
            trains = await self.get_train_locations()
        except Exception as e:
            logger.error(f"Error during automatic refresh: {e}")
            await self._notify_callbacks(None, e)
        else:
            await self._notify_callbacks(trains, None)

    async def _notify_callbacks(
        self, trains: Optional[List[TrainRecord]], error: Optional[BaseException]
    ) -> None:
        for callback in list(self._callbacks):
            try:
                result = callback(trains, error)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in refresh callback: {e}", exc_info=True)

    # Configuration

    def configure(self, **options) -> None:
        """
        Apply API option overrides and re-check configuration on next fetch.

        See config_manager.apply_api_options for recognised options.
        """
        apply_api_options(self.config.api, **options)
        self.api_manager.reset_validation()

    def validate_api_config(self) -> ValidationResult:
        """Validate the current API configuration without fetching."""
        return validate_api_config(self.config.api)

    async def cleanup(self) -> None:
        """Stop the timer and reset the service to its initial state."""
        self.stop_auto_refresh()
        in_flight, self._refresh_in_flight = self._refresh_in_flight, None
        if in_flight is not None and not in_flight.done() and in_flight is not asyncio.current_task():
            in_flight.cancel()
            try:
                await in_flight
            except asyncio.CancelledError:
                pass
        self.state.reset()
        self._callbacks.clear()
        self._interval_seconds = None
        self.api_manager.reset_validation()
        await self.api_manager.close()
        logger.info("Train data service cleaned up")
