"""
Map controller for the LiveTrain widget.

This module coordinates the train data service, the marker reconciler and
the host's selection model, and reports progress to the UI through Qt
signals.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional, Sequence

from PySide6.QtCore import QObject, Signal

from ..managers.config_manager import ConfigData, ConfigurationError
from ..managers.train_data_service import TrainDataService
from ..models.train_data import TrainRecord
from ..utils.helpers import (
    calculate_snapshot_stats,
    format_status_message,
    format_update_time,
    normalize_train_ids,
)
from .animation_engine import AnimationEngine
from .marker_reconciler import MapAdapter, MarkerReconciler, MarkerStyle, ReconcileResult

logger = logging.getLogger(__name__)

DEFAULT_TRAIN_NUMBER_FIELD = "Train Number"


class SelectionApi(ABC):
    """Selection operations provided by the host application."""

    @abstractmethod
    def clear(self) -> None:
        """Clear the selection on the train number field."""

    @abstractmethod
    def select_values(self, field_name: str, values: List[str]) -> None:
        """Select values on a field."""

    @abstractmethod
    def clear_all(self) -> None:
        """Clear every selection in the host application."""


def _cell_text(cell: Any) -> Optional[str]:
    if isinstance(cell, dict):
        return cell.get("qText")
    return getattr(cell, "qText", None)


class TrainMapController(QObject):
    """
    Coordinates live train data with the map and the host selection.

    Refreshes are driven by the data service timer; each completed cycle is
    rendered through the marker reconciler and announced via signals.
    """

    trains_updated = Signal(list)  # List[TrainRecord]
    error_occurred = Signal(str)  # Error message
    status_changed = Signal(str)  # Status message
    last_update_changed = Signal(str)  # Last update timestamp
    configuration_invalid = Signal(list)  # List of configuration errors
    selection_changed = Signal(list)  # Selected train numbers

    def __init__(
        self,
        config: ConfigData,
        map_adapter: MapAdapter,
        data_service: Optional[TrainDataService] = None,
        selection_api: Optional[SelectionApi] = None,
        animation_engine: Optional[AnimationEngine] = None,
    ):
        """
        Initialize map controller.

        Args:
            config: Application configuration
            map_adapter: Marker operations of the map library
            data_service: Train data service (created from config when omitted)
            selection_api: Host selection model, if the host supports one
            animation_engine: Marker animation engine (created when omitted)
        """
        super().__init__()
        self.config = config
        self.data_service = data_service or TrainDataService(config)
        self.selection_api = selection_api
        self.animation_engine = animation_engine or AnimationEngine(
            map_adapter.set_position, config.animation
        )
        self.reconciler = MarkerReconciler(
            map_adapter,
            animation_engine=self.animation_engine,
            style=MarkerStyle(config.markers),
            on_select=self.select_train,
        )

        self.current_trains: List[TrainRecord] = []
        self.selected_ids: List[str] = []
        self.is_visible = True
        self._auto_refresh_requested = False

        logger.info("TrainMapController initialized")

    # Data

    async def refresh(self, selected_ids: Optional[Iterable[Any]] = None) -> Optional[List[TrainRecord]]:
        """
        Fetch the current positions once and render them.

        Args:
            selected_ids: Replaces the current selection when given

        Returns:
            The rendered trains, or None if nothing was rendered
        """
        if selected_ids is not None:
            self.selected_ids = normalize_train_ids(selected_ids)

        validation = self.data_service.validate_api_config()
        if not validation.is_valid:
            logger.warning(f"Configuration invalid: {', '.join(validation.errors)}")
            self.configuration_invalid.emit(list(validation.errors))
            self.status_changed.emit("Configuration required")
            return None

        filter_ids = None
        if self.config.display.filter_by_selection and self.selected_ids:
            filter_ids = list(self.selected_ids)

        self.status_changed.emit("Loading train data...")
        try:
            trains = await self.data_service.get_train_locations(filter_ids)
        except ConfigurationError as e:
            self.configuration_invalid.emit(list(e.errors))
            self.status_changed.emit("Configuration required")
            return None
        except Exception as e:
            logger.error(f"Error loading train data: {e}")
            self.error_occurred.emit(f"Error loading train data: {e}")
            return None

        self.apply_snapshot(trains)
        return self.current_trains

    def apply_snapshot(
        self, trains: Sequence[TrainRecord], selected_ids: Optional[Iterable[Any]] = None
    ) -> ReconcileResult:
        """
        Render a snapshot on the map and emit the update signals.

        Args:
            trains: Snapshot to render
            selected_ids: Replaces the current selection when given

        Returns:
            ReconcileResult: Marker changes made
        """
        if selected_ids is not None:
            self.selected_ids = normalize_train_ids(selected_ids)

        shown = list(trains)
        if self.config.display.filter_by_selection and self.selected_ids:
            wanted = set(self.selected_ids)
            shown = [t for t in shown if t.number in wanted or t.id in wanted]
        shown = shown[: self.config.display.max_trains_to_show]

        result = self.reconciler.reconcile(shown, self.selected_ids)
        self.current_trains = shown

        self.trains_updated.emit(shown)
        self.last_update_changed.emit(format_update_time(self.data_service.get_last_update_time()))
        self.status_changed.emit(format_status_message(calculate_snapshot_stats(shown)))
        return result

    # Auto refresh

    def start_auto_refresh(self) -> bool:
        """
        Start periodic refreshing with the configured interval.

        Returns:
            bool: True if the timer is running afterwards
        """
        refresh = self.config.refresh
        if not refresh.auto_enabled:
            logger.info("Automatic refresh disabled in configuration")
            return False

        self._auto_refresh_requested = True
        if refresh.pause_when_hidden and not self.is_visible:
            logger.debug("Map hidden, automatic refresh deferred")
            return False

        self.data_service.start_auto_refresh(self._on_refresh_result, refresh.resolve_interval_seconds())
        return True

    def stop_auto_refresh(self) -> None:
        self._auto_refresh_requested = False
        self.data_service.stop_auto_refresh()

    def set_visible(self, visible: bool) -> None:
        """Pause or resume automatic refresh as the map is hidden or shown."""
        self.is_visible = visible
        if not self.config.refresh.pause_when_hidden:
            return

        if not visible:
            self.data_service.stop_auto_refresh()
        elif self._auto_refresh_requested and not self.data_service.is_auto_refreshing:
            self.start_auto_refresh()

    def _on_refresh_result(
        self, trains: Optional[List[TrainRecord]], error: Optional[BaseException]
    ) -> None:
        if error is not None:
            if isinstance(error, ConfigurationError):
                self.configuration_invalid.emit(list(error.errors))
            self.error_occurred.emit(f"Error loading train data: {error}")
            if self.data_service.circuit_open:
                self._auto_refresh_requested = False
                self.status_changed.emit("Automatic refresh stopped after repeated errors")
            return

        self.apply_snapshot(trains or [])

    # Selection

    def select_train(self, train_id: str, multi_select: bool = False) -> bool:
        """
        Select a train in the host application.

        Args:
            train_id: Train number to select
            multi_select: Add to the current selection instead of replacing it

        Returns:
            bool: True if the selection was applied
        """
        if not self.config.display.allow_selection_from_map:
            return False
        if self.selection_api is None:
            logger.warning("No selection API available, ignoring marker selection")
            return False

        field_name = self.config.display.train_number_field_name or DEFAULT_TRAIN_NUMBER_FIELD
        try:
            if not multi_select:
                self.selection_api.clear()
            self.selection_api.select_values(field_name, [str(train_id)])
        except Exception as e:
            logger.error(f"Error selecting train {train_id}: {e}")
            self.error_occurred.emit(f"Selection error: {e}")
            return False

        logger.debug(f"Selected train {train_id} on field {field_name}")
        return True

    @staticmethod
    def get_selected_train_numbers(rows: Optional[Iterable[Sequence[Any]]]) -> List[str]:
        """Extract train numbers from host data rows (first cell of each row)."""
        values = []
        for row in rows or ():
            if row:
                values.append(_cell_text(row[0]))
        return normalize_train_ids(values)

    async def on_selection_changed(self, rows: Optional[Iterable[Sequence[Any]]]) -> List[str]:
        """
        React to a selection change in the host application.

        Args:
            rows: Host data rows of the current selection

        Returns:
            List[str]: The new selected train numbers
        """
        self.selected_ids = self.get_selected_train_numbers(rows)
        self.selection_changed.emit(list(self.selected_ids))

        snapshot = self.data_service.get_cached_snapshot()
        if snapshot is not None:
            if self.config.display.filter_by_selection:
                self.apply_snapshot(snapshot)
            else:
                self.reconciler.update_selection(self.selected_ids)

        if self.config.refresh.refresh_on_selection:
            await self.refresh()
        return self.selected_ids

    def clear_selections(self) -> None:
        """Clear the host selection and restyle all markers."""
        if self.selection_api is not None:
            try:
                self.selection_api.clear_all()
            except Exception as e:
                logger.error(f"Error clearing selections: {e}")
                self.error_occurred.emit(f"Selection error: {e}")
        self.selected_ids = []
        self.reconciler.update_selection([])
        self.selection_changed.emit([])

    # Lifecycle

    def apply_config(self, config: ConfigData) -> None:
        """
        Apply a new configuration to every component.

        A running refresh timer is restarted with the new interval.
        """
        self.config = config
        self.data_service.config = config
        self.data_service.api_manager.config = config
        self.data_service.api_manager.reset_validation()
        self.reconciler.style = MarkerStyle(config.markers)
        self.animation_engine.configure(config.animation)

        if self.data_service.is_auto_refreshing:
            if self.start_auto_refresh():
                logger.info("Automatic refresh restarted with new configuration")
            else:
                self.data_service.stop_auto_refresh()
        logger.info("Configuration applied to map controller")

    async def destroy(self) -> None:
        """Stop refreshing, remove all markers and release resources."""
        self.stop_auto_refresh()
        self.data_service.remove_refresh_callback(self._on_refresh_result)
        self.reconciler.clear()
        await self.animation_engine.shutdown()
        await self.data_service.cleanup()
        self.current_trains = []
        logger.info("TrainMapController destroyed")
