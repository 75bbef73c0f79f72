"""
Train marker reconciliation.

Keeps the markers on a map in one-to-one correspondence with the trains of
the latest snapshot: markers are created for new trains, updated in place
for known trains and removed for trains that disappeared.
"""

import html
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ..managers.config_manager import MarkerStyleConfig
from ..models.train_data import Position, TrainRecord, TrainStatus
from ..utils.helpers import normalize_train_ids
from .animation_engine import Animation, AnimationEngine

logger = logging.getLogger(__name__)


class MapAdapter(ABC):
    """Marker operations provided by the map rendering library."""

    @abstractmethod
    def create_marker(
        self,
        train_id: str,
        position: Position,
        style: Dict[str, Any],
        popup_html: str,
        on_activate: Callable[[], None],
    ) -> Any:
        """Create a marker and return its handle."""

    @abstractmethod
    def set_position(self, handle: Any, position: Position) -> None:
        """Move a marker."""

    @abstractmethod
    def set_style(self, handle: Any, style: Dict[str, Any]) -> None:
        """Update marker style."""

    @abstractmethod
    def set_popup(self, handle: Any, popup_html: str) -> None:
        """Replace popup content."""

    @abstractmethod
    def remove_marker(self, handle: Any) -> None:
        """Remove a marker from the map."""


class MarkerStyle:
    """Maps train status and selection to marker style dicts."""

    def __init__(self, config: Optional[MarkerStyleConfig] = None):
        self.config = config or MarkerStyleConfig()

    def status_color(self, status: TrainStatus) -> str:
        colors = {
            TrainStatus.ON_TIME: self.config.on_time_color,
            TrainStatus.DELAYED: self.config.delayed_color,
            TrainStatus.CANCELLED: self.config.cancelled_color,
            TrainStatus.DIVERTED: self.config.diverted_color,
            TrainStatus.UNKNOWN: self.config.unknown_color,
        }
        return colors.get(status, self.config.default_color)

    def fill_color(self, train: TrainRecord, selected: bool) -> str:
        """Selection colour wins over the status colour."""
        if selected:
            return self.config.selected_color
        return self.status_color(train.status)

    def for_train(self, train: TrainRecord, selected: bool) -> Dict[str, Any]:
        return {
            "radius": self.config.radius,
            "weight": self.config.weight,
            "opacity": self.config.opacity,
            "fillOpacity": self.config.fill_opacity,
            "color": self.config.outline_color,
            "fillColor": self.fill_color(train, selected),
        }


@dataclass
class MarkerState:
    """Rendered marker for one train."""

    train_id: str
    handle: Any
    position: Position
    train: TrainRecord
    animation: Optional[Animation] = None

    @property
    def is_animating(self) -> bool:
        return self.animation is not None and not (self.animation.finished or self.animation.cancelled)


@dataclass
class ReconcileResult:
    """Train ids touched by one reconciliation."""

    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def has_renderable_position(train: Any) -> bool:
    """
    Check that a record carries position data.

    Only structurally missing data fails; (0, 0) is a valid position.
    """
    position = getattr(train, "position", None)
    if position is None:
        return False
    if getattr(position, "lat", None) is None or getattr(position, "lng", None) is None:
        return False
    return position.is_finite


def create_popup_content(train: TrainRecord) -> str:
    """
    Build popup HTML for a train.

    Args:
        train: Train record

    Returns:
        str: Escaped HTML snippet
    """
    esc = html.escape
    details = train.details
    if details.delay_minutes > 0:
        status = f'<span class="delayed">Delayed ({details.delay_minutes} min)</span>'
    elif train.status == TrainStatus.CANCELLED:
        status = '<span class="cancelled">Cancelled</span>'
    elif train.status == TrainStatus.DIVERTED:
        status = '<span class="diverted">Diverted</span>'
    else:
        status = '<span class="on-time">On time</span>'

    lines = [
        '<div class="train-popup">',
        f"<h4>Train {esc(train.number)}</h4>",
        f"<p><strong>Type:</strong> {esc(details.type)}</p>",
        f"<p><strong>From:</strong> {esc(details.origin)}</p>",
        f"<p><strong>To:</strong> {esc(details.destination)}</p>",
        f"<p><strong>Status:</strong> {status}</p>",
    ]
    if details.platform and details.platform != "Unknown":
        lines.append(f"<p><strong>Platform:</strong> {esc(details.platform)}</p>")
    if train.speed:
        lines.append(f"<p><strong>Speed:</strong> {round(train.speed)} km/h</p>")
    lines.append("</div>")
    return "\n".join(lines)


class MarkerReconciler:
    """
    Owns the marker map and reconciles it against snapshots.

    Markers are only changed through this class; callers read them via
    ``markers``.
    """

    def __init__(
        self,
        map_adapter: MapAdapter,
        animation_engine: Optional[AnimationEngine] = None,
        style: Optional[MarkerStyle] = None,
        on_select: Optional[Callable[[str], None]] = None,
    ):
        """
        Initialize marker reconciler.

        Args:
            map_adapter: Map library operations
            animation_engine: Engine used for position changes; moves are
                applied directly when omitted
            style: Marker style mapping
            on_select: Called with the train id when a marker is activated
        """
        self.map_adapter = map_adapter
        self.animation_engine = animation_engine
        self.style = style or MarkerStyle()
        self.on_select = on_select
        self._markers: Dict[str, MarkerState] = {}
        self._selected: frozenset = frozenset()

    @property
    def markers(self) -> Mapping[str, MarkerState]:
        return MappingProxyType(self._markers)

    @property
    def marker_ids(self) -> set:
        return set(self._markers)

    def get_marker(self, train_id: str) -> Optional[MarkerState]:
        return self._markers.get(train_id)

    def reconcile(self, snapshot: Iterable[TrainRecord], selected_ids: Iterable[Any] = ()) -> ReconcileResult:
        """
        Bring the marker map in line with a snapshot.

        Args:
            snapshot: Latest train records
            selected_ids: Train numbers currently selected in the host

        Returns:
            ReconcileResult: Ids created, updated, removed and skipped
        """
        self._selected = frozenset(normalize_train_ids(selected_ids))
        result = ReconcileResult()
        present = set()

        for train in snapshot:
            if not has_renderable_position(train):
                result.skipped.append(getattr(train, "id", ""))
                continue

            present.add(train.id)
            marker = self._markers.get(train.id)
            if marker is None:
                self._create_marker(train)
                result.created.append(train.id)
            else:
                self._update_marker(marker, train)
                result.updated.append(train.id)

        for train_id in [tid for tid in self._markers if tid not in present]:
            self._remove_marker(train_id)
            result.removed.append(train_id)

        logger.debug(
            f"Reconciled markers: {len(result.created)} created, {len(result.updated)} updated, "
            f"{len(result.removed)} removed, {len(result.skipped)} skipped"
        )
        return result

    def _is_selected(self, train: TrainRecord) -> bool:
        return train.id in self._selected or train.number in self._selected

    def _create_marker(self, train: TrainRecord) -> None:
        train_id = train.id
        handle = self.map_adapter.create_marker(
            train_id,
            train.position,
            self.style.for_train(train, self._is_selected(train)),
            create_popup_content(train),
            lambda: self._activate(train_id),
        )
        self._markers[train_id] = MarkerState(
            train_id=train_id, handle=handle, position=train.position, train=train
        )

    def _update_marker(self, marker: MarkerState, train: TrainRecord) -> None:
        if train.position != marker.position:
            self._move_marker(marker, train.position)
        marker.train = train
        self.map_adapter.set_popup(marker.handle, create_popup_content(train))
        self.map_adapter.set_style(marker.handle, self.style.for_train(train, self._is_selected(train)))

    def _move_marker(self, marker: MarkerState, target: Position) -> None:
        if self.animation_engine is not None:
            start = marker.position
            if marker.is_animating:
                # restart from where the marker is drawn right now
                start = marker.animation.position_at(self.animation_engine.now())
            marker.animation = self.animation_engine.animate(marker.handle, start, target, marker.train_id)
        else:
            self.map_adapter.set_position(marker.handle, target)
            marker.animation = None
        marker.position = target

    def _remove_marker(self, train_id: str) -> None:
        marker = self._markers.pop(train_id)
        if self.animation_engine is not None:
            self.animation_engine.cancel(train_id)
        self.map_adapter.remove_marker(marker.handle)

    def _activate(self, train_id: str) -> None:
        if self.on_select is None:
            return
        marker = self._markers.get(train_id)
        self.on_select(marker.train.number if marker else train_id)

    def update_selection(self, selected_ids: Iterable[Any]) -> None:
        """Restyle every marker for a new selection."""
        self._selected = frozenset(normalize_train_ids(selected_ids))
        for marker in self._markers.values():
            self.map_adapter.set_style(
                marker.handle, self.style.for_train(marker.train, self._is_selected(marker.train))
            )

    def highlight(self, train_id: str, highlighted: bool) -> bool:
        """
        Force the selection style on or off for one marker.

        Returns:
            bool: False if there is no marker for train_id
        """
        marker = self._markers.get(train_id)
        if marker is None:
            return False
        self.map_adapter.set_style(marker.handle, self.style.for_train(marker.train, highlighted))
        return True

    def clear(self) -> None:
        """Remove all markers and cancel their animations."""
        for train_id in list(self._markers):
            self._remove_marker(train_id)
