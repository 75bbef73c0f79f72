"""
Marker position animation.

Each train has at most one active animation. Starting a new one cancels the
previous animation for that train. All animations are advanced by one
shared scheduler tick, so cancelling and tearing down never leaves stray
timers behind.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..managers.config_manager import AnimationConfig
from ..models.train_data import Position
from ..utils.helpers import clamp, haversine_distance_m

logger = logging.getLogger(__name__)

MIN_DURATION_MS = 100
MAX_DURATION_MS = 5000
BASE_FRAME_INTERVAL = 1 / 60


class Easing(Enum):
    """Progress remapping applied before interpolation."""

    LINEAR = "linear"
    EASE_IN = "easeIn"
    EASE_OUT = "easeOut"
    EASE_IN_OUT = "easeInOut"

    def apply(self, t: float) -> float:
        """Remap progress t in [0, 1]; monotonic with f(0)=0 and f(1)=1."""
        t = clamp(t, 0.0, 1.0)
        if self is Easing.EASE_IN:
            return t * t
        if self is Easing.EASE_OUT:
            return t * (2 - t)
        if self is Easing.EASE_IN_OUT:
            return 2 * t * t if t < 0.5 else -1 + (4 - 2 * t) * t
        return t


def interpolate(start: Position, end: Position, progress: float) -> Position:
    """Interpolate latitude and longitude independently."""
    return Position(
        start.lat + (end.lat - start.lat) * progress,
        start.lng + (end.lng - start.lng) * progress,
    )


@dataclass
class Animation:
    """In-flight movement of one marker."""

    entity_id: str
    handle: Any
    start: Position
    end: Position
    started_at: float
    duration: float
    easing: Easing
    finished: bool = False
    cancelled: bool = False

    def position_at(self, now: float) -> Position:
        progress = 1.0 if self.duration <= 0 else (now - self.started_at) / self.duration
        return interpolate(self.start, self.end, self.easing.apply(progress))

    def is_complete_at(self, now: float) -> bool:
        return now - self.started_at >= self.duration


class AnimationEngine:
    """
    Interpolates marker positions over time.

    Frames are produced by ``tick()``. Inside a running event loop the
    engine schedules its own tick task while animations are active;
    otherwise the host calls ``tick()`` from its frame timer.
    """

    def __init__(
        self,
        apply_position: Callable[[Any, Position], None],
        config: Optional[AnimationConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize animation engine.

        Args:
            apply_position: Moves a marker handle to a position
            config: Animation settings
            clock: Monotonic time source in seconds
        """
        self._apply_position = apply_position
        self.config = config or AnimationConfig()
        self._clock = clock
        self._animations: Dict[str, Animation] = {}
        self._scheduler: Optional[asyncio.Task] = None

    def now(self) -> float:
        return self._clock()

    def configure(self, config: AnimationConfig) -> None:
        """Replace animation settings; running animations keep theirs."""
        self.config = config

    @property
    def duration_seconds(self) -> float:
        return clamp(self.config.duration_ms, MIN_DURATION_MS, MAX_DURATION_MS) / 1000

    @property
    def frame_interval(self) -> float:
        return BASE_FRAME_INTERVAL / self.config.smoothness

    @property
    def active_count(self) -> int:
        return len(self._animations)

    def is_animating(self, entity_id: str) -> bool:
        return entity_id in self._animations

    def get_animation(self, entity_id: str) -> Optional[Animation]:
        return self._animations.get(entity_id)

    def should_snap(self, start: Position, end: Position) -> bool:
        """
        Check whether a move should skip animation.

        Moves are snapped when animation is disabled, when they are too small
        to see, or when they are too large to be a single real movement.
        """
        if not self.config.enabled:
            return True
        if not (start.is_finite and end.is_finite):
            return True
        distance = haversine_distance_m(start, end)
        return (
            distance < self.config.min_displacement_m
            or distance > self.config.max_displacement_m
        )

    def animate(self, handle: Any, start: Position, end: Position, entity_id: str) -> Optional[Animation]:
        """
        Move a marker from start to end.

        Any running animation for entity_id is cancelled first.

        Returns:
            The new animation, or None when the marker was snapped
        """
        self.cancel(entity_id)

        if self.should_snap(start, end):
            self._apply_position(handle, end)
            return None

        animation = Animation(
            entity_id=entity_id,
            handle=handle,
            start=start,
            end=end,
            started_at=self._clock(),
            duration=self.duration_seconds,
            easing=Easing(self.config.easing),
        )
        self._animations[entity_id] = animation
        self._ensure_scheduler()
        return animation

    def tick(self, now: Optional[float] = None) -> int:
        """
        Advance all animations to the given time.

        Returns:
            int: Number of animations still running
        """
        now = self.now() if now is None else now
        for entity_id, animation in list(self._animations.items()):
            if animation.is_complete_at(now):
                self._apply_position(animation.handle, animation.end)
                animation.finished = True
                del self._animations[entity_id]
            else:
                self._apply_position(animation.handle, animation.position_at(now))
        return len(self._animations)

    def cancel(self, entity_id: str) -> bool:
        """
        Cancel the animation for one entity, leaving the marker where it is.

        Returns:
            bool: True if an animation was running
        """
        animation = self._animations.pop(entity_id, None)
        if animation is None:
            return False
        animation.cancelled = True
        return True

    def cancel_all(self) -> int:
        """Cancel every running animation."""
        count = 0
        for entity_id in list(self._animations):
            if self.cancel(entity_id):
                count += 1
        return count

    async def shutdown(self) -> None:
        """Cancel all animations and stop the scheduler task."""
        self.cancel_all()
        task, self._scheduler = self._scheduler, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _ensure_scheduler(self) -> None:
        if self._scheduler is not None and not self._scheduler.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, animation frames are host driven")
            return
        self._scheduler = loop.create_task(self._run_scheduler())

    async def _run_scheduler(self) -> None:
        while self._animations:
            await asyncio.sleep(self.frame_interval)
            self.tick()
