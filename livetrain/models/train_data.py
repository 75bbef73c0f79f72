"""
Train data models and enums.

This module defines the normalised structures produced from the raw
vehicle API payloads: the train status enum, positions, details and the
journey information returned for a single train.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class TrainStatus(Enum):
    """Enumeration of possible train statuses."""

    ON_TIME = "ON_TIME"
    DELAYED = "DELAYED"
    CANCELLED = "CANCELLED"
    DIVERTED = "DIVERTED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class Position:
    """Geographic position in decimal degrees."""

    lat: float
    lng: float

    @classmethod
    def origin(cls) -> "Position":
        """Zeroed position used for missing or invalid coordinates."""
        return cls(0.0, 0.0)

    @property
    def is_origin(self) -> bool:
        return self.lat == 0.0 and self.lng == 0.0

    @property
    def is_finite(self) -> bool:
        """Check that both coordinates are real numbers."""
        try:
            return math.isfinite(self.lat) and math.isfinite(self.lng)
        except TypeError:
            return False

    def as_tuple(self) -> tuple:
        return (self.lat, self.lng)


@dataclass(frozen=True)
class TrainDetails:
    """
    Descriptive information about a train.

    Values missing from the source are filled with "Unknown" so display code
    never has to deal with None.
    """

    type: str = "Unknown"
    operator: str = "NS"
    origin: str = "Unknown"
    destination: str = "Unknown"
    platform: str = "Unknown"
    delay_minutes: int = 0
    info: Optional[str] = None
    equipment: List[str] = field(default_factory=list)

    def format_equipment(self) -> str:
        """Format rolling stock list for display."""
        return ", ".join(self.equipment)


@dataclass(frozen=True)
class TrainRecord:
    """
    Immutable record representing one train in a snapshot.

    Every record has a position (possibly zeroed) and a status from
    TrainStatus, also when the source entry could not be parsed.
    """

    id: str
    number: str
    position: Position
    status: TrainStatus
    timestamp: datetime
    details: TrainDetails = field(default_factory=TrainDetails)
    speed: float = 0.0
    heading: float = 0.0
    is_placeholder: bool = False

    @property
    def is_delayed(self) -> bool:
        """Check if the train is delayed."""
        return self.status == TrainStatus.DELAYED or self.details.delay_minutes > 0

    @property
    def is_cancelled(self) -> bool:
        """Check if the train is cancelled."""
        return self.status == TrainStatus.CANCELLED

    @property
    def delay_minutes(self) -> int:
        return self.details.delay_minutes

    def format_delay(self) -> str:
        """Format delay information for display."""
        if self.details.delay_minutes > 0:
            return f"{self.details.delay_minutes}m Late"
        return "On Time"

    def format_speed(self) -> str:
        """Format speed in km/h, empty when the train is standing still."""
        if not self.speed:
            return ""
        return f"{round(self.speed)} km/h"

    def format_timestamp(self) -> str:
        """Format observation time for display (HH:MM:SS)."""
        return self.timestamp.strftime("%H:%M:%S")

    def to_display_dict(self) -> dict:
        """Convert train record to dictionary for display purposes."""
        return {
            "id": self.id,
            "number": self.number,
            "type": self.details.type,
            "operator": self.details.operator,
            "origin": self.details.origin,
            "destination": self.details.destination,
            "platform": self.details.platform,
            "status": self.status.value.replace("_", " ").title(),
            "delay": self.format_delay(),
            "delay_minutes": self.details.delay_minutes,
            "speed": self.format_speed(),
            "heading": self.heading,
            "lat": self.position.lat,
            "lng": self.position.lng,
            "timestamp": self.format_timestamp(),
            "equipment": self.details.format_equipment(),
            "info": self.details.info or "",
            "is_delayed": self.is_delayed,
            "is_cancelled": self.is_cancelled,
        }


@dataclass(frozen=True)
class JourneyDetails:
    """Next stop and current delay for a single train."""

    train_number: str
    next_stop_destination: str = ""
    delay_seconds: int = 0

    @property
    def delay_minutes(self) -> int:
        return max(0, round(self.delay_seconds / 60))
