"""
Helper utility functions for the LiveTrain package.

This module contains small numeric and formatting helpers shared by the
data service, the animation engine and the map controller.
"""

import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..models.train_data import Position, TrainRecord, TrainStatus

EARTH_RADIUS_M = 6_371_000


def clamp(value: float, minimum: float, maximum: float) -> float:
    """Clamp value to the inclusive range [minimum, maximum]."""
    return max(minimum, min(maximum, value))


def haversine_distance_m(a: Position, b: Position) -> float:
    """
    Great-circle distance between two positions.

    Args:
        a: First position
        b: Second position

    Returns:
        float: Distance in meters
    """
    dlat = math.radians(b.lat - a.lat)
    dlng = math.radians(b.lng - a.lng)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(dlng / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.asin(min(1.0, math.sqrt(h)))


def format_update_time(dt: Optional[datetime]) -> str:
    """
    Format a last-update timestamp as HH:MM:SS.

    Returns:
        str: Formatted time, or "Never" when no update happened yet
    """
    if dt is None:
        return "Never"
    return dt.strftime("%H:%M:%S")


def normalize_train_ids(ids: Optional[Iterable[Any]]) -> List[str]:
    """
    Normalise identifiers to trimmed, non-empty strings.

    Order is kept and duplicates are dropped.
    """
    result: List[str] = []
    seen = set()
    for value in ids or ():
        if value is None:
            continue
        text = str(value).strip()
        if text and text not in seen:
            seen.add(text)
            result.append(text)
    return result


def calculate_snapshot_stats(trains: List[TrainRecord]) -> Dict[str, int]:
    """
    Calculate statistics for a snapshot.

    Args:
        trains: Train records

    Returns:
        Dict[str, int]: Counts per status plus total and placeholder counts
    """
    stats = {
        "total": len(trains),
        "on_time": 0,
        "delayed": 0,
        "cancelled": 0,
        "diverted": 0,
        "unknown": 0,
        "placeholders": 0,
    }
    keys = {
        TrainStatus.ON_TIME: "on_time",
        TrainStatus.DELAYED: "delayed",
        TrainStatus.CANCELLED: "cancelled",
        TrainStatus.DIVERTED: "diverted",
        TrainStatus.UNKNOWN: "unknown",
    }
    for train in trains:
        stats[keys[train.status]] += 1
        if train.is_placeholder:
            stats["placeholders"] += 1
    return stats


def format_status_message(stats: Dict[str, int]) -> str:
    """Build the status bar message for a snapshot."""
    message = f"Updated: {stats['total']} trains loaded"
    if stats["delayed"] > 0:
        message += f", {stats['delayed']} delayed"
    if stats["cancelled"] > 0:
        message += f", {stats['cancelled']} cancelled"
    if stats["diverted"] > 0:
        message += f", {stats['diverted']} diverted"
    return message
