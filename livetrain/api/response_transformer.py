"""
Response transformation for the vehicle API.

Converts raw ``{"payload": {"treinen": [...]}}`` responses into TrainRecord
lists. Malformed fields degrade to defaults and unparseable entries become
placeholder records, so transforming never raises.
"""

import logging
import math
import re
import uuid
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional

from ..models.train_data import Position, TrainDetails, TrainRecord, TrainStatus

logger = logging.getLogger(__name__)

CANCELLED_MARKERS = {"CANCELLED", "NIET-GEPLAND", "GEANNULEERD"}
DELAYED_MARKERS = {"DELAYED", "VERTRAAGD"}
DIVERTED_MARKERS = {"DIVERTED", "OMGELEID"}
ON_TIME_MARKERS = {"ON_TIME", "OP_TIJD"}

_HOURS_RE = re.compile(r"(\d+)H")
_MINUTES_RE = re.compile(r"(\d+)M")


class ParseError(Exception):
    """Exception raised when a single train entry cannot be parsed."""

    pass


def _short_id() -> str:
    return uuid.uuid4().hex[:9]


def get_train_entries(response: Any) -> Optional[list]:
    """
    Get the train entry list from a raw response.

    Returns:
        The list, or None when the payload is malformed
    """
    if not isinstance(response, dict):
        return None
    payload = response.get("payload")
    if not isinstance(payload, dict):
        return None
    entries = payload.get("treinen")
    if not isinstance(entries, list):
        return None
    return entries


def filter_by_train_numbers(response: Any, train_numbers: Iterable[Any]) -> dict:
    """
    Filter a raw response down to the given train numbers.

    Args:
        response: Raw API response
        train_numbers: Train numbers to keep (compared as trimmed strings)

    Returns:
        dict: New response containing only matching entries
    """
    entries = get_train_entries(response)
    if entries is None:
        return {"payload": {"treinen": []}}

    wanted = {str(n).strip() for n in train_numbers if n is not None}
    if not wanted:
        return {"payload": {"treinen": []}}

    filtered = [
        entry
        for entry in entries
        if isinstance(entry, dict)
        and entry.get("treinNummer")
        and str(entry["treinNummer"]).strip() in wanted
    ]
    return {"payload": {"treinen": filtered}}


def calculate_delay_minutes(value: Any) -> int:
    """
    Convert a delay value to whole minutes.

    ISO-8601-like durations contribute their hour and minute components
    (``PT1H30M`` is 90). Other values are parsed as a plain number.

    Args:
        value: Delay string such as "PT5M", or a number of minutes

    Returns:
        int: Delay in minutes, never negative
    """
    if value is None or value == "" or isinstance(value, bool):
        return 0

    if isinstance(value, (int, float)):
        return max(0, round(value)) if math.isfinite(value) else 0

    text = str(value).strip().upper()
    if text.startswith("PT"):
        hours = _HOURS_RE.search(text)
        minutes = _MINUTES_RE.search(text)
        if hours or minutes:
            total = 0
            if hours:
                total += int(hours.group(1)) * 60
            if minutes:
                total += int(minutes.group(1))
            return total

    try:
        numeric = float(text)
    except ValueError:
        return 0
    if not math.isfinite(numeric):
        return 0
    return max(0, round(numeric))


def determine_train_status(item: Any) -> TrainStatus:
    """
    Determine train status from a raw entry.

    Explicit cancellation wins, then explicit delayed/diverted markers, then
    a non-zero delay. Everything else counts as on time.

    Args:
        item: Raw train entry

    Returns:
        TrainStatus: Derived status
    """
    if not isinstance(item, dict):
        return TrainStatus.UNKNOWN

    raw_status = item.get("status")
    normalized = str(raw_status).strip().upper() if raw_status else ""

    if normalized in CANCELLED_MARKERS:
        return TrainStatus.CANCELLED
    if normalized in DELAYED_MARKERS:
        return TrainStatus.DELAYED
    if normalized in DIVERTED_MARKERS:
        return TrainStatus.DIVERTED
    if calculate_delay_minutes(item.get("vertraging")) > 0:
        return TrainStatus.DELAYED
    return TrainStatus.ON_TIME


def _parse_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "" or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if math.isfinite(result) else default


def _parse_coordinates(item: dict) -> Position:
    try:
        lat = float(item.get("lat") or 0)
        lng = float(item.get("lng") or 0)
    except (TypeError, ValueError):
        return Position.origin()

    if math.isnan(lat) or math.isnan(lng) or abs(lat) > 90 or abs(lng) > 180:
        return Position.origin()
    return Position(lat, lng)


def _text(item: dict, key: str, default: str) -> str:
    value = item.get(key)
    if value is None or value == "":
        return default
    return str(value)


class ResponseTransformer:
    """
    Transforms raw vehicle API responses into TrainRecord lists.

    Stateless apart from the injected clock used for missing timestamps.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        """
        Initialize transformer.

        Args:
            clock: Source of "now" for entries without an observation time
        """
        self._clock = clock

    def transform(self, response: Any) -> List[TrainRecord]:
        """
        Transform a raw API response.

        Args:
            response: Raw API response

        Returns:
            List[TrainRecord]: One record per entry, or [] for a malformed payload
        """
        entries = get_train_entries(response)
        if entries is None:
            logger.warning("Response has no payload.treinen list, returning no trains")
            return []

        trains = []
        for item in entries:
            try:
                trains.append(self.parse_train(item))
            except ParseError as e:
                logger.error(f"Failed to parse train entry: {e}")
                trains.append(self.create_placeholder(item))
        return trains

    def parse_train(self, item: Any) -> TrainRecord:
        """
        Parse a single raw train entry.

        Raises:
            ParseError: If the entry cannot be turned into a record
        """
        if not isinstance(item, dict):
            raise ParseError(f"Train entry is not an object: {item!r}")

        try:
            number = item.get("treinNummer")
            train_id = str(number) if number else f"unknown_{_short_id()}"

            equipment = item.get("materieel")
            details = TrainDetails(
                type=_text(item, "type", "Unknown"),
                operator=_text(item, "vervoerder", "NS"),
                origin=_text(item, "herkomst", "Unknown"),
                destination=_text(item, "bestemming", "Unknown"),
                platform=_text(item, "spoor", "Unknown"),
                delay_minutes=calculate_delay_minutes(item.get("vertraging")),
                info=str(item["info"]) if item.get("info") else None,
                equipment=[str(e) for e in equipment] if isinstance(equipment, list) else [],
            )

            return TrainRecord(
                id=train_id,
                number=str(number) if number else "Unknown",
                position=_parse_coordinates(item),
                status=determine_train_status(item),
                timestamp=self._parse_timestamp(item.get("tijd")),
                details=details,
                speed=_parse_float(item.get("snelheid")),
                heading=_parse_float(item.get("richting")),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ParseError(str(e)) from e

    def create_placeholder(self, item: Any) -> TrainRecord:
        """Create the minimal record used for an unparseable entry."""
        number = None
        if isinstance(item, dict) and item.get("treinNummer"):
            number = str(item["treinNummer"])

        return TrainRecord(
            id=number or f"error_{_short_id()}",
            number=number or "Error",
            position=Position.origin(),
            status=TrainStatus.UNKNOWN,
            timestamp=self._clock(),
            details=TrainDetails(type="Error", operator="Unknown"),
            is_placeholder=True,
        )

    def _parse_timestamp(self, value: Any) -> datetime:
        """
        Parse observation time.

        Numbers are epoch milliseconds; strings are ISO-8601.
        """
        if value is None or value == "" or isinstance(value, bool):
            return self._clock()

        if isinstance(value, (int, float)):
            try:
                return datetime.fromtimestamp(value / 1000)
            except (OverflowError, OSError, ValueError):
                return self._clock()

        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            logger.warning(f"Failed to parse timestamp '{value}', using current time")
            return self._clock()
