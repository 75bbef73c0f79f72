"""
Global pytest configuration and fixtures.
"""

import json
from datetime import datetime

import pytest

from livetrain.managers.config_manager import (
    AnimationConfig,
    APIConfig,
    ConfigData,
    DisplayConfig,
    RefreshConfig,
)
from livetrain.models.train_data import Position, TrainDetails, TrainRecord, TrainStatus
from livetrain.ui.marker_reconciler import MapAdapter

FIXED_NOW = datetime(2024, 3, 1, 12, 0, 0)


class FakeMapAdapter(MapAdapter):
    """MapAdapter that records every call."""

    def __init__(self):
        self.markers = {}
        self.calls = []
        self.activators = {}
        self._next_handle = 0

    def create_marker(self, train_id, position, style, popup_html, on_activate):
        self._next_handle += 1
        handle = f"marker-{self._next_handle}"
        self.markers[handle] = {
            "train_id": train_id,
            "position": position,
            "style": style,
            "popup": popup_html,
        }
        self.activators[train_id] = on_activate
        self.calls.append(("create", train_id))
        return handle

    def set_position(self, handle, position):
        self.markers[handle]["position"] = position
        self.calls.append(("position", handle, position))

    def set_style(self, handle, style):
        self.markers[handle]["style"] = style
        self.calls.append(("style", handle))

    def set_popup(self, handle, popup_html):
        self.markers[handle]["popup"] = popup_html
        self.calls.append(("popup", handle))

    def remove_marker(self, handle):
        del self.markers[handle]
        self.calls.append(("remove", handle))

    def train_ids(self):
        return {m["train_id"] for m in self.markers.values()}

    def marker_for(self, train_id):
        for marker in self.markers.values():
            if marker["train_id"] == train_id:
                return marker
        return None


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_train(
    number="1234",
    lat=52.0,
    lng=5.0,
    status=TrainStatus.ON_TIME,
    delay_minutes=0,
    train_id=None,
    **details,
):
    """Build a TrainRecord for tests."""
    return TrainRecord(
        id=train_id or number,
        number=number,
        position=Position(lat, lng),
        status=status,
        timestamp=FIXED_NOW,
        details=TrainDetails(delay_minutes=delay_minutes, **details),
    )


@pytest.fixture
def test_config():
    """Provide a test configuration with credentials and fast retries."""
    return ConfigData(
        api=APIConfig(
            api_key="test_key",
            base_url="https://gateway.example.test/virtual-train-api/api",
            timeout_seconds=5,
            max_retries=2,
            retry_delay_seconds=0,
        ),
        refresh=RefreshConfig(auto_enabled=True, interval_type="fast"),
        animation=AnimationConfig(enabled=True, duration_ms=1000, easing="linear"),
        display=DisplayConfig(max_trains_to_show=50),
    )


@pytest.fixture
def unconfigured_config():
    """Configuration without an API key."""
    return ConfigData(api=APIConfig(api_key=""))


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def map_adapter():
    return FakeMapAdapter()


@pytest.fixture
def test_api_responses():
    """Provide raw vehicle API responses."""
    return {
        "two_trains": {
            "payload": {
                "treinen": [
                    {
                        "treinNummer": "1234",
                        "lat": 52.3791,
                        "lng": 4.9003,
                        "snelheid": 87.4,
                        "richting": 180,
                        "tijd": 1709294400000,
                        "type": "IC",
                        "vervoerder": "NS",
                        "herkomst": "Amsterdam Centraal",
                        "bestemming": "Utrecht Centraal",
                        "spoor": "5b",
                        "vertraging": "PT5M",
                        "materieel": ["VIRM", "8645"],
                    },
                    {
                        "treinNummer": "5678",
                        "lat": 52.0894,
                        "lng": 5.1100,
                        "status": "OP_TIJD",
                        "type": "SPR",
                        "herkomst": "Utrecht Centraal",
                        "bestemming": "Zwolle",
                    },
                ]
            }
        },
        "empty": {"payload": {"treinen": []}},
        "missing_payload": {"links": {}},
        "journey": {
            "payload": {
                "stops": [
                    {"destination": "Amsterdam Centraal", "departures": [{"delayInSeconds": 0}]},
                    {
                        "destination": "Utrecht Centraal",
                        "departures": [{"delayInSeconds": 240}],
                        "arrivals": [{"delayInSeconds": 60}],
                    },
                ]
            }
        },
    }


@pytest.fixture
def sample_trains():
    """Snapshot of three trains with different statuses."""
    return [
        make_train("1234", 52.3791, 4.9003, TrainStatus.DELAYED, delay_minutes=5, type="IC"),
        make_train("5678", 52.0894, 5.1100, TrainStatus.ON_TIME, type="SPR"),
        make_train("9012", 51.9244, 4.4777, TrainStatus.CANCELLED, type="ICE"),
    ]


@pytest.fixture
def temp_config_file(tmp_path, test_config):
    """Write the test configuration to a temporary file."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps(test_config.model_dump()), encoding="utf-8")
    return path
