from __future__ import annotations

import pytest

from pygarden._constants import identifier_to_address
from pygarden.models.system import Announcement, GardenSystem, Reading
from pygarden.models.telemetry import MeshStatistics, WifiNetwork


def test_announcement_from_minified_keys() -> None:
    announcement = Announcement.model_validate(
        {"ME": True, "CH": 0, "RR": "Power on", "SV": "v4.4", "TY": "ESP8266", "FU": 10, "Unknown": 1}
    )

    assert announcement.is_mesh is True
    assert announcement.restart_reason == "Power on"
    assert announcement.sdk_version == "v4.4"
    assert announcement.chipset == "ESP8266"
    assert announcement.filesystem_used_size == 10


def test_system_round_trips_through_wire_format() -> None:
    system = GardenSystem(
        identifier="84cca8000002",
        announcement=Announcement(channel=3, sensors=frozenset({"DHT22"})),
        last_reading=Reading(temperature=20.0),
    )

    wire = system.to_wire()
    assert wire["Announcement"]["Sensors"] == ["DHT22"]
    assert GardenSystem.model_validate(wire) == system


def test_models_are_frozen() -> None:
    reading = Reading(temperature=1.0)
    with pytest.raises(ValueError):
        reading.temperature = 2.0  # type: ignore[misc]


def test_mesh_statistics_from_minified_keys() -> None:
    stats = MeshStatistics.model_validate({"SE": 10, "RC": 9, "DL": 1, "DA": 2, "AC": 6})
    assert (stats.total_sent, stats.total_received, stats.total_accepted) == (10, 9, 6)
    assert (stats.dropped_bad_length, stats.dropped_invalid_auth) == (1, 2)


def test_wifi_network_signal() -> None:
    network = WifiNetwork.model_validate({"Known": True, "MAC": "aa:bb:cc:dd:ee:ff", "RSSI": -67})
    assert network.known is True
    assert network.signal == 67


def test_identifier_to_address() -> None:
    assert identifier_to_address("84cca8abcdef") == "84:cc:a8:ab:cd:ef"
    with pytest.raises(ValueError):
        identifier_to_address("84cca8")
