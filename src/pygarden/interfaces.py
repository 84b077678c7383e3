"""Structural interfaces for the gateway's external collaborators.

Having protocols here makes it easy to pass test doubles while keeping the
production implementations (e.g. :class:`pygarden._mqtt.GardenMqttRuntime`)
concrete.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from pygarden.models.system import GardenConfiguration, GardenSystem, Reading

#: Real-time push sink: ``broadcast(kind, payload)``.
EventSink = Callable[[str, Any], None]


class Publisher(Protocol):
    """Outbound half of the MQTT transport."""

    def publish(self, topic: str, payload: bytes, qos: int = 0, retain: bool = False) -> None:
        ...


class SystemStore(Protocol):
    """Persistence collaborator mirroring the registry."""

    def get_system(self, identifier: str) -> GardenSystem | None:
        ...

    def get_all_systems(self) -> list[GardenSystem]:
        ...

    def update_system(self, system: GardenSystem) -> None:
        ...

    def create_or_replace_system(self, system: GardenSystem) -> None:
        ...

    def create_reading(self, identifier: str, reading: Reading) -> None:
        ...

    def delete_system(self, identifier: str) -> None:
        ...

    def get_configuration(self) -> GardenConfiguration | None:
        ...

    def update_configuration(self, configuration: GardenConfiguration) -> None:
        ...
