from __future__ import annotations

import pytest
from _fakes import COORDINATOR_ID, DIRECT_ID, MESH_ID, EventRecorder, FakePublisher, make_system

from pygarden.registry import SystemRegistry


@pytest.fixture
def registry() -> SystemRegistry:
    reg = SystemRegistry()
    reg.upsert(make_system(COORDINATOR_ID, channel=6))
    reg.upsert(make_system(DIRECT_ID))
    reg.upsert(make_system(MESH_ID, is_mesh=True, chipset="ESP8266"))
    return reg


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def events() -> EventRecorder:
    return EventRecorder()
