from __future__ import annotations

import json
from collections.abc import Callable
from concurrent.futures import Executor, Future
from typing import Any

import pytest
from _fakes import COORDINATOR_ID, DIRECT_ID, MESH_ID, EventRecorder, FakeStore

from pygarden.dispatcher import (
    RESTART_MESSAGE,
    MessageDispatcher,
    MessageKind,
    classify_topic,
    client_id_for,
)
from pygarden.models.system import Reading
from pygarden.reassembly import FragmentReassembler
from pygarden.registry import SystemRegistry

_NEW_ID = "84cca80000aa"


def _dispatcher(
    registry: SystemRegistry,
    events: EventRecorder,
    store: FakeStore | None = None,
) -> MessageDispatcher:
    return MessageDispatcher(registry, FragmentReassembler(ttl=None), broadcast=events, store=store)


def _packet(number: int, total: int, body: bytes) -> bytes:
    return b"\x10\x20\x30\x00" + bytes([number, total]) + body


@pytest.mark.parametrize(
    ("topic", "kind"),
    [
        ("garden/module/discovery/84cca8000001", MessageKind.DISCOVERY),
        ("garden/module/84cca8000001/tele/data", MessageKind.TELEMETRY_DATA),
        ("garden/module/84cca8000001/tele/networks", MessageKind.TELEMETRY_NETWORKS),
        ("garden/module/84cca8000001/tele/packet", MessageKind.TELEMETRY_PACKET),
        ("garden/module/84cca8000001/tele/ping", MessageKind.TELEMETRY_PING),
        ("garden/module/84cca8000001/tele/mesh", MessageKind.TELEMETRY_MESH),
        ("garden/module/84cca8000001/tele/ota", MessageKind.TELEMETRY_OTA),
        ("garden/module/84cca8000001/cmnd", MessageKind.COMMAND),
        ("garden/module/84cca8000001/tele/unknown", MessageKind.UNKNOWN),
        ("something/else", MessageKind.UNKNOWN),
    ],
)
def test_classify_topic(topic: str, kind: MessageKind) -> None:
    assert classify_topic(topic) is kind


def test_client_id_for() -> None:
    assert client_id_for("garden/module/84cca8000001/tele/data") == "84cca8000001"
    assert client_id_for("garden/module/discovery/84cca8000001") == "SYSTEM"
    assert client_id_for("other/topic") == "SYSTEM"


def test_discovery_registers_system_and_broadcasts(events: EventRecorder) -> None:
    registry = SystemRegistry()
    store = FakeStore()
    dispatcher = _dispatcher(registry, events, store)

    payload = {"ME": False, "CH": 6, "TY": "ESP32", "CV": "3.0.2", "FU": 1024, "FT": 4096, "Sensors": ["DHT22"]}
    dispatcher.handle(f"garden/module/discovery/{_NEW_ID}", json.dumps(payload).encode())

    system = registry.get(_NEW_ID)
    assert system is not None
    assert system.is_coordinator
    assert system.announcement.chipset == "ESP32"
    assert system.announcement.core_version == "3.0.2"
    assert system.announcement.filesystem_total_size == 4096
    assert system.announcement.sensors == frozenset({"DHT22"})
    assert system.update_status is not None
    assert system.update_status.message == RESTART_MESSAGE
    assert store.systems[_NEW_ID] == system

    assert len(events.events) == 1
    kind, wire = events.events[0]
    assert kind == "update"
    assert wire["Identifier"] == _NEW_ID
    assert wire["Announcement"]["IsMesh"] is False
    assert wire["Announcement"]["Channel"] == 6
    assert wire["UpdateStatus"]["Message"] == RESTART_MESSAGE


def test_discovery_accepts_full_key_names(registry: SystemRegistry, events: EventRecorder) -> None:
    dispatcher = _dispatcher(registry, events)

    payload = {"IsMesh": True, "Channel": 0, "Chipset": "ESP8266", "Sensors": [{"Name": "BME280"}]}
    dispatcher.handle(f"garden/module/discovery/{_NEW_ID}", json.dumps(payload).encode())

    system = registry.get(_NEW_ID)
    assert system is not None
    assert system.announcement.is_mesh is True
    assert system.announcement.sensors == frozenset({"BME280"})


def test_empty_discovery_is_ignored(registry: SystemRegistry, events: EventRecorder) -> None:
    dispatcher = _dispatcher(registry, events)

    dispatcher.handle(f"garden/module/discovery/{_NEW_ID}", b"")

    assert _NEW_ID not in registry
    assert events.events == []


def test_rediscovery_keeps_last_reading(registry: SystemRegistry, events: EventRecorder) -> None:
    dispatcher = _dispatcher(registry, events)
    dispatcher.handle(f"garden/module/{DIRECT_ID}/tele/data", b'{"Temperature":19.0}')

    dispatcher.handle(f"garden/module/discovery/{DIRECT_ID}", b'{"ME":false,"CH":0}')

    system = registry.get(DIRECT_ID)
    assert system is not None
    assert system.last_reading is not None
    assert system.last_reading.temperature == 19.0


def test_reading_updates_system_and_store(registry: SystemRegistry, events: EventRecorder) -> None:
    store = FakeStore()
    dispatcher = _dispatcher(registry, events, store)

    dispatcher.handle(f"garden/module/{DIRECT_ID}/tele/data", b'{"Temperature":21.5,"Humidity":40,"Error":false}')

    system = registry.get(DIRECT_ID)
    assert system is not None
    assert system.last_reading is not None
    assert system.last_reading.temperature == 21.5
    assert system.last_reading.humidity == 40
    assert system.last_reading.error is False
    assert system.updated_at == system.last_reading.created_at

    assert store.readings == [(DIRECT_ID, system.last_reading)]
    assert store.systems[DIRECT_ID] == system
    assert [kind for kind, _ in events.events] == ["update"]
    assert events.events[0][1]["LastReading"]["Temperature"] == 21.5


def test_reading_for_unknown_system_is_dropped(registry: SystemRegistry, events: EventRecorder) -> None:
    store = FakeStore()
    dispatcher = _dispatcher(registry, events, store)

    dispatcher.handle(f"garden/module/{_NEW_ID}/tele/data", b'{"Temperature":21.5}')

    assert _NEW_ID not in registry
    assert store.readings == []
    assert events.events == []


def test_ota_status_is_applied(registry: SystemRegistry, events: EventRecorder) -> None:
    store = FakeStore()
    dispatcher = _dispatcher(registry, events, store)

    dispatcher.handle(f"garden/module/{MESH_ID}/tele/ota", b'{"Success":false,"Message":"Downloading"}')

    system = registry.get(MESH_ID)
    assert system is not None
    assert system.update_status is not None
    assert system.update_status.success is False
    assert system.update_status.message == "Downloading"
    assert store.systems == {}
    assert len(events.events) == 1


@pytest.mark.parametrize(
    ("topic", "payload"),
    [
        (f"garden/module/{DIRECT_ID}/tele/data", b"not json"),
        (f"garden/module/{DIRECT_ID}/tele/data", b"[1, 2]"),
        (f"garden/module/{DIRECT_ID}/tele/data", b'{"Temperature":"warm"}'),
        (f"garden/module/{DIRECT_ID}/tele/ota", b"\xff\xfe"),
        (f"garden/module/discovery/{_NEW_ID}", b'{"CH":"six"}'),
        (f"garden/module/{DIRECT_ID}/tele/networks", b'{"MAC":"x"}'),
        (f"garden/module/{DIRECT_ID}/tele/packet", b"\x01\x02"),
    ],
)
def test_malformed_payloads_are_dropped(
    registry: SystemRegistry,
    events: EventRecorder,
    topic: str,
    payload: bytes,
) -> None:
    before = registry.get_all()
    dispatcher = _dispatcher(registry, events)

    dispatcher.handle(topic, payload)

    assert registry.get_all() == before
    assert events.events == []


def test_store_failure_does_not_stop_broadcast(registry: SystemRegistry, events: EventRecorder) -> None:
    class BrokenStore(FakeStore):
        def create_reading(self, identifier: str, reading: Reading) -> None:
            raise RuntimeError("database is down")

    dispatcher = _dispatcher(registry, events, BrokenStore())

    dispatcher.handle(f"garden/module/{DIRECT_ID}/tele/data", b'{"Temperature":21.5}')

    assert len(events.events) == 1


def test_broadcast_failure_is_contained(registry: SystemRegistry) -> None:
    def broadcast(kind: str, payload: object) -> None:
        raise RuntimeError("socket closed")

    dispatcher = MessageDispatcher(registry, FragmentReassembler(), broadcast=broadcast)
    dispatcher.handle(f"garden/module/{DIRECT_ID}/tele/data", b'{"Temperature":21.5}')

    system = registry.get(DIRECT_ID)
    assert system is not None and system.last_reading is not None


def test_ping_networks_and_mesh_stats_do_not_change_state(registry: SystemRegistry, events: EventRecorder) -> None:
    before = registry.get_all()
    dispatcher = _dispatcher(registry, events)

    dispatcher.handle(f"garden/module/{DIRECT_ID}/tele/ping", b"")
    dispatcher.handle(
        f"garden/module/{DIRECT_ID}/tele/networks",
        b'[{"Known":true,"MAC":"aa:bb:cc:dd:ee:ff","RSSI":-61},{"MAC":"11:22:33:44:55:66","RSSI":-80}]',
    )
    dispatcher.handle(f"garden/module/{MESH_ID}/tele/mesh", b'{"SE":10,"RC":8,"DL":1,"DA":0,"AC":7}')

    assert registry.get_all() == before
    assert events.events == []


def test_command_echo_is_ignored(registry: SystemRegistry, events: EventRecorder) -> None:
    before = registry.get_all()
    dispatcher = _dispatcher(registry, events)

    dispatcher.handle(
        f"garden/module/{COORDINATOR_ID}/cmnd",
        b'{"Command":"Publish","Payload":"{\\"Command\\":\\"Scan\\",\\"D\\":\\"dst-84cca8000003\\"}"}',
    )

    assert registry.get_all() == before
    assert events.events == []


def test_fragmented_reading_is_applied_to_embedded_sender(registry: SystemRegistry, events: EventRecorder) -> None:
    dispatcher = _dispatcher(registry, events)
    packet_topic = f"garden/module/{COORDINATOR_ID}/tele/packet"
    inner_topic = f"garden/module/{MESH_ID}/tele/data".encode()

    dispatcher.handle(packet_topic, _packet(2, 2, b'"Humidity":55}' + b"\x00" * 12))
    assert events.events == []
    dispatcher.handle(packet_topic, _packet(1, 2, inner_topic + b'\x01{"Temperature":18.25,'))

    system = registry.get(MESH_ID)
    assert system is not None
    assert system.last_reading is not None
    assert system.last_reading.temperature == 18.25
    assert system.last_reading.humidity == 55
    coordinator = registry.get(COORDINATOR_ID)
    assert coordinator is not None and coordinator.last_reading is None
    assert len(events.events) == 1


def test_fragmented_discovery_registers_mesh_node(registry: SystemRegistry, events: EventRecorder) -> None:
    dispatcher = _dispatcher(registry, events)
    packet_topic = f"garden/module/{COORDINATOR_ID}/tele/packet"
    inner_topic = f"garden/module/discovery/{_NEW_ID}".encode()

    dispatcher.handle(packet_topic, _packet(1, 2, inner_topic + b'\x01{"ME":true,'))
    dispatcher.handle(packet_topic, _packet(2, 2, b'"CH":0,"TY":"ESP8266"}'))

    system = registry.get(_NEW_ID)
    assert system is not None
    assert system.announcement.is_mesh is True
    assert not system.is_coordinator


def test_out_of_sequence_packet_is_dropped(registry: SystemRegistry, events: EventRecorder) -> None:
    reassembler = FragmentReassembler(ttl=None)
    dispatcher = MessageDispatcher(registry, reassembler, broadcast=events)
    packet_topic = f"garden/module/{COORDINATOR_ID}/tele/packet"
    inner_topic = f"garden/module/{MESH_ID}/tele/data".encode()

    dispatcher.handle(packet_topic, _packet(1, 2, inner_topic + b'\x01{"Temperature":1}'))
    dispatcher.handle(packet_topic, _packet(1, 2, inner_topic + b'\x01{"Temperature":1}'))

    assert reassembler.pending() == {}
    assert events.events == []


class _DeferredExecutor(Executor):
    def __init__(self) -> None:
        self.pending: list[tuple[Callable[..., Any], tuple[Any, ...]]] = []

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future[Any]:
        self.pending.append((fn, args))
        return Future()

    def run_all(self) -> None:
        for fn, args in self.pending:
            fn(*args)
        self.pending.clear()


def test_store_writes_are_handed_to_executor(registry: SystemRegistry, events: EventRecorder) -> None:
    store = FakeStore()
    executor = _DeferredExecutor()
    dispatcher = MessageDispatcher(
        registry,
        FragmentReassembler(ttl=None),
        broadcast=events,
        store=store,
        store_executor=executor,
    )

    dispatcher.handle(f"garden/module/{DIRECT_ID}/tele/data", b'{"Temperature":21.5}')

    # Registry and broadcast are updated right away, the store only once the executor runs.
    assert len(events.events) == 1
    assert store.readings == []
    assert len(executor.pending) == 2

    executor.run_all()
    assert len(store.readings) == 1
    assert store.systems[DIRECT_ID] == registry.get(DIRECT_ID)
