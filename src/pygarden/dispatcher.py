"""Inbound MQTT message classification and handling.

Owns:
- mapping a topic to a :class:`MessageKind`
- decoding each kind's payload into models
- applying the result to the registry, mirroring it into the store and
  broadcasting an ``"update"`` event
- feeding reassembled mesh packets back into itself
"""

from __future__ import annotations

import enum
import json
import logging
from collections.abc import Callable
from concurrent.futures import Executor
from typing import Any, TypeVar

from pydantic import ValidationError

from pygarden._constants import ANONYMOUS_SENDER, CLIENT_ID_RE
from pygarden.exceptions import GardenDecodeError, GardenSequenceError
from pygarden.interfaces import EventSink, SystemStore
from pygarden.models._base import GardenBaseModel, utcnow
from pygarden.models.system import Announcement, GardenSystem, OTAStatus, Reading
from pygarden.models.telemetry import MeshStatistics, WifiNetwork
from pygarden.reassembly import FragmentReassembler
from pygarden.registry import SystemRegistry

_logger = logging.getLogger(__name__)

TModel = TypeVar("TModel", bound=GardenBaseModel)

UPDATE_EVENT = "update"
RESTART_MESSAGE = "Backend: device restarted"


class MessageKind(enum.StrEnum):
    DISCOVERY = "discovery"
    TELEMETRY_DATA = "telemetry-data"
    TELEMETRY_NETWORKS = "telemetry-networks"
    TELEMETRY_PACKET = "telemetry-packet"
    TELEMETRY_PING = "telemetry-ping"
    TELEMETRY_MESH = "telemetry-mesh"
    TELEMETRY_OTA = "telemetry-ota"
    COMMAND = "command"
    UNKNOWN = "unknown"


_TELEMETRY_SUFFIXES: dict[str, MessageKind] = {
    "/data": MessageKind.TELEMETRY_DATA,
    "/networks": MessageKind.TELEMETRY_NETWORKS,
    "/packet": MessageKind.TELEMETRY_PACKET,
    "/ping": MessageKind.TELEMETRY_PING,
    "/mesh": MessageKind.TELEMETRY_MESH,
    "/ota": MessageKind.TELEMETRY_OTA,
}


def classify_topic(topic: str) -> MessageKind:
    """Map an MQTT topic to the kind of message published on it."""
    if "/discovery" in topic:
        return MessageKind.DISCOVERY
    if "/tele/" in topic:
        for suffix, kind in _TELEMETRY_SUFFIXES.items():
            if topic.endswith(suffix):
                return kind
        return MessageKind.UNKNOWN
    if topic.endswith("/cmnd"):
        return MessageKind.COMMAND
    return MessageKind.UNKNOWN


def client_id_for(topic: str) -> str:
    """Sender id for ``garden/module/<id>/...`` topics, else the anonymous sender."""
    match = CLIENT_ID_RE.match(topic)
    return match.group(1) if match else ANONYMOUS_SENDER


def _decode_json(payload: bytes, topic: str) -> Any:
    try:
        return json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise GardenDecodeError(f"payload on {topic} is not JSON: {exc}", topic=topic) from exc


def decode_model(model: type[TModel], payload: bytes, topic: str) -> TModel:
    """Decode a JSON object payload into *model*."""
    data = _decode_json(payload, topic)
    if not isinstance(data, dict):
        raise GardenDecodeError(f"payload on {topic} is not a JSON object", topic=topic)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise GardenDecodeError(f"invalid {model.__name__} on {topic}: {exc}", topic=topic) from exc


def decode_model_list(model: type[TModel], payload: bytes, topic: str) -> list[TModel]:
    """Decode a JSON array payload into a list of *model*."""
    data = _decode_json(payload, topic)
    if not isinstance(data, list):
        raise GardenDecodeError(f"payload on {topic} is not a JSON array", topic=topic)
    try:
        return [model.model_validate(item) for item in data]
    except ValidationError as exc:
        raise GardenDecodeError(f"invalid {model.__name__} on {topic}: {exc}", topic=topic) from exc


class MessageDispatcher:
    """Routes inbound messages to per-kind handlers.

    :meth:`handle` never raises: a bad message is logged and dropped
    without touching other systems or other mesh packets.

    When *store_executor* is given, store writes run on it instead of the
    calling thread, so a slow store never blocks message handling.
    """

    def __init__(
        self,
        registry: SystemRegistry,
        reassembler: FragmentReassembler,
        *,
        broadcast: EventSink | None = None,
        store: SystemStore | None = None,
        store_executor: Executor | None = None,
    ) -> None:
        self._registry = registry
        self._reassembler = reassembler
        self._broadcast = broadcast
        self._store = store
        self._store_executor = store_executor

    def handle(self, topic: str, payload: bytes) -> None:
        """Entry point for every message received on ``garden/module/#``."""
        self.dispatch(client_id_for(topic), topic, payload)

    def dispatch(self, client: str, topic: str, payload: bytes) -> None:
        """Handle a message from a known sender id.

        Reassembled mesh packets re-enter here with the id recovered from
        their embedded topic.
        """
        kind = classify_topic(topic)
        _logger.debug("Message from %s on %s (%s, %d bytes)", client, topic, kind, len(payload))

        try:
            if kind is MessageKind.DISCOVERY:
                self._on_discovery(topic, payload)
            elif kind is MessageKind.TELEMETRY_DATA:
                self._on_reading(client, topic, payload)
            elif kind is MessageKind.TELEMETRY_OTA:
                self._on_ota_status(client, topic, payload)
            elif kind is MessageKind.TELEMETRY_PACKET:
                self._on_packet(payload)
            elif kind is MessageKind.TELEMETRY_NETWORKS:
                self._on_networks(client, topic, payload)
            elif kind is MessageKind.TELEMETRY_MESH:
                self._on_mesh_statistics(client, topic, payload)
            elif kind is MessageKind.TELEMETRY_PING:
                pass
            elif kind is MessageKind.COMMAND:
                pass
            else:
                _logger.warning("Unhandled MQTT topic: %s", topic)
        except GardenSequenceError as exc:
            _logger.warning("Dropped mesh packet %s: %s", exc.correlation, exc)
        except GardenDecodeError as exc:
            _logger.warning("Dropped %s message from %s: %s", kind, client, exc)
        except Exception:
            _logger.exception("Failed to handle %s message from %s on %s", kind, client, topic)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _on_discovery(self, topic: str, payload: bytes) -> None:
        # An empty payload clears the retained discovery message.
        if not payload:
            return

        # garden/module/discovery/<id>
        identifier = topic.rsplit("/", 1)[-1]
        if not identifier:
            raise GardenDecodeError("discovery topic has no identifier", topic=topic)

        announcement = decode_model(Announcement, payload, topic)
        now = utcnow()
        system = self._registry.upsert_with(
            identifier,
            lambda previous: GardenSystem(
                identifier=identifier,
                announcement=announcement,
                last_reading=previous.last_reading if previous is not None else None,
                update_status=OTAStatus(success=True, message=RESTART_MESSAGE),
                updated_at=now,
            ),
        )
        _logger.debug(
            "Discovered %s (mesh=%s channel=%d chipset=%s)",
            identifier,
            announcement.is_mesh,
            announcement.channel,
            announcement.chipset or "?",
        )

        if self._store is not None:
            self._mirror(self._store.create_or_replace_system, system)
        self._emit(system)

    def _on_reading(self, client: str, topic: str, payload: bytes) -> None:
        reading = decode_model(Reading, payload, topic)
        now = utcnow()
        reading = reading.model_copy(update={"created_at": now})

        system = self._registry.update(
            client,
            lambda s: s.model_copy(update={"last_reading": reading, "updated_at": now}),
        )
        if system is None:
            _logger.warning("Unable to find system with id %s, dropping reading", client)
            return

        if self._store is not None:
            self._mirror(self._store.create_reading, client, reading)
            self._mirror(self._store.update_system, system)
        self._emit(system)

    def _on_ota_status(self, client: str, topic: str, payload: bytes) -> None:
        status = decode_model(OTAStatus, payload, topic)
        now = utcnow()

        system = self._registry.update(
            client,
            lambda s: s.model_copy(update={"update_status": status, "updated_at": now}),
        )
        if system is None:
            _logger.warning("Unable to find system with id %s, dropping OTA status", client)
            return

        _logger.debug("OTA status from %s: success=%s message=%s", client, status.success, status.message)
        self._emit(system)

    def _on_packet(self, payload: bytes) -> None:
        message = self._reassembler.add(payload)
        if message is None:
            return
        self.dispatch(message.client_id, message.topic, message.payload)

    def _on_networks(self, client: str, topic: str, payload: bytes) -> None:
        networks = decode_model_list(WifiNetwork, payload, topic)
        _logger.debug("%s found %d networks", client, len(networks))
        for i, network in enumerate(networks, start=1):
            _logger.debug(
                "Network %d%s belongs to %s and has signal %d",
                i,
                " (known)" if network.known else "",
                network.mac,
                network.signal,
            )

    def _on_mesh_statistics(self, client: str, topic: str, payload: bytes) -> None:
        stats = decode_model(MeshStatistics, payload, topic)
        _logger.info(
            "Mesh stats for %s: sent=%d received=%d accepted=%d dropped_length=%d dropped_auth=%d",
            client,
            stats.total_sent,
            stats.total_received,
            stats.total_accepted,
            stats.dropped_bad_length,
            stats.dropped_invalid_auth,
        )

    # ------------------------------------------------------------------
    # Side effects (never under the registry lock)
    # ------------------------------------------------------------------

    def _mirror(self, func: Callable[..., Any], *args: Any) -> None:
        # Store writes are submitted in arrival order; a single worker keeps them ordered.
        if self._store_executor is not None:
            self._store_executor.submit(self._persist, func, *args)
        else:
            self._persist(func, *args)

    def _persist(self, func: Callable[..., Any], *args: Any) -> None:
        try:
            func(*args)
        except Exception:
            _logger.exception("Unable to persist update for %s", getattr(args[0], "identifier", args[0]))

    def _emit(self, system: GardenSystem) -> None:
        if self._broadcast is None:
            return
        try:
            self._broadcast(UPDATE_EVENT, system.to_wire())
        except Exception:
            _logger.exception("Broadcast of %s failed", system.identifier)
