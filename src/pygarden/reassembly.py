"""Reassembly of mesh packets split across several MQTT messages.

ESP-NOW limits a radio payload to ~244 bytes, so nodes chunk anything
larger. The coordinator republishes every chunk on ``.../tele/packet``:

| Payload index | Description                                  |
|---------------|----------------------------------------------|
| 0 - 2         | Correlation id (byte 3 is not consumed)      |
| 4             | Fragment number, starting at 1               |
| 5             | Total number of fragments                    |
| 6 - end       | Fragment payload, right padded with ``0x00`` |

Fragment #1 prefixes its payload with the original MQTT topic and a
``0x01`` separator. Numbers and totals go up to 255, so the largest
logical message is about 60 KB.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from pygarden._constants import (
    CORRELATION_LENGTH,
    DEFAULT_FRAGMENT_TTL,
    FRAGMENT_HEADER_LENGTH,
    FRAGMENT_TOPIC_SEPARATOR,
)
from pygarden.exceptions import GardenDecodeError, GardenSequenceError

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeshFragment:
    """One chunk of a mesh packet."""

    correlation: str
    number: int
    total: int
    topic: str
    payload: bytes
    arrival_time: float


@dataclass(frozen=True)
class ReassembledMessage:
    """A logical message rebuilt from all of its fragments."""

    correlation: str
    client_id: str
    topic: str
    payload: bytes


def parse_fragment(raw: bytes, *, arrival_time: float) -> MeshFragment:
    """Decode a ``tele/packet`` payload into a :class:`MeshFragment`.

    Raises
    ------
    GardenDecodeError
        If the header is truncated or the numbering is invalid.
    """
    if len(raw) < FRAGMENT_HEADER_LENGTH:
        raise GardenDecodeError(f"mesh packet is {len(raw)} bytes, shorter than its {FRAGMENT_HEADER_LENGTH} byte header")

    correlation = raw[:CORRELATION_LENGTH].hex()
    number = raw[4]
    total = raw[5]
    if number == 0 or total == 0:
        raise GardenDecodeError(f"mesh packet {correlation} has invalid numbering {number}/{total}")

    payload = raw[FRAGMENT_HEADER_LENGTH:].rstrip(b"\x00")

    topic = ""
    if number == 1:
        head, separator, rest = payload.partition(FRAGMENT_TOPIC_SEPARATOR)
        if separator:
            topic = head.decode("utf-8", errors="replace")
            payload = rest
        else:
            _logger.warning("First mesh packet %s does not have a topic separator", correlation)

    return MeshFragment(
        correlation=correlation,
        number=number,
        total=total,
        topic=topic,
        payload=payload,
        arrival_time=arrival_time,
    )


def client_id_from_topic(topic: str) -> str:
    """Recover the sender id from a reassembled topic.

    Topics are either ``garden/module/<id>/tele/<kind>`` or
    ``garden/module/discovery/<id>``.
    """
    parts = topic.split("/")
    if "/tele/" in topic:
        try:
            return parts[parts.index("module") + 1]
        except (ValueError, IndexError):
            return ""
    return parts[-1]


def _assemble(correlation: str, fragments: list[MeshFragment]) -> ReassembledMessage:
    ordered = sorted(fragments, key=lambda f: f.number)
    for expected, fragment in enumerate(ordered, start=1):
        if fragment.number != expected:
            raise GardenSequenceError(
                f"unexpected fragment while reassembling mesh packet {correlation} "
                f"(expected {expected}, got {fragment.number})",
                correlation=correlation,
            )

    first = ordered[0]
    return ReassembledMessage(
        correlation=correlation,
        client_id=client_id_from_topic(first.topic),
        topic=first.topic,
        payload=b"".join(f.payload for f in ordered),
    )


class FragmentReassembler:
    """Buffers fragments per correlation id until a packet is complete.

    One lock guards every buffer. Buffers are released when their packet
    completes, when reassembly is aborted, or when they outlive ``ttl``.
    """

    def __init__(
        self,
        *,
        ttl: float | None = DEFAULT_FRAGMENT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._buffers: dict[str, list[MeshFragment]] = {}

    def pending(self) -> dict[str, int]:
        """Correlation id -> number of buffered fragments."""
        with self._lock:
            return {correlation: len(fragments) for correlation, fragments in self._buffers.items()}

    def add(self, raw: bytes) -> ReassembledMessage | None:
        """Buffer one ``tele/packet`` payload.

        Returns the rebuilt message once every fragment has arrived, ``None``
        while the packet is still incomplete.

        Raises
        ------
        GardenDecodeError
            If the fragment header is malformed.
        GardenSequenceError
            If the complete buffer is not exactly ``1..total``. The buffer
            has been discarded.
        """
        now = self._clock()
        fragment = parse_fragment(raw, arrival_time=now)
        _logger.debug(
            "Got mesh packet %s (%d/%d) with %d payload bytes",
            fragment.correlation,
            fragment.number,
            fragment.total,
            len(fragment.payload),
        )

        with self._lock:
            expired = self._evict_expired_locked(now)
            fragments = self._buffers.setdefault(fragment.correlation, [])
            fragments.append(fragment)

            first = next((f for f in fragments if f.number == 1), fragments[0])
            if len(fragments) != first.total:
                complete = None
            else:
                complete = self._buffers.pop(fragment.correlation)

        if expired:
            _logger.warning("Evicted %d stale mesh packet buffers: %s", len(expired), ", ".join(expired))
        if complete is None:
            return None

        message = _assemble(fragment.correlation, complete)
        _logger.debug(
            "Reassembled mesh packet %s from %d fragments for %s",
            message.correlation,
            len(complete),
            message.client_id or "<unknown>",
        )
        return message

    def sweep(self) -> int:
        """Evict buffers older than the TTL. Returns how many were dropped."""
        with self._lock:
            expired = self._evict_expired_locked(self._clock())
        if expired:
            _logger.warning("Evicted %d stale mesh packet buffers: %s", len(expired), ", ".join(expired))
        return len(expired)

    def _evict_expired_locked(self, now: float) -> list[str]:
        if self._ttl is None:
            return []
        cutoff = now - self._ttl
        expired = [
            correlation
            for correlation, fragments in self._buffers.items()
            if min(f.arrival_time for f in fragments) < cutoff
        ]
        for correlation in expired:
            del self._buffers[correlation]
        return expired
