"""Outbound command encoding, encryption and mesh routing.

Garden systems connected over MQTT receive commands on their own
``garden/module/<id>/cmnd`` topic. Mesh connected systems are not
reachable from the broker: the command is wrapped in a ``Publish``
envelope and sent to the coordinator, which rebroadcasts it over ESP-NOW
to the node named in the envelope.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pygarden._constants import (
    BROADCAST_ID,
    COMMAND_KEY_PURPOSE,
    ENCRYPTED_COMMAND_PREFIX,
    MAX_COMMAND_LENGTH,
    MAX_ENCRYPTED_COMMAND_LENGTH,
    MESH_DESTINATION_PREFIX,
    SYSTEM_ID_RE,
    command_topic,
)
from pygarden._crypto.chacha import KEY_SIZE, seal
from pygarden._crypto.hashing import derive_key
from pygarden._redact import redact_command
from pygarden.exceptions import (
    GardenConfigError,
    GardenNotFoundError,
    GardenValidationError,
)
from pygarden.interfaces import Publisher
from pygarden.registry import SystemRegistry

_logger = logging.getLogger(__name__)


def validate_command(command: bytes, *, encrypt: bool) -> None:
    """Check command size limits.

    Raises
    ------
    GardenValidationError
        If the command is empty, longer than 210 bytes, or longer than
        184 bytes when it is going to be encrypted.
    """
    if not command:
        raise GardenValidationError("command must not be empty")
    if len(command) > MAX_COMMAND_LENGTH:
        raise GardenValidationError(f"commands cannot exceed {MAX_COMMAND_LENGTH} bytes (got {len(command)})")
    if encrypt and len(command) > MAX_ENCRYPTED_COMMAND_LENGTH:
        raise GardenValidationError(
            f"encrypted commands cannot exceed {MAX_ENCRYPTED_COMMAND_LENGTH} bytes (got {len(command)})"
        )


def encrypt_command(command: bytes, key: bytes) -> bytes:
    """Seal *command* into the firmware's ``'e' || nonce || tag || ciphertext`` layout."""
    box = seal(key, command)
    return ENCRYPTED_COMMAND_PREFIX + box.to_bytes()


def _as_json_object(command: bytes) -> dict[str, Any] | None:
    if not command.startswith(b"{"):
        return None
    try:
        parsed = json.loads(command)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def build_mesh_envelope(identifier: str, command: bytes) -> bytes:
    """Wrap *command* so the coordinator republishes it to *identifier*.

    JSON commands get a ``"D": "dst-<id>"`` key and are embedded as a JSON
    string. Anything else (encrypted commands) is embedded as
    ``"h" + hex("dst-" + id + command)``.
    """
    destination = f"{MESH_DESTINATION_PREFIX}{identifier}"

    structured = _as_json_object(command)
    if structured is not None:
        structured["D"] = destination
        payload = json.dumps(structured, separators=(",", ":"))
    else:
        payload = "h" + (destination.encode("ascii") + command).hex()

    return json.dumps({"Command": "Publish", "Payload": payload}, separators=(",", ":")).encode("utf-8")


class CommandSender:
    """Encodes commands and publishes them directly or through the coordinator.

    Sending never modifies the registry.
    """

    def __init__(
        self,
        registry: SystemRegistry,
        publisher: Publisher,
        *,
        mesh_key: str | None = None,
    ) -> None:
        self._registry = registry
        self._publisher = publisher
        self._mesh_key = mesh_key
        self._command_key: bytes | None = None

    def _derived_key(self) -> bytes:
        if self._command_key is None:
            if not self._mesh_key:
                raise GardenConfigError("no mesh key configured, cannot encrypt commands")
            self._command_key = derive_key(COMMAND_KEY_PURPOSE, self._mesh_key)
        return self._command_key

    def encode(self, command: str | bytes, *, encrypt: bool = False, key: bytes | None = None) -> bytes:
        """Validate and (optionally) encrypt *command*, returning the bytes to route."""
        raw = command.encode("utf-8") if isinstance(command, str) else bytes(command)
        validate_command(raw, encrypt=encrypt)
        if not encrypt:
            return raw

        if key is not None and len(key) != KEY_SIZE:
            raise GardenValidationError(f"encryption key must be {KEY_SIZE} bytes (got {len(key)})")
        return encrypt_command(raw, key if key is not None else self._derived_key())

    def route(self, identifier: str, command: bytes) -> tuple[str, bytes]:
        """Pick the destination topic and payload for an encoded command."""
        if identifier.upper() == BROADCAST_ID:
            identifier = BROADCAST_ID
            is_mesh = True
        else:
            system = self._registry.get(identifier)
            if system is None:
                raise GardenNotFoundError(f"unable to find system with id {identifier}", identifier=identifier)
            is_mesh = system.announcement.is_mesh

        if not is_mesh:
            return command_topic(identifier), command

        coordinator = self._registry.get_coordinator()
        if coordinator is None:
            raise GardenNotFoundError("no unique mesh coordinator is registered", identifier=identifier)

        # +4 bytes for "dst-" and +12 for the identifier
        _logger.debug("Mesh payload for %s will be %d bytes long", identifier, len(command) + 16)
        return command_topic(coordinator.identifier), build_mesh_envelope(identifier, command)

    def send_command(
        self,
        identifier: str,
        command: str | bytes,
        *,
        encrypt: bool = False,
        key: bytes | None = None,
    ) -> None:
        """Encode, route and publish a command.

        Raises
        ------
        GardenValidationError
            Bad identifier, command size or key size. Nothing is published.
        GardenNotFoundError
            Unknown destination, or no unique coordinator for a mesh send.
        GardenConfigError
            Encryption requested without a key or a mesh key.
        GardenTransportError
            The publish failed or timed out. It is not retried.
        """
        if not SYSTEM_ID_RE.match(identifier):
            raise GardenValidationError(f"invalid system identifier {identifier!r}")

        encoded = self.encode(command, encrypt=encrypt, key=key)
        topic, payload = self.route(identifier, encoded)

        _logger.debug(
            "Sending %scommand to %s via %s (%d bytes): %s",
            "encrypted " if encrypt else "",
            identifier,
            topic,
            len(payload),
            redact_command(payload),
        )
        self._publisher.publish(topic, payload, qos=0, retain=False)
