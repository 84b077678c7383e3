"""Internal constants shared across the library."""

import re

TOPIC_ROOT = "garden/module"
SUBSCRIBE_TOPIC = f"{TOPIC_ROOT}/#"
DEFAULT_MQTT_PORT = 1883

#: Identifier used to address every node on the mesh at once.
BROADCAST_ID = "FFFFFFFFFFFF"

#: Sender name used for messages whose topic carries no module id (discovery).
ANONYMOUS_SENDER = "SYSTEM"

#: Identifiers accepted for outbound commands.
SYSTEM_ID_RE = re.compile(r"^[a-fA-F0-9]{12}$")

#: Inbound topics of the form garden/module/<id>/...
CLIENT_ID_RE = re.compile(r"^garden/module/([a-fA-F0-9]+)/")

# ------------------------------------------------------------------
# Command limits
# ------------------------------------------------------------------

#: Mesh payloads are capped at 212 bytes once the coordinator adds its framing.
MESH_PAYLOAD_LIMIT = 212
MAX_COMMAND_LENGTH = 210
#: Mesh payload room left once the 12 byte nonce and 16 byte tag are added.
MAX_ENCRYPTED_COMMAND_LENGTH = MESH_PAYLOAD_LIMIT - 12 - 16

ENCRYPTED_COMMAND_PREFIX = b"e"
MESH_DESTINATION_PREFIX = "dst-"

#: HMAC purpose string for the ChaCha20-Poly1305 command key.
COMMAND_KEY_PURPOSE = "chacha-symmetric-key"

# ------------------------------------------------------------------
# Mesh fragments
# ------------------------------------------------------------------

FRAGMENT_HEADER_LENGTH = 6
#: Only the first three bytes of the 32 bit correlation id are consumed.
CORRELATION_LENGTH = 3
FRAGMENT_TOPIC_SEPARATOR = b"\x01"
DEFAULT_FRAGMENT_TTL = 5.0

# ------------------------------------------------------------------
# OTA updates
# ------------------------------------------------------------------

MAX_SSID_LENGTH = 32
MAX_PSK_LENGTH = 64
FIRMWARE_FILENAME = "firmware.bin"
#: Announced chipset (lowercase) -> firmware board directory.
CHIPSET_BOARDS: dict[str, str] = {
    "esp32": "esp32",
    "esp8266": "esp8266",
}


def command_topic(identifier: str) -> str:
    """Topic a garden system listens on for commands."""
    return f"{TOPIC_ROOT}/{identifier}/cmnd"


def identifier_to_address(identifier: str) -> str:
    """Format a 12 character identifier as a colon separated MAC address.

    ``"84cca8abcdef"`` becomes ``"84:cc:a8:ab:cd:ef"``.
    """
    if len(identifier) != 12:
        raise ValueError(f"identifier must be 12 characters, got {len(identifier)}")
    return ":".join(identifier[i : i + 2] for i in range(0, 12, 2))
