"""Builder for the over-the-air ``Update`` command."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pygarden._constants import CHIPSET_BOARDS, FIRMWARE_FILENAME, MAX_PSK_LENGTH, MAX_SSID_LENGTH
from pygarden._crypto.hashing import md5_hex
from pygarden._redact import redact_command_fields
from pygarden.exceptions import GardenNotFoundError, GardenValidationError
from pygarden.models.system import GardenSystem

_logger = logging.getLogger(__name__)


def _validate_credential(name: str, value: str, limit: int) -> None:
    size = len(value.encode("utf-8"))
    if size == 0:
        raise GardenValidationError(f"{name} is required")
    if size > limit:
        raise GardenValidationError(f"{name} cannot exceed {limit} bytes (got {size})")


def firmware_board(system: GardenSystem) -> str:
    """Firmware board directory for the system's announced chipset."""
    chipset = system.announcement.chipset.strip().lower()
    board = CHIPSET_BOARDS.get(chipset)
    if board is None:
        raise GardenNotFoundError(
            f"no firmware available for chipset {system.announcement.chipset!r}",
            identifier=system.identifier,
        )
    return board


def build_ota_command(
    system: GardenSystem,
    *,
    ssid: str,
    psk: str,
    host: str,
    firmware_dir: str | Path,
) -> bytes:
    """Build the ``Update`` command for *system*.

    The node joins *ssid*/*psk*, downloads the firmware from *host* and
    verifies its length and MD5 checksum before flashing it.

    Returns
    -------
    bytes
        ``{"Command":"Update","S":...,"P":...,"U":...,"L":...,"C":...}``

    Raises
    ------
    GardenValidationError
        SSID or PSK empty or too long.
    GardenNotFoundError
        Unknown chipset or missing firmware binary.
    """
    _validate_credential("SSID", ssid, MAX_SSID_LENGTH)
    _validate_credential("PSK", psk, MAX_PSK_LENGTH)

    board = firmware_board(system)
    path = Path(firmware_dir) / board / FIRMWARE_FILENAME
    try:
        firmware = path.read_bytes()
    except FileNotFoundError as exc:
        raise GardenNotFoundError(f"firmware binary {path} not found", identifier=system.identifier) from exc

    command = {
        "Command": "Update",
        "S": ssid,
        "P": psk,
        "U": f"http://{host}/firmware/{board}/{FIRMWARE_FILENAME}",
        "L": len(firmware),
        "C": md5_hex(firmware),
    }
    _logger.debug("OTA command for %s: %s", system.identifier, redact_command_fields(command))
    return json.dumps(command, separators=(",", ":")).encode("utf-8")
