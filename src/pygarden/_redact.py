"""Secret masking for outbound commands in debug logs.

``Update`` commands carry the Wi-Fi PSK in ``"P"``, and a mesh ``Publish``
envelope embeds the inner command either as a JSON string or as hex.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

#: Command keys whose values never reach the logs.
SECRET_KEYS: frozenset[str] = frozenset({"P", "MeshKey"})
MASK = "<redacted>"


def _redact_inner_payload(payload: str) -> str:
    # "h" + hex(...) wraps opaque, usually encrypted, bytes.
    if payload.startswith("h"):
        return f"<hex:{(len(payload) - 1) // 2}b>"
    try:
        inner = json.loads(payload)
    except json.JSONDecodeError:
        return payload
    if not isinstance(inner, dict):
        return payload
    return json.dumps(redact_command_fields(inner), separators=(",", ":"))


def redact_command_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of a JSON command with secrets masked, recursing into envelopes."""
    redacted: dict[str, Any] = {}
    for key, value in fields.items():
        if key in SECRET_KEYS:
            redacted[key] = MASK
        elif key == "Payload" and isinstance(value, str):
            redacted[key] = _redact_inner_payload(value)
        else:
            redacted[key] = value
    return redacted


def redact_command(command: bytes) -> str:
    """Printable, secret-free form of a command or envelope as published."""
    try:
        text = command.decode("utf-8")
    except UnicodeDecodeError:
        return f"<binary:{len(command)}b>"

    if text.startswith("{"):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return json.dumps(redact_command_fields(parsed), separators=(",", ":"))

    if not text.isprintable():
        return f"<binary:{len(command)}b>"
    return text
