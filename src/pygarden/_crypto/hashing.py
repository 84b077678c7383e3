"""Hash and key-derivation helpers."""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets

#: Random bytes in a freshly generated mesh key (64 base64 characters).
MESH_KEY_BYTES = 48


def md5_hex(data: bytes) -> str:
    """Compute MD5 of *data*, returning lowercase hex.

    Only used for the firmware checksum in OTA commands because the
    ESP8266 updater exclusively supports MD5. Do not use it for anything
    that needs a security property.
    """
    return hashlib.md5(data).hexdigest()


def sha256_hex(data: bytes) -> str:
    """Compute SHA-256 of *data*, returning lowercase hex."""
    return hashlib.sha256(data).hexdigest()


def derive_key(purpose: str, root: str) -> bytes:
    """Derive a 32 byte key for *purpose* from the shared *root* secret.

    Algorithm: ``HMAC-SHA256(key=root, msg=purpose)``. Deterministic, so
    the same mesh key always yields the same command key.

    Parameters
    ----------
    purpose : str
        Label of the derived key (e.g. ``"chacha-symmetric-key"``).
    root : str
        The raw mesh key.

    Returns
    -------
    bytes
        32 byte derived key.
    """
    return hmac.new(root.encode("utf-8"), purpose.encode("utf-8"), hashlib.sha256).digest()


def generate_mesh_key(size: int = MESH_KEY_BYTES) -> str:
    """Random base64 root secret for a new installation."""
    return base64.b64encode(secrets.token_bytes(size)).decode("ascii").rstrip("=")
