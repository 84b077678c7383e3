"""ChaCha20-Poly1305 sealing for encrypted garden system commands.

The firmware cannot frame payloads holding ``0x00`` or ``0x0D``, so
:func:`seal` draws fresh nonces until neither the nonce nor the sealed
output contains those bytes. The firmware also expects the tag before the
ciphertext, the reverse of the usual AEAD output order.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from pygarden.exceptions import GardenCryptoError

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
FORBIDDEN_BYTES = frozenset(b"\x00\x0d")

#: Upper bound for the nonce rejection loop. A conforming nonce for a
#: maximum size command is found with probability ~0.19 per draw.
MAX_SEAL_ATTEMPTS = 1000


@dataclass(frozen=True)
class SealedBox:
    """Sealed command parts in firmware order."""

    nonce: bytes
    tag: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        """``nonce || tag || ciphertext``."""
        return self.nonce + self.tag + self.ciphertext


def _has_forbidden(data: bytes) -> bool:
    return not FORBIDDEN_BYTES.isdisjoint(data)


def _cipher(key: bytes) -> ChaCha20Poly1305:
    if len(key) != KEY_SIZE:
        raise GardenCryptoError(f"ChaCha20-Poly1305 key must be {KEY_SIZE} bytes (got {len(key)})")
    return ChaCha20Poly1305(key)


def seal(key: bytes, plaintext: bytes, *, max_attempts: int = MAX_SEAL_ATTEMPTS) -> SealedBox:
    """Encrypt *plaintext* without associated data.

    Parameters
    ----------
    key : bytes
        32 byte symmetric key.
    plaintext : bytes
        Command bytes to encrypt.
    max_attempts : int
        Nonces to try before giving up.

    Returns
    -------
    SealedBox
        Nonce, tag and ciphertext, none of which contain ``0x00``/``0x0D``.

    Raises
    ------
    GardenCryptoError
        If the key is invalid or no conforming nonce was found.
    """
    chacha = _cipher(key)

    for _ in range(max_attempts):
        nonce = secrets.token_bytes(NONCE_SIZE)
        if _has_forbidden(nonce):
            continue

        raw = chacha.encrypt(nonce, plaintext, None)
        ciphertext, tag = raw[:-TAG_SIZE], raw[-TAG_SIZE:]
        if _has_forbidden(tag) or _has_forbidden(ciphertext):
            continue

        return SealedBox(nonce=nonce, tag=tag, ciphertext=ciphertext)

    raise GardenCryptoError(f"no nonce without forbidden bytes found after {max_attempts} attempts")


def open_box(key: bytes, nonce: bytes, tag: bytes, ciphertext: bytes) -> bytes:
    """Decrypt a box produced by :func:`seal`.

    Raises
    ------
    GardenCryptoError
        If the key is invalid or authentication fails.
    """
    chacha = _cipher(key)
    try:
        return chacha.decrypt(nonce, ciphertext + tag, None)
    except (InvalidTag, ValueError) as exc:
        raise GardenCryptoError("ChaCha20-Poly1305 authentication failed") from exc
