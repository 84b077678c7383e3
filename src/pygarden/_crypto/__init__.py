"""Cryptographic primitives for garden system commands."""

from __future__ import annotations

from pygarden._crypto.chacha import MAX_SEAL_ATTEMPTS, SealedBox, open_box, seal
from pygarden._crypto.hashing import derive_key, generate_mesh_key, md5_hex, sha256_hex

__all__ = [
    "MAX_SEAL_ATTEMPTS",
    "SealedBox",
    "derive_key",
    "generate_mesh_key",
    "md5_hex",
    "open_box",
    "seal",
    "sha256_hex",
]
