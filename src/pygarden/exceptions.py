"""Custom exception hierarchy for pygarden."""

from __future__ import annotations


class GardenError(Exception):
    """Base exception for all pygarden errors."""


class GardenConfigError(GardenError):
    """Invalid or missing configuration."""


class GardenValidationError(GardenError):
    """Rejected input (bad size or format). No state was changed."""


class GardenNotFoundError(GardenError):
    """Unknown garden system, coordinator, chipset or firmware binary."""

    def __init__(self, message: str, *, identifier: str = "") -> None:
        self.identifier = identifier
        super().__init__(message)


class GardenDecodeError(GardenError):
    """Malformed inbound payload."""

    def __init__(self, message: str, *, topic: str = "") -> None:
        self.topic = topic
        super().__init__(message)


class GardenSequenceError(GardenDecodeError):
    """Mesh fragments did not form the contiguous sequence ``1..total``.

    The buffer for the correlation id has already been released when this
    is raised; a later fragment with the same correlation id starts over.
    """

    def __init__(self, message: str, *, correlation: str = "") -> None:
        self.correlation = correlation
        super().__init__(message)


class GardenTransportError(GardenError):
    """MQTT-level failure (connect, subscribe, publish or publish timeout)."""

    def __init__(self, message: str, *, topic: str = "") -> None:
        self.topic = topic
        super().__init__(message)


class GardenCryptoError(GardenError):
    """Encryption or decryption failure."""
