"""Telemetry that is logged but not kept in the registry."""

from __future__ import annotations

from pydantic import AliasChoices, Field

from pygarden.models._base import GardenBaseModel


class MeshStatistics(GardenBaseModel):
    """Relay counters reported by a mesh node (minified keys)."""

    total_sent: int = Field(default=0, alias="TotalSent", validation_alias=AliasChoices("SE", "TotalSent"))
    total_received: int = Field(default=0, alias="TotalReceived", validation_alias=AliasChoices("RC", "TotalReceived"))
    dropped_bad_length: int = Field(
        default=0,
        alias="DroppedBadLength",
        validation_alias=AliasChoices("DL", "DroppedBadLength"),
    )
    dropped_invalid_auth: int = Field(
        default=0,
        alias="DroppedInvalidAuth",
        validation_alias=AliasChoices("DA", "DroppedInvalidAuth"),
    )
    total_accepted: int = Field(default=0, alias="TotalAccepted", validation_alias=AliasChoices("AC", "TotalAccepted"))


class WifiNetwork(GardenBaseModel):
    """One entry of a Wi-Fi scan report."""

    known: bool = False
    mac: str = Field(default="", alias="MAC")
    rssi: int = Field(default=0, alias="RSSI")

    @property
    def signal(self) -> int:
        """RSSI flipped positive (0 to ~100, lower is better)."""
        return -1 * self.rssi
