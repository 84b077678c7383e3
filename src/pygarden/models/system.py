"""Garden system state models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, Field, field_validator

from pygarden.models._base import GardenBaseModel, utcnow


class Announcement(GardenBaseModel):
    """Discovery payload published (retained) by a garden system on boot.

    Firmware sends minified keys (``ME``, ``CH``, ...); the full names are
    accepted as well so that stored records round-trip.
    """

    is_emulator: bool = False
    is_mesh: bool = Field(default=False, alias="IsMesh", validation_alias=AliasChoices("ME", "IsMesh"))
    channel: int = Field(default=0, alias="Channel", validation_alias=AliasChoices("CH", "Channel"))
    restart_reason: str = Field(
        default="",
        alias="RestartReason",
        validation_alias=AliasChoices("RR", "RestartReason"),
    )
    core_version: str = Field(
        default="",
        alias="CoreVersion",
        validation_alias=AliasChoices("CV", "CoreVersion"),
    )
    sdk_version: str = Field(
        default="",
        alias="SdkVersion",
        validation_alias=AliasChoices("SV", "SdkVersion"),
    )
    chipset: str = Field(default="", alias="Chipset", validation_alias=AliasChoices("TY", "Chipset"))
    filesystem_used_size: int = Field(
        default=0,
        alias="FilesystemUsedSize",
        validation_alias=AliasChoices("FU", "FilesystemUsedSize"),
    )
    filesystem_total_size: int = Field(
        default=0,
        alias="FilesystemTotalSize",
        validation_alias=AliasChoices("FT", "FilesystemTotalSize"),
    )
    sensors: frozenset[str] = frozenset()

    @field_validator("sensors", mode="before")
    @classmethod
    def _sensor_names(cls, value: Any) -> Any:
        # Stored records carry {"Name": ...} objects, firmware sends bare names.
        if value is None:
            return frozenset()
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(item.get("Name", "") if isinstance(item, dict) else item for item in value)
        return value


class Reading(GardenBaseModel):
    """A single sensor reading. Stamped by the gateway on receipt."""

    error: bool = False
    temperature: float | None = None
    humidity: float | None = None
    created_at: datetime = Field(default_factory=utcnow)


class OTAStatus(GardenBaseModel):
    """Progress report of an over-the-air update."""

    success: bool = False
    message: str = ""


class GardenSystem(GardenBaseModel):
    """Registry record for one garden system."""

    identifier: str
    announcement: Announcement = Field(default_factory=Announcement)
    last_reading: Reading | None = None
    update_status: OTAStatus | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_coordinator(self) -> bool:
        """Coordinators report a radio channel and are not mesh connected."""
        return not self.announcement.is_mesh and self.announcement.channel >= 1


class MeshInfo(GardenBaseModel):
    """What a new node needs to join the mesh."""

    key: str
    controller: str
    channel: int


class GardenConfiguration(GardenBaseModel):
    """Gateway-wide settings kept by the persistence collaborator."""

    mesh_key: str = ""
