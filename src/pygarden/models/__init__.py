"""Pydantic models for garden systems and their telemetry."""

from pygarden.models._base import GardenBaseModel
from pygarden.models.system import (
    Announcement,
    GardenConfiguration,
    GardenSystem,
    MeshInfo,
    OTAStatus,
    Reading,
)
from pygarden.models.telemetry import MeshStatistics, WifiNetwork

__all__ = [
    "Announcement",
    "GardenBaseModel",
    "GardenConfiguration",
    "GardenSystem",
    "MeshInfo",
    "MeshStatistics",
    "OTAStatus",
    "Reading",
    "WifiNetwork",
]
