"""pygarden - Gateway between a garden sensor fleet, its ESP-NOW mesh and MQTT."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pygarden")
except PackageNotFoundError:
    __version__ = "0+local"
from pygarden._constants import BROADCAST_ID
from pygarden.commands import CommandSender, build_mesh_envelope
from pygarden.config import GardenConfig
from pygarden.dispatcher import MessageDispatcher, MessageKind, classify_topic
from pygarden.exceptions import (
    GardenConfigError,
    GardenCryptoError,
    GardenDecodeError,
    GardenError,
    GardenNotFoundError,
    GardenSequenceError,
    GardenTransportError,
    GardenValidationError,
)
from pygarden.gateway import GardenGateway
from pygarden.models import (
    Announcement,
    GardenConfiguration,
    GardenSystem,
    MeshInfo,
    MeshStatistics,
    OTAStatus,
    Reading,
    WifiNetwork,
)
from pygarden.ota import build_ota_command
from pygarden.reassembly import FragmentReassembler
from pygarden.registry import SystemRegistry

__all__ = [
    "__version__",
    "Announcement",
    "BROADCAST_ID",
    "CommandSender",
    "FragmentReassembler",
    "GardenConfig",
    "GardenConfigError",
    "GardenConfiguration",
    "GardenCryptoError",
    "GardenDecodeError",
    "GardenError",
    "GardenGateway",
    "GardenNotFoundError",
    "GardenSequenceError",
    "GardenSystem",
    "GardenTransportError",
    "GardenValidationError",
    "MeshInfo",
    "MeshStatistics",
    "MessageDispatcher",
    "MessageKind",
    "OTAStatus",
    "Reading",
    "SystemRegistry",
    "WifiNetwork",
    "build_mesh_envelope",
    "build_ota_command",
    "classify_topic",
]
