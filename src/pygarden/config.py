"""Gateway configuration for pygarden."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pygarden._constants import DEFAULT_FRAGMENT_TTL, DEFAULT_MQTT_PORT
from pygarden.exceptions import GardenConfigError


def _env_float_or_none(value: str) -> float | None:
    normalized = value.strip().lower()
    if normalized in {"", "0", "none", "off", "never"}:
        return None
    return float(normalized)


def parse_broker(raw_broker: str) -> tuple[str, int]:
    """Split ``ADDRESS:PORT`` (optionally prefixed with a scheme) into host and port."""
    value = raw_broker.strip()
    if not value:
        raise GardenConfigError("MQTT host is required")

    if "://" in value:
        value = value.split("://", 1)[1]
    if "/" in value:
        value = value.split("/", 1)[0]

    host, _, maybe_port = value.rpartition(":")
    if host and maybe_port.isdigit():
        return host, int(maybe_port)
    return value, DEFAULT_MQTT_PORT


@dataclasses.dataclass(frozen=True)
class GardenConfig:
    """Gateway configuration.

    Parameters
    ----------
    mqtt_host : str
        Broker address as ``ADDRESS:PORT``. The port defaults to 1883.
    mqtt_username : str or None
        Broker username. The connection is anonymous when unset.
    mqtt_password : str or None
        Broker password.
    mqtt_client_id : str
        Client id used on the broker.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    publish_timeout : float
        Seconds an outbound publish may take before it is reported as a
        transport failure.
    mesh_key : str or None
        Shared mesh secret. The command encryption key is derived from it.
    firmware_dir : str
        Directory holding ``<board>/firmware.bin`` for OTA updates.
    fragment_ttl : float or None
        Seconds an incomplete mesh packet buffer is kept before it is
        evicted. ``None`` keeps buffers forever.
    """

    mqtt_host: str
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_client_id: str = "garden-backend"
    mqtt_keepalive: int = 30
    publish_timeout: float = 2.0
    mesh_key: str | None = None
    firmware_dir: str = "data/firmware"
    fragment_ttl: float | None = DEFAULT_FRAGMENT_TTL

    @property
    def broker(self) -> tuple[str, int]:
        """Broker ``(host, port)`` pair."""
        return parse_broker(self.mqtt_host)

    @classmethod
    def from_env(cls, **overrides: Any) -> GardenConfig:
        """Create configuration from ``GARDEN_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "GARDEN_MQTT_HOST": "mqtt_host",
            "GARDEN_MQTT_USERNAME": "mqtt_username",
            "GARDEN_MQTT_PASSWORD": "mqtt_password",
            "GARDEN_MQTT_CLIENT_ID": "mqtt_client_id",
            "GARDEN_MESH_KEY": "mesh_key",
            "GARDEN_FIRMWARE_DIR": "firmware_dir",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        keepalive_env = env.get("GARDEN_MQTT_KEEPALIVE")
        if keepalive_env is not None and "mqtt_keepalive" not in overrides:
            config_kwargs["mqtt_keepalive"] = int(keepalive_env)

        timeout_env = env.get("GARDEN_PUBLISH_TIMEOUT")
        if timeout_env is not None and "publish_timeout" not in overrides:
            config_kwargs["publish_timeout"] = float(timeout_env)

        ttl_env = env.get("GARDEN_FRAGMENT_TTL")
        if ttl_env is not None and "fragment_ttl" not in overrides:
            config_kwargs["fragment_ttl"] = _env_float_or_none(ttl_env)

        config_kwargs.update(overrides)

        if not config_kwargs.get("mqtt_host"):
            raise GardenConfigError("GARDEN_MQTT_HOST is required")

        return cls(**config_kwargs)
