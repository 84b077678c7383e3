"""Internal MQTT runtime: broker connection, subscription and bounded publishes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, cast

import paho.mqtt.client as mqtt

from pygarden._constants import SUBSCRIBE_TOPIC
from pygarden.config import GardenConfig
from pygarden.exceptions import GardenTransportError


class GardenMqttRuntime:
    """Threaded paho-mqtt runtime that hands inbound messages to an asyncio loop.

    Also implements :class:`pygarden.interfaces.Publisher`: :meth:`publish`
    blocks until the broker accepted the message or the configured
    timeout elapsed.
    """

    def __init__(
        self,
        config: GardenConfig,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[str, bytes], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._loop = loop
        self._on_message = on_message
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def start(self) -> None:
        """Connect to the broker and subscribe to ``garden/module/#``."""
        self.stop()
        host, port = self._config.broker
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s client_id=%s",
            host,
            port,
            self._config.mqtt_client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._config.mqtt_client_id,
        )
        client.enable_logger(self._logger)
        if self._config.mqtt_username:
            self._logger.debug("MQTT connection will be authenticated")
            client.username_pw_set(self._config.mqtt_username, self._config.mqtt_password)
        else:
            self._logger.debug("MQTT connection will be unauthenticated")

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT subscribing topic=%s", SUBSCRIBE_TOPIC)
            c.subscribe(SUBSCRIBE_TOPIC, qos=0)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self._loop.call_soon_threadsafe(self._on_message, msg.topic, bytes(msg.payload))

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.warning("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(host, port, keepalive=self._config.mqtt_keepalive)
        except OSError as exc:
            raise GardenTransportError(f"failed to connect to MQTT broker {host}:{port}: {exc}") from exc
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

    def publish(self, topic: str, payload: bytes, qos: int = 0, retain: bool = False) -> None:
        """Publish and wait up to ``publish_timeout`` seconds for completion.

        Raises
        ------
        GardenTransportError
            Not connected, rejected by the client, or timed out.
        """
        client = self._client
        if client is None:
            raise GardenTransportError("MQTT runtime is not running", topic=topic)

        info = client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise GardenTransportError(
                f"failed to publish message to {topic}: {mqtt.error_string(info.rc)}",
                topic=topic,
            )
        try:
            info.wait_for_publish(timeout=self._config.publish_timeout)
        except (RuntimeError, ValueError) as exc:
            raise GardenTransportError(f"failed to publish message to {topic}: {exc}", topic=topic) from exc
        if not info.is_published():
            raise GardenTransportError(
                f"publish to {topic} timed out after {self._config.publish_timeout}s",
                topic=topic,
            )

        self._logger.debug("Published message to %s (l %d, q %d, r %s)", topic, len(payload), qos, retain)
