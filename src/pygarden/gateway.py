"""High-level async gateway between the garden fleet and the server."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from pygarden._constants import identifier_to_address
from pygarden._crypto.hashing import generate_mesh_key
from pygarden._mqtt import GardenMqttRuntime
from pygarden.commands import CommandSender
from pygarden.config import GardenConfig
from pygarden.dispatcher import MessageDispatcher
from pygarden.exceptions import GardenConfigError, GardenNotFoundError
from pygarden.interfaces import EventSink, Publisher, SystemStore
from pygarden.models.system import GardenConfiguration, GardenSystem, MeshInfo
from pygarden.ota import build_ota_command
from pygarden.reassembly import FragmentReassembler
from pygarden.registry import SystemRegistry

_logger = logging.getLogger(__name__)

DELETE_EVENT = "delete"


class GardenGateway:
    """Async gateway for garden systems.

    Usage::

        async with GardenGateway(config, on_event=broadcast) as gateway:
            await gateway.send_command("84cca8abcdef", '{"Command":"Scan"}')

    Parameters
    ----------
    config : GardenConfig
        Gateway configuration.
    store : SystemStore or None
        Persistence collaborator. Seeds the registry on start and mirrors
        every change on a background thread. Supplies the mesh key when the
        configuration has none, generating and saving one on first start.
    on_event : callable or None
        ``broadcast(kind, payload)`` sink for real-time consumers.
    publisher : Publisher or None
        Outbound transport override. When given, no broker connection is
        made and inbound messages must be fed through :meth:`handle_message`.
    """

    def __init__(
        self,
        config: GardenConfig,
        *,
        store: SystemStore | None = None,
        on_event: EventSink | None = None,
        publisher: Publisher | None = None,
        registry: SystemRegistry | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._on_event = on_event
        self._registry = registry if registry is not None else SystemRegistry()
        self._reassembler = FragmentReassembler(ttl=config.fragment_ttl)
        self._store_executor: ThreadPoolExecutor | None = None
        self._dispatcher = self._make_dispatcher()
        self._external_publisher = publisher
        self._mqtt_runtime: GardenMqttRuntime | None = None
        self._mesh_key: str | None = config.mesh_key
        self._sender: CommandSender | None = None
        self._sweep_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> GardenGateway:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        """Load persisted systems, connect to the broker and start housekeeping."""
        loop = asyncio.get_running_loop()

        if self._store is not None:
            systems = await asyncio.to_thread(self._store.get_all_systems)
            self._registry.load(systems)
            if not self._mesh_key:
                self._mesh_key = await asyncio.to_thread(self._load_mesh_key, self._store)
            self._store_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="garden-store")
            self._dispatcher = self._make_dispatcher()

        publisher = self._external_publisher
        if publisher is None:
            runtime = GardenMqttRuntime(self._config, loop=loop, on_message=self.handle_message)
            await asyncio.to_thread(runtime.start)
            self._mqtt_runtime = runtime
            publisher = runtime
        self._sender = CommandSender(self._registry, publisher, mesh_key=self._mesh_key)

        if self._config.fragment_ttl is not None:
            self._sweep_task = loop.create_task(self._sweep_loop(self._config.fragment_ttl))

    async def stop(self) -> None:
        """Stop housekeeping, disconnect from the broker and flush store writes."""
        task = self._sweep_task
        self._sweep_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._sender = None
        runtime = self._mqtt_runtime
        self._mqtt_runtime = None
        if runtime is not None:
            await asyncio.to_thread(runtime.stop)

        executor = self._store_executor
        self._store_executor = None
        if executor is not None:
            self._dispatcher = self._make_dispatcher()
            await asyncio.to_thread(executor.shutdown, wait=True)

    def _make_dispatcher(self) -> MessageDispatcher:
        return MessageDispatcher(
            self._registry,
            self._reassembler,
            broadcast=self._on_event,
            store=self._store,
            store_executor=self._store_executor,
        )

    @staticmethod
    def _load_mesh_key(store: SystemStore) -> str:
        configuration = store.get_configuration()
        if configuration is not None and configuration.mesh_key:
            return configuration.mesh_key

        _logger.info("No mesh key stored, generating one (first run)")
        configuration = (configuration or GardenConfiguration()).model_copy(update={"mesh_key": generate_mesh_key()})
        store.update_configuration(configuration)
        return configuration.mesh_key

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self._reassembler.sweep()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def handle_message(self, topic: str, payload: bytes) -> None:
        """Process one inbound MQTT message."""
        self._dispatcher.handle(topic, payload)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def registry(self) -> SystemRegistry:
        return self._registry

    def get_system(self, identifier: str) -> GardenSystem:
        system = self._registry.get(identifier)
        if system is None:
            raise GardenNotFoundError(f"unable to find system with id {identifier}", identifier=identifier)
        return system

    def get_systems(self) -> list[GardenSystem]:
        return self._registry.get_all()

    def mesh_info(self) -> MeshInfo:
        """Mesh key plus the coordinator's MAC address and radio channel."""
        if not self._mesh_key:
            raise GardenConfigError("no mesh key configured")
        coordinator = self._registry.get_coordinator()
        if coordinator is None:
            raise GardenNotFoundError("no unique mesh coordinator is registered")
        return MeshInfo(
            key=self._mesh_key,
            controller=identifier_to_address(coordinator.identifier),
            channel=coordinator.announcement.channel,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _require_sender(self) -> CommandSender:
        if self._sender is None:
            raise GardenConfigError("gateway is not started")
        return self._sender

    async def send_command(
        self,
        identifier: str,
        command: str | bytes,
        *,
        encrypt: bool = False,
        key: bytes | None = None,
    ) -> None:
        """Send a command to one system, or to every mesh node via ``FFFFFFFFFFFF``.

        See :meth:`pygarden.commands.CommandSender.send_command` for errors.
        """
        sender = self._require_sender()
        await asyncio.to_thread(sender.send_command, identifier, command, encrypt=encrypt, key=key)

    def build_ota_command(self, identifier: str, ssid: str, psk: str, host: str) -> bytes:
        """Build the ``Update`` command for a registered system."""
        return build_ota_command(
            self.get_system(identifier),
            ssid=ssid,
            psk=psk,
            host=host,
            firmware_dir=self._config.firmware_dir,
        )

    async def start_update(self, identifier: str, ssid: str, psk: str, host: str) -> None:
        """Build the ``Update`` command and send it encrypted."""
        payload = await asyncio.to_thread(self.build_ota_command, identifier, ssid, psk, host)
        await self.send_command(identifier, payload, encrypt=True)

    async def delete_system(self, identifier: str) -> bool:
        """Forget a system. Returns whether it was registered."""
        existed = self._registry.delete(identifier)
        if self._store_executor is not None and self._store is not None:
            # Runs after every mirror write already queued.
            await asyncio.wrap_future(self._store_executor.submit(self._store.delete_system, identifier))
        elif self._store is not None:
            await asyncio.to_thread(self._store.delete_system, identifier)
        if existed and self._on_event is not None:
            self._on_event(DELETE_EVENT, {"Identifier": identifier})
        return existed
