"""Main application entry-point for wake-it-up."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from enum import Enum
from typing import Optional

from .adapters import ApiServer, MQTTClient, MQTTCommandBridge, MQTTConnectionError
from .config import AppConfig, load_config
from .core.errors import DirectoryUnavailable, NetworkCapabilityError
from .core.protocols import Actuator
from .directory import InMemoryDeviceDirectory, JsonDeviceDirectory
from .dispatcher import CommandDispatcher
from .health import ServiceHealth
from .logging import configure_logging
from .network import NetworkActuator

LOGGER = logging.getLogger(__name__)


class ServiceState(str, Enum):
    STARTING = "starting"
    ACTIVE = "active"
    DEGRADED = "degraded"
    STOPPING = "stopping"


class WakeItUpApp:
    """Coordinates application startup and shutdown.

    Wires the device directory, the network actuator and the dispatcher
    together, then exposes the dispatcher over HTTP and, when enabled, MQTT.
    The directory and actuator can be injected for testing.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        directory: Optional[InMemoryDeviceDirectory] = None,
        actuator: Optional[Actuator] = None,
    ) -> None:
        self._config = config or load_config()
        self._directory = directory
        self._actuator = actuator
        self._dispatcher: Optional[CommandDispatcher] = None
        self._api: Optional[ApiServer] = None
        self._mqtt_client: Optional[MQTTClient] = None
        self._bridge: Optional[MQTTCommandBridge] = None
        self._health = ServiceHealth()
        self._shutdown_event: Optional[asyncio.Event] = None
        self._state = ServiceState.STARTING

    @property
    def health(self) -> ServiceHealth:
        return self._health

    @property
    def dispatcher(self) -> Optional[CommandDispatcher]:
        return self._dispatcher

    @property
    def state(self) -> ServiceState:
        return self._state

    @classmethod
    def start(cls, config: Optional[AppConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("wake-it-up received shutdown signal")

    async def run(self) -> None:
        """Start every service and block until a shutdown is requested."""

        self._shutdown_event = asyncio.Event()
        LOGGER.info("wake-it-up starting with config: %s", self._config.path)

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(signum, self.request_shutdown)

        try:
            await self.start_services()
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("wake-it-up received shutdown signal")
            raise
        finally:
            await self.stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def start_services(self) -> None:
        """Bring up the dispatcher and its command surfaces.

        Raises:
            NetworkCapabilityError: If magic packets (or required ICMP probes)
                cannot be sent from this host.
            DirectoryUnavailable: If the device file cannot be loaded.
        """

        self._transition(ServiceState.STARTING, detail="initialising")

        if self._actuator is None:
            actuator = NetworkActuator(self._config.network)
            try:
                actuator.check_capabilities()
            except NetworkCapabilityError as exc:
                LOGGER.error("Network capability check failed: %s", exc)
                self._health.mark("network", False, str(exc))
                raise
            self._actuator = actuator
        self._health.mark("network", True, None)
        self._health.attach(actuator=self._actuator)

        if self._directory is None:
            directory = JsonDeviceDirectory(self._config.devices.path)
            try:
                directory.load()
            except DirectoryUnavailable as exc:
                LOGGER.error("%s", exc)
                self._health.mark("directory", False, str(exc))
                raise
            self._directory = directory
        self._health.mark("directory", True, None)

        self._dispatcher = CommandDispatcher(
            self._directory, self._actuator, self._config.network
        )
        self._dispatcher.add_observer(self._health.record_outcome)
        self._health.attach(directory=self._directory, dispatcher=self._dispatcher)

        self._api = ApiServer(
            self._config.server, self._dispatcher, self._directory, self._health
        )
        await self._api.start()
        self._health.mark("http", True, None)

        mqtt_ready = await self._start_mqtt()
        if mqtt_ready:
            self._transition(ServiceState.ACTIVE, detail="runtime ready")
        else:
            self._transition(ServiceState.DEGRADED, detail="mqtt unavailable")

    async def stop_services(self) -> None:
        self._transition(ServiceState.STOPPING, detail="shutdown requested")

        if self._bridge is not None:
            self._bridge.stop()
            self._bridge = None

        if self._mqtt_client is not None:
            await self._mqtt_client.disconnect()
            self._mqtt_client = None
            self._health.mark("mqtt", False, "shutdown")

        if self._api is not None:
            await self._api.stop()
            self._api = None
            self._health.mark("http", False, "shutdown")

        if self._dispatcher is not None:
            await self._dispatcher.aclose()

    async def _start_mqtt(self) -> bool:
        mqtt_config = self._config.mqtt
        if not mqtt_config.enabled:
            return True

        self._health.mark("mqtt", False, "connecting")
        client = MQTTClient(mqtt_config)
        client.register_disconnect_handler(self._on_mqtt_disconnect)
        client.register_connect_handler(self._on_mqtt_connect)
        try:
            await client.connect()
        except MQTTConnectionError as exc:
            LOGGER.error("MQTT connection failed: %s", exc)
            self._health.mark("mqtt", False, str(exc))
            return False

        self._mqtt_client = client
        self._bridge = MQTTCommandBridge(mqtt_config, self._dispatcher, client)
        self._bridge.start()
        self._health.mark("mqtt", True, None)
        return True

    def _on_mqtt_connect(self, rc: int) -> None:
        self._health.mark("mqtt", True, None)

    def _on_mqtt_disconnect(self, rc: int) -> None:
        if self._state is ServiceState.STOPPING:
            return
        LOGGER.warning("MQTT connection lost (rc=%s); paho will retry", rc)
        self._health.mark("mqtt", False, f"disconnected (rc={rc})")

    def _transition(
        self, state: ServiceState, *, detail: Optional[str] = None
    ) -> None:
        previous = self._state
        self._state = state
        if previous is not state:
            LOGGER.info(
                "Service state transition %s -> %s (%s)",
                previous.value,
                state.value,
                detail or state.value,
            )
        self._health.set_state(state.value, healthy=state is ServiceState.ACTIVE)
