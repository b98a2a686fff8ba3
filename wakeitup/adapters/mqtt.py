"""paho-mqtt client wrapper used by the MQTT command bridge."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Awaitable, Callable, Dict, List, Optional

import paho.mqtt.client as mqtt

from ..config import MQTTConfig

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], Awaitable[None] | None]
ConnectionListener = Callable[[int], None]


class MQTTConnectionError(RuntimeError):
    """Raised when the broker cannot be reached or refuses an operation."""


def _check(rc: int, operation: str) -> None:
    if rc != mqtt.MQTT_ERR_SUCCESS:
        raise MQTTConnectionError(f"{operation} failed with rc={rc}")


class MQTTClient:
    """Runs paho's network thread and hands its callbacks to the event loop.

    Connection and disconnection listeners, as well as the message handler,
    always run on the loop thread.
    """

    def __init__(self, config: MQTTConfig, *, keepalive: int = 60) -> None:
        self.config = config
        self.keepalive = keepalive

        self._paho: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connack: Optional[asyncio.Future[int]] = None
        self._closed: Optional[asyncio.Event] = None
        self._message_handler: Optional[MessageHandler] = None
        self._listeners: Dict[str, List[ConnectionListener]] = {
            "connect": [],
            "disconnect": [],
        }

    async def connect(self, timeout: float = 30.0) -> None:
        """Connect and wait for the broker's CONNACK.

        Raises:
            MQTTConnectionError: On timeout or when the broker refuses us.
        """

        loop = asyncio.get_running_loop()
        self._loop = loop
        self._connack = loop.create_future()
        self._closed = asyncio.Event()

        client = self._build_client()
        LOGGER.info(
            "Connecting to MQTT broker %s:%s",
            self.config.broker_host,
            self.config.broker_port,
        )
        client.connect_async(
            self.config.broker_host, self.config.broker_port, self.keepalive
        )
        client.loop_start()

        try:
            rc: Optional[int] = await asyncio.wait_for(self._connack, timeout)
        except asyncio.TimeoutError:
            rc = None
        if rc != 0:
            client.loop_stop()
            if rc is None:
                raise MQTTConnectionError("Timed out connecting to MQTT broker")
            raise MQTTConnectionError(f"MQTT broker rejected connection (rc={rc})")
        self._paho = client

    async def disconnect(self, timeout: float = 5.0) -> None:
        client, self._paho = self._paho, None
        if client is None:
            return

        client.disconnect()
        try:
            if self._closed is not None:
                await asyncio.wait_for(self._closed.wait(), timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Timed out waiting for MQTT disconnect acknowledgement")
        finally:
            client.loop_stop()

    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None:
        info = self._require().publish(topic, payload, qos=qos, retain=retain)
        _check(info.rc, "Publish")

    def subscribe(self, topic: str, qos: int = 1) -> None:
        rc, _mid = self._require().subscribe(topic, qos=qos)
        _check(rc, "Subscribe")

    def unsubscribe(self, topic: str) -> None:
        rc, _mid = self._require().unsubscribe(topic)
        _check(rc, "Unsubscribe")

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self._message_handler = handler

    def register_connect_handler(self, handler: ConnectionListener) -> None:
        self._listeners["connect"].append(handler)

    def register_disconnect_handler(self, handler: ConnectionListener) -> None:
        self._listeners["disconnect"].append(handler)

    def _require(self) -> mqtt.Client:
        if self._paho is None:
            raise RuntimeError("MQTT client not connected")
        return self._paho

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(client_id=self.config.client_id)
        client.enable_logger(LOGGER)
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    # ------------------------------------------------------------------
    # paho thread -> event loop
    # ------------------------------------------------------------------
    def _to_loop(self, callback: Callable[..., None], *args) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(callback, *args)

    def _on_connect(self, client, userdata, flags, rc, properties=None) -> None:
        rc = int(rc)
        if rc == 0:
            LOGGER.info("Connected to MQTT broker")
        else:
            LOGGER.error("MQTT connection failed with rc=%s", rc)
        self._to_loop(self._connected, rc)

    def _on_disconnect(self, client, userdata, rc, properties=None) -> None:
        rc = int(rc)
        LOGGER.info("Disconnected from MQTT broker (rc=%s)", rc)
        self._to_loop(self._disconnected, rc)

    def _on_message(self, client, userdata, message: mqtt.MQTTMessage) -> None:
        handler = self._message_handler
        loop = self._loop
        if handler is None or loop is None:
            return
        future = asyncio.run_coroutine_threadsafe(
            self._deliver(handler, message.topic, message.payload), loop
        )
        future.add_done_callback(self._report_handler_failure)

    def _connected(self, rc: int) -> None:
        if self._connack is not None and not self._connack.done():
            self._connack.set_result(rc)
        if rc == 0:
            self._notify("connect", rc)

    def _disconnected(self, rc: int) -> None:
        if self._closed is not None:
            self._closed.set()
        self._notify("disconnect", rc)

    def _notify(self, event: str, rc: int) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener(rc)
            except Exception:
                LOGGER.exception("MQTT %s listener raised an exception", event)

    @staticmethod
    async def _deliver(handler: MessageHandler, topic: str, payload: bytes) -> None:
        result = handler(topic, payload)
        if asyncio.iscoroutine(result):
            await result

    @staticmethod
    def _report_handler_failure(future: concurrent.futures.Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            LOGGER.error("MQTT message handler failed", exc_info=exc)
