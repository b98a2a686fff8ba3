"""Tests for the MQTT adapter."""

import asyncio
from types import SimpleNamespace

import pytest
import pytest_asyncio

from wakeitup.adapters import MQTTClient, MQTTConnectionError
from wakeitup.config import MQTTConfig

import paho.mqtt.client as mqtt


class FakeMqttClient:
    """Minimal fake paho-mqtt client for testing."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        events: dict,
        *,
        rc_connect: int = 0,
        rc_disconnect: int = 0,
        publish_rc: int = mqtt.MQTT_ERR_SUCCESS,
        subscribe_rc: int = mqtt.MQTT_ERR_SUCCESS,
        **kwargs,
    ):
        self._loop = loop
        self._events = events
        self._rc_connect = rc_connect
        self._rc_disconnect = rc_disconnect
        self._publish_rc = publish_rc
        self._subscribe_rc = subscribe_rc
        events["client_id"] = kwargs.get("client_id")

        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None

    # paho interface -------------------------------------------------
    def enable_logger(self, logger):
        self._events.setdefault("logger_enabled", True)

    def username_pw_set(self, username, password=None):
        self._events["auth"] = (username, password)

    def connect_async(self, host, port, keepalive):
        self._events["connect_args"] = (host, port, keepalive)
        if self.on_connect:
            self._loop.call_soon(
                self.on_connect, self, None, None, self._rc_connect, None
            )

    def loop_start(self):
        self._events["loop_start"] = self._events.get("loop_start", 0) + 1

    def loop_stop(self):
        self._events["loop_stop"] = self._events.get("loop_stop", 0) + 1

    def disconnect(self):
        self._events["disconnect_called"] = True
        if self.on_disconnect:
            self._loop.call_soon(
                self.on_disconnect, self, None, self._rc_disconnect, None
            )

    def publish(self, topic, payload, qos=0, retain=False):
        self._events.setdefault("published", []).append((topic, payload, qos, retain))
        return SimpleNamespace(rc=self._publish_rc)

    def subscribe(self, topic, qos=0):
        self._events.setdefault("subscribed", []).append((topic, qos))
        return self._subscribe_rc, 1

    def unsubscribe(self, topic):
        self._events.setdefault("unsubscribed", []).append(topic)
        return mqtt.MQTT_ERR_SUCCESS, 2


def _install_fake(monkeypatch, events: dict, **options) -> None:
    loop = asyncio.get_running_loop()

    def factory(*args, **kwargs):
        return FakeMqttClient(loop, events, *args, **options, **kwargs)

    monkeypatch.setattr("wakeitup.adapters.mqtt.mqtt.Client", factory)


def _config(**overrides) -> MQTTConfig:
    values = dict(broker_host="broker.lan", broker_port=1883, client_id="wake-it-up-test")
    values.update(overrides)
    return MQTTConfig(**values)


@pytest_asyncio.fixture
async def mqtt_client(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events)

    client = MQTTClient(_config(username="home", password="secret"))
    await client.connect()

    yield client, events

    await client.disconnect()


@pytest.mark.asyncio
async def test_connect_configures_client(mqtt_client):
    client, events = mqtt_client

    assert events["connect_args"] == ("broker.lan", 1883, 60)
    assert events["auth"] == ("home", "secret")
    assert events["client_id"] == "wake-it-up-test"
    assert events["loop_start"] == 1


@pytest.mark.asyncio
async def test_publish_delegates_to_client(mqtt_client):
    client, events = mqtt_client

    client.publish("wakeitup/info", b"WOL sent", qos=1)

    assert events["published"] == [("wakeitup/info", b"WOL sent", 1, False)]


@pytest.mark.asyncio
async def test_subscribe_and_unsubscribe(mqtt_client):
    client, events = mqtt_client

    client.subscribe("wakeitup/wol", qos=2)
    client.unsubscribe("wakeitup/wol")

    assert events["subscribed"] == [("wakeitup/wol", 2)]
    assert events["unsubscribed"] == ["wakeitup/wol"]


def test_publish_requires_connection():
    client = MQTTClient(_config())

    with pytest.raises(RuntimeError):
        client.publish("wakeitup/info", b"x")


@pytest.mark.asyncio
async def test_message_handler_dispatches_async(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events)

    client = MQTTClient(_config())
    message_event = asyncio.Event()

    async def handler(topic: str, payload: bytes) -> None:
        events["handled"] = (topic, payload)
        message_event.set()

    client.set_message_handler(handler)
    await client.connect()

    message = SimpleNamespace(topic="wakeitup/wol", payload=b"desktop")
    client._on_message(None, None, message)  # type: ignore[arg-type]

    await asyncio.wait_for(message_event.wait(), timeout=1.0)
    await client.disconnect()

    assert events["handled"] == ("wakeitup/wol", b"desktop")


@pytest.mark.asyncio
async def test_publish_failure_raises(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, publish_rc=mqtt.MQTT_ERR_NO_CONN)

    client = MQTTClient(_config())
    await client.connect()

    with pytest.raises(MQTTConnectionError):
        client.publish("wakeitup/info", b"payload")

    await client.disconnect()


@pytest.mark.asyncio
async def test_connect_and_disconnect_handlers_invoked(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, rc_disconnect=1)

    client = MQTTClient(_config())
    connected = asyncio.Event()
    disconnected = asyncio.Event()

    def _on_connect(rc: int) -> None:
        events["connect_rc"] = rc
        connected.set()

    def _on_disconnect(rc: int) -> None:
        events["disconnect_rc"] = rc
        disconnected.set()

    client.register_connect_handler(_on_connect)
    client.register_disconnect_handler(_on_disconnect)

    await client.connect()
    await asyncio.wait_for(connected.wait(), timeout=1.0)
    await client.disconnect()
    await asyncio.wait_for(disconnected.wait(), timeout=1.0)

    assert events["connect_rc"] == 0
    assert events["disconnect_rc"] == 1


@pytest.mark.asyncio
async def test_connect_failure_raises(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, rc_connect=5)

    client = MQTTClient(_config())

    with pytest.raises(MQTTConnectionError):
        await client.connect()
    assert events["loop_stop"] == 1


@pytest.mark.asyncio
async def test_message_handler_failure_is_logged(monkeypatch, caplog):
    events: dict = {}
    _install_fake(monkeypatch, events)

    client = MQTTClient(_config())
    handled = asyncio.Event()

    async def handler(topic: str, payload: bytes) -> None:
        handled.set()
        raise ValueError("bad payload")

    client.set_message_handler(handler)
    await client.connect()

    with caplog.at_level("ERROR", logger="wakeitup.adapters.mqtt"):
        client._on_message(None, None, SimpleNamespace(topic="t", payload=b""))
        await asyncio.wait_for(handled.wait(), timeout=1.0)
        for _ in range(5):
            await asyncio.sleep(0)
    await client.disconnect()

    failures = [r for r in caplog.records if r.message == "MQTT message handler failed"]
    assert len(failures) == 1
    assert isinstance(failures[0].exc_info[1], ValueError)


@pytest.mark.asyncio
async def test_plain_message_handler_runs_on_loop(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events)

    client = MQTTClient(_config())
    received = asyncio.Event()

    def handler(topic: str, payload: bytes) -> None:
        events["handled"] = (topic, payload)
        received.set()

    client.set_message_handler(handler)
    await client.connect()
    client._on_message(None, None, SimpleNamespace(topic="wakeitup/sol", payload=b"nas"))

    await asyncio.wait_for(received.wait(), timeout=1.0)
    await client.disconnect()

    assert events["handled"] == ("wakeitup/sol", b"nas")


@pytest.mark.asyncio
async def test_broken_connect_listener_does_not_block_others(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events)

    client = MQTTClient(_config())
    calls: list = []

    def broken(rc: int) -> None:
        raise RuntimeError("listener bug")

    client.register_connect_handler(broken)
    client.register_connect_handler(calls.append)

    await client.connect()
    await client.disconnect()

    assert calls == [0]
