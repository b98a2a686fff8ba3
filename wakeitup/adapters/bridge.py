"""MQTT command surface: alias payloads in, human-readable outcomes out."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol

from .. import constants
from ..config import MQTTConfig
from ..core.errors import DispatchError, InvalidCommandError
from ..core.models import (
    ALL_DEVICES,
    Action,
    ActionOutcome,
    AliasedDevice,
    CommandRequest,
    DeviceSelector,
    DispatchResult,
    OutcomeStatus,
)
from ..dispatcher import CommandDispatcher

LOGGER = logging.getLogger(__name__)

ORIGIN = "mqtt"


class MQTTBridgeClient(Protocol):
    def subscribe(self, topic: str, qos: int = 1) -> None: ...

    def unsubscribe(self, topic: str) -> None: ...

    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None: ...

    def set_message_handler(self, handler): ...

    def register_connect_handler(self, handler) -> None: ...


def selector_for_alias(alias: str) -> DeviceSelector:
    """Map an MQTT payload to a selector; ``"all"`` means every device."""

    if alias == constants.ALL_DEVICES_KEY:
        return ALL_DEVICES
    return AliasedDevice(alias)


class MQTTCommandBridge:
    """Subscribes to the wol/sol topics and reports results on info/error."""

    def __init__(
        self,
        config: MQTTConfig,
        dispatcher: CommandDispatcher,
        mqtt: MQTTBridgeClient,
    ) -> None:
        self._config = config
        self._dispatcher = dispatcher
        self._mqtt = mqtt
        self._actions: Dict[str, Action] = {
            config.wol_topic: Action.WAKE,
            config.sol_topic: Action.SLEEP,
        }
        self._started = False
        mqtt.register_connect_handler(self._on_reconnect)

    @property
    def topics(self) -> list[str]:
        return list(self._actions)

    def start(self) -> None:
        if self._started:
            return
        self._mqtt.set_message_handler(self.handle_message)
        self._subscribe()
        self._dispatcher.add_observer(self._on_sweep_outcome)
        self._started = True
        LOGGER.info("MQTT command bridge listening on %s", ", ".join(self.topics))

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self._dispatcher.remove_observer(self._on_sweep_outcome)
        self._mqtt.set_message_handler(None)
        for topic in self.topics:
            try:
                self._mqtt.unsubscribe(topic)
            except Exception as exc:
                LOGGER.debug("Unsubscribe from %s failed: %s", topic, exc)

    async def handle_message(self, topic: str, payload: bytes) -> None:
        action = self._actions.get(topic)
        if action is None:
            LOGGER.debug("Ignoring message on unexpected topic %s", topic)
            return

        try:
            alias = payload.decode("utf-8").strip()
        except UnicodeDecodeError:
            self._publish_error("Device alias is not valid UTF-8")
            return
        if not alias:
            self._publish_error("Device alias is empty")
            return

        request = CommandRequest(
            selector=selector_for_alias(alias), action=action, origin=ORIGIN
        )
        try:
            result = await self._dispatcher.dispatch(request)
        except InvalidCommandError as exc:
            self._publish_error(str(exc))
            return
        except DispatchError as exc:
            LOGGER.error("MQTT %s for %r failed: %s", action.value, alias, exc)
            self._publish_error("Internal server error")
            return

        self._publish_result(result)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    def _publish_result(self, result: DispatchResult) -> None:
        if result.accepted or result.success:
            self._publish_info(result.describe())
        else:
            self._publish_error(result.describe())

    async def _on_sweep_outcome(
        self, request: CommandRequest, outcome: ActionOutcome
    ) -> None:
        if outcome.status is OutcomeStatus.SUCCESS:
            self._publish_info(outcome.describe())
        elif outcome.status is OutcomeStatus.FAILED:
            self._publish_error(outcome.describe())

    def _publish_info(self, message: str) -> None:
        self._publish(self._config.info_topic, message)

    def _publish_error(self, message: str) -> None:
        self._publish(self._config.error_topic, message)

    def _publish(self, topic: str, message: str) -> None:
        try:
            self._mqtt.publish(topic, message.encode("utf-8"), qos=self._config.qos)
        except Exception as exc:
            LOGGER.warning("Could not publish to %s: %s", topic, exc)

    def _subscribe(self) -> None:
        for topic in self.topics:
            self._mqtt.subscribe(topic, qos=self._config.qos)

    def _on_reconnect(self, rc: Optional[int] = None) -> None:
        if not self._started:
            return
        try:
            self._subscribe()
        except Exception as exc:
            LOGGER.warning("Re-subscribing after reconnect failed: %s", exc)
