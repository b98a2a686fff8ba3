"""Adapter modules for the HTTP and MQTT command surfaces."""

from .bridge import MQTTCommandBridge, selector_for_alias
from .http import ApiServer
from .mqtt import MQTTClient, MQTTConnectionError

__all__ = [
    "ApiServer",
    "MQTTClient",
    "MQTTCommandBridge",
    "MQTTConnectionError",
    "selector_for_alias",
]
