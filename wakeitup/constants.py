"""Constants used across the wake-it-up package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "wake-it-up"
DEFAULT_DATA_DIR = Path.home() / ".config" / APP_NAME
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = DEFAULT_DATA_DIR / DEFAULT_CONFIG_FILENAME
DEFAULT_DEVICES_PATH = DEFAULT_DATA_DIR / "devices.json"

DEFAULT_HTTP_HOST = "0.0.0.0"
DEFAULT_HTTP_PORT = 8080
DEFAULT_PING_INTERVAL_MS = 5000

WOL_PORT = 9
BROADCAST_ADDR = "255.255.255.255"
DEFAULT_PROBE_TIMEOUT_SECONDS = 1.0
DEFAULT_SWEEP_CONCURRENCY = 16

DEFAULT_BROKER_HOST = "localhost"
DEFAULT_BROKER_PORT = 1883
DEFAULT_TOPIC_PREFIX = "wakeitup"

# Payload on the MQTT command topics (and path segment on HTTP) meaning every device.
ALL_DEVICES_KEY = "all"
