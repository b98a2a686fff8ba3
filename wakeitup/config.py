"""Configuration loader for wake-it-up."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants


@dataclass(slots=True)
class ServerConfig:
    host: str = constants.DEFAULT_HTTP_HOST
    port: int = constants.DEFAULT_HTTP_PORT
    api_token: Optional[str] = None
    admin_token: Optional[str] = None
    ping_interval_ms: int = constants.DEFAULT_PING_INTERVAL_MS


@dataclass(slots=True)
class NetworkConfig:
    broadcast_address: str = constants.BROADCAST_ADDR
    wol_port: int = constants.WOL_PORT
    interface: Optional[str] = None  # Source address to bind before broadcasting
    probe_timeout_seconds: float = constants.DEFAULT_PROBE_TIMEOUT_SECONDS
    sweep_concurrency: int = constants.DEFAULT_SWEEP_CONCURRENCY
    require_icmp: bool = True


@dataclass(slots=True)
class DirectoryConfig:
    path: Path = constants.DEFAULT_DEVICES_PATH


@dataclass(slots=True)
class MQTTConfig:
    enabled: bool = False
    broker_host: str = constants.DEFAULT_BROKER_HOST
    broker_port: int = constants.DEFAULT_BROKER_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: str = constants.APP_NAME
    topic_prefix: str = constants.DEFAULT_TOPIC_PREFIX
    qos: int = 1

    def topic(self, name: str) -> str:
        return f"{self.topic_prefix.rstrip('/')}/{name}"

    @property
    def wol_topic(self) -> str:
        return self.topic("wol")

    @property
    def sol_topic(self) -> str:
        return self.topic("sol")

    @property
    def info_topic(self) -> str:
        return self.topic("info")

    @property
    def error_topic(self) -> str:
        return self.topic("error")


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class AppConfig:
    server: ServerConfig
    network: NetworkConfig
    devices: DirectoryConfig
    mqtt: MQTTConfig
    logging: LoggingConfig
    raw: ConfigParser
    path: Path


def _optional(parser: ConfigParser, section: str, option: str) -> Optional[str]:
    value = parser.get(section, option, fallback="").strip()
    return value or None


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "server": {
                "host": constants.DEFAULT_HTTP_HOST,
                "port": str(constants.DEFAULT_HTTP_PORT),
                "ping_interval_ms": str(constants.DEFAULT_PING_INTERVAL_MS),
            },
            "network": {
                "broadcast_address": constants.BROADCAST_ADDR,
                "wol_port": str(constants.WOL_PORT),
                "probe_timeout_seconds": str(constants.DEFAULT_PROBE_TIMEOUT_SECONDS),
                "sweep_concurrency": str(constants.DEFAULT_SWEEP_CONCURRENCY),
                "require_icmp": "true",
            },
            "devices": {
                "path": str(constants.DEFAULT_DEVICES_PATH),
            },
            "mqtt": {
                "enabled": "false",
                "broker_host": constants.DEFAULT_BROKER_HOST,
                "broker_port": str(constants.DEFAULT_BROKER_PORT),
                "client_id": constants.APP_NAME,
                "topic_prefix": constants.DEFAULT_TOPIC_PREFIX,
                "qos": "1",
            },
            "logging": {
                "level": "INFO",
                "log_network": "false",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    broker_host_value = parser.get("mqtt", "broker_host")
    broker_port_value = parser.getint(
        "mqtt", "broker_port", fallback=constants.DEFAULT_BROKER_PORT
    )

    if ":" in broker_host_value:
        host_part, port_part = broker_host_value.rsplit(":", 1)
        try:
            parsed_port = int(port_part)
        except ValueError:
            pass
        else:
            broker_host_value = host_part
            broker_port_value = parsed_port
            parser.set("mqtt", "broker_host", host_part)
            parser.set("mqtt", "broker_port", str(parsed_port))

    server = ServerConfig(
        host=parser.get("server", "host"),
        port=parser.getint("server", "port", fallback=constants.DEFAULT_HTTP_PORT),
        api_token=_optional(parser, "server", "api_token"),
        admin_token=_optional(parser, "server", "admin_token"),
        ping_interval_ms=max(
            500,
            parser.getint(
                "server",
                "ping_interval_ms",
                fallback=constants.DEFAULT_PING_INTERVAL_MS,
            ),
        ),
    )

    default_timeout = constants.DEFAULT_PROBE_TIMEOUT_SECONDS
    try:
        probe_timeout = parser.getfloat(
            "network", "probe_timeout_seconds", fallback=default_timeout
        )
    except ValueError:
        probe_timeout = default_timeout
    if probe_timeout <= 0:
        probe_timeout = default_timeout

    network = NetworkConfig(
        broadcast_address=parser.get("network", "broadcast_address"),
        wol_port=parser.getint("network", "wol_port", fallback=constants.WOL_PORT),
        interface=_optional(parser, "network", "interface"),
        probe_timeout_seconds=probe_timeout,
        sweep_concurrency=max(
            1,
            parser.getint(
                "network",
                "sweep_concurrency",
                fallback=constants.DEFAULT_SWEEP_CONCURRENCY,
            ),
        ),
        require_icmp=parser.getboolean("network", "require_icmp", fallback=True),
    )

    devices = DirectoryConfig(
        path=Path(parser.get("devices", "path")).expanduser(),
    )

    mqtt = MQTTConfig(
        enabled=parser.getboolean("mqtt", "enabled", fallback=False),
        broker_host=broker_host_value,
        broker_port=broker_port_value,
        username=_optional(parser, "mqtt", "username"),
        password=_optional(parser, "mqtt", "password"),
        client_id=parser.get("mqtt", "client_id", fallback=constants.APP_NAME),
        topic_prefix=parser.get(
            "mqtt", "topic_prefix", fallback=constants.DEFAULT_TOPIC_PREFIX
        ),
        qos=min(2, max(0, parser.getint("mqtt", "qos", fallback=1))),
    )

    log_path = _optional(parser, "logging", "path")
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path).expanduser() if log_path else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    return AppConfig(
        server=server,
        network=network,
        devices=devices,
        mqtt=mqtt,
        logging=logging_config,
        raw=parser,
        path=config_path,
    )


def save_config(config: AppConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
