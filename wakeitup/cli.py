"""Command-line interface for wake-it-up."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .app import WakeItUpApp
from .config import AppConfig, load_config, save_config
from .core.errors import WakeItUpError
from .core.models import ALL_DEVICES, Action, CommandRequest, OutcomeStatus, SingleDevice
from .core.protocols import Actuator
from .directory import InMemoryDeviceDirectory, JsonDeviceDirectory
from .dispatcher import CommandDispatcher
from .logging import configure_logging
from .network import NetworkActuator

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wake-it-up", description="Wake-on-LAN / Sleep-on-LAN dashboard service"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Start the HTTP API and MQTT bridge")
    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )
    init_parser = subparsers.add_parser(
        "init-config", help="Write the resolved configuration to the config path"
    )
    init_parser.add_argument(
        "--force", action="store_true", help="Overwrite an existing file"
    )
    subparsers.add_parser("devices", help="List the configured devices")

    wake_parser = subparsers.add_parser("wake", help="Send a WOL packet")
    wake_parser.add_argument("device", help="Device id, or 'all'")

    sleep_parser = subparsers.add_parser("sleep", help="Send a SOL packet")
    sleep_parser.add_argument("device", help="Device id")

    status_parser = subparsers.add_parser("status", help="Ping a device once")
    status_parser.add_argument("device", help="Device id")
    status_parser.add_argument(
        "--timeout", type=float, default=None, help="Probe timeout in seconds"
    )

    return parser


async def run_command(
    config: AppConfig,
    action: Action,
    target: str,
    *,
    timeout: Optional[float] = None,
    directory: Optional[InMemoryDeviceDirectory] = None,
    actuator: Optional[Actuator] = None,
) -> int:
    """Dispatch a single command, print its outcome(s) and return an exit code."""

    if directory is None:
        json_directory = JsonDeviceDirectory(config.devices.path)
        json_directory.load()
        directory = json_directory
    dispatcher = CommandDispatcher(
        directory, actuator or NetworkActuator(config.network), config.network
    )

    selector = (
        ALL_DEVICES if target == constants.ALL_DEVICES_KEY else SingleDevice(target)
    )
    result = await dispatcher.dispatch(
        CommandRequest(selector, action, origin="cli"), timeout=timeout
    )

    if result.accepted and result.completion is not None:
        outcomes = await result.completion
        for outcome in outcomes:
            print(outcome.describe())
        failed = [o for o in outcomes if o.status is OutcomeStatus.FAILED]
        return 1 if failed else 0

    print(result.describe())
    return 0 if result.success else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)

    if args.command == "start":
        try:
            WakeItUpApp.start(config)
        except WakeItUpError as exc:
            LOGGER.error("Startup failed: %s", exc)
            return 1
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                if "password" in key or "token" in key:
                    value = "********"
                print(f"{key} = {value}")
            print()
        return 0

    if args.command == "init-config":
        if config.path.exists() and not args.force:
            LOGGER.error("%s already exists; pass --force to overwrite", config.path)
            return 1
        save_config(config)
        print(f"Configuration written to {config.path!s}")
        return 0

    configure_logging("WARNING", log_path=config.logging.path)

    if args.command == "devices":
        directory = JsonDeviceDirectory(config.devices.path)
        try:
            directory.load()
        except WakeItUpError as exc:
            LOGGER.error("%s", exc)
            return 1
        for device in asyncio.run(directory.list_all()):
            flags = []
            if device.disabled:
                flags.append("disabled")
            if device.supports_sol:
                flags.append("sol")
            if device.mqtt_alias:
                flags.append(f"alias={device.mqtt_alias}")
            print(
                f"{device.device_id}  {device.name:<20} {device.mac or '-':<17} "
                f"{device.ip or '-':<15} {' '.join(flags)}"
            )
        return 0

    actions = {"wake": Action.WAKE, "sleep": Action.SLEEP, "status": Action.STATUS}
    if args.command in actions:
        try:
            return asyncio.run(
                run_command(
                    config,
                    actions[args.command],
                    args.device,
                    timeout=getattr(args, "timeout", None),
                )
            )
        except WakeItUpError as exc:
            LOGGER.error("%s failed: %s", args.command, exc)
            return 1

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
