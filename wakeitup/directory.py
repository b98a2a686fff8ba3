"""Device directory implementations backing the dispatcher."""

from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .core.errors import (
    DeviceNotFoundError,
    DirectoryError,
    DirectoryUnavailable,
    DuplicateAliasError,
)
from .core.models import Device
from .mac import normalize_mac

LOGGER = logging.getLogger(__name__)

_UNSET: Any = object()


def _clean_alias(alias: Optional[str]) -> Optional[str]:
    if alias is None:
        return None
    alias = alias.strip()
    return alias or None


def _clean_mac(mac: Optional[str]) -> Optional[str]:
    if mac is None or not mac.strip():
        return None
    return normalize_mac(mac.strip())


class InMemoryDeviceDirectory:
    """Insertion-ordered device registry with alias uniqueness checks."""

    def __init__(self, devices: Optional[List[Device]] = None) -> None:
        self._devices: Dict[str, Device] = {}
        for device in devices or []:
            self._insert(device)

    async def find_by_id(self, device_id: str) -> Optional[Device]:
        return self._devices.get(device_id)

    async def find_by_alias(self, alias: str) -> Optional[Device]:
        for device in self._devices.values():
            if device.mqtt_alias is not None and device.mqtt_alias == alias:
                return device
        return None

    async def list_all(self) -> List[Device]:
        return list(self._devices.values())

    def __len__(self) -> int:
        return len(self._devices)

    def add(
        self,
        name: str,
        *,
        mac: Optional[str] = None,
        ip: Optional[str] = None,
        supports_sol: bool = False,
        disabled: bool = False,
        mqtt_alias: Optional[str] = None,
    ) -> Device:
        """Register a new device and return it with its assigned id.

        Raises:
            FormatError: If ``mac`` is not a valid MAC address.
            DuplicateAliasError: If ``mqtt_alias`` is used by another device.
            DirectoryUnavailable: If the change cannot be persisted; the
                directory is then left as it was.
        """

        device = Device(
            device_id=uuid.uuid4().hex,
            name=name,
            mac=_clean_mac(mac),
            ip=(ip or "").strip() or None,
            supports_sol=supports_sol,
            disabled=disabled,
            mqtt_alias=_clean_alias(mqtt_alias),
        )
        self._check_alias(device)
        self._commit({**self._devices, device.device_id: device})
        LOGGER.info('Added device "%s" (%s)', device.name, device.device_id)
        return device

    def update(
        self,
        device_id: str,
        *,
        name: Any = _UNSET,
        mac: Any = _UNSET,
        ip: Any = _UNSET,
        supports_sol: Any = _UNSET,
        disabled: Any = _UNSET,
        mqtt_alias: Any = _UNSET,
    ) -> Device:
        """Edit the fields that were passed; others are kept as they are."""

        current = self._devices.get(device_id)
        if current is None:
            raise DeviceNotFoundError(device_id)

        changes: Dict[str, Any] = {}
        if name is not _UNSET:
            changes["name"] = name
        if mac is not _UNSET:
            changes["mac"] = _clean_mac(mac)
        if ip is not _UNSET:
            changes["ip"] = (ip or "").strip() or None
        if supports_sol is not _UNSET:
            changes["supports_sol"] = bool(supports_sol)
        if disabled is not _UNSET:
            changes["disabled"] = bool(disabled)
        if mqtt_alias is not _UNSET:
            changes["mqtt_alias"] = _clean_alias(mqtt_alias)

        updated = replace(current, **changes)
        self._check_alias(updated)
        self._commit({**self._devices, device_id: updated})
        LOGGER.info('Updated device "%s" (%s)', updated.name, device_id)
        return updated

    def remove(self, device_id: str) -> Device:
        devices = dict(self._devices)
        try:
            device = devices.pop(device_id)
        except KeyError:
            raise DeviceNotFoundError(device_id) from None
        self._commit(devices)
        LOGGER.info('Removed device "%s" (%s)', device.name, device_id)
        return device

    def _insert(self, device: Device) -> None:
        if device.mac is not None:
            device = replace(device, mac=normalize_mac(device.mac))
        self._check_alias(device)
        self._devices[device.device_id] = device

    def _check_alias(self, device: Device) -> None:
        if device.mqtt_alias is None:
            return
        for other in self._devices.values():
            if other.device_id != device.device_id and other.mqtt_alias == device.mqtt_alias:
                raise DuplicateAliasError(
                    f"MQTT alias {device.mqtt_alias!r} is already used by "
                    f'"{other.name}"'
                )

    def _commit(self, devices: Dict[str, Device]) -> None:
        """Make ``devices`` the live mapping once an administrative edit is valid."""

        self._devices = devices


class JsonDeviceDirectory(InMemoryDeviceDirectory):
    """Directory persisted to a JSON document of the form ``{"devices": [...]}``."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = path

    def load(self) -> None:
        """(Re)load devices from disk. A missing file means an empty directory.

        Raises:
            DirectoryUnavailable: If the file cannot be read or parsed.
        """

        if not self.path.exists():
            LOGGER.info("Device file %s not found; starting empty", self.path)
            self._devices = {}
            return

        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
            entries = document.get("devices", []) if isinstance(document, Mapping) else None
            if not isinstance(entries, list):
                raise ValueError("expected an object with a 'devices' list")
            loaded = InMemoryDeviceDirectory(
                [Device.from_dict(entry) for entry in entries]
            )
        except (OSError, ValueError, KeyError, TypeError, DirectoryError) as exc:
            raise DirectoryUnavailable(
                f"Cannot load devices from {self.path}: {exc}"
            ) from exc

        self._devices = loaded._devices
        LOGGER.info("Loaded %d devices from %s", len(self._devices), self.path)

    def _commit(self, devices: Dict[str, Device]) -> None:
        self._write(devices)
        super()._commit(devices)

    def _write(self, devices: Dict[str, Device]) -> None:
        payload = {"devices": [device.as_dict() for device in devices.values()]}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as stream:
                json.dump(payload, stream, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise DirectoryUnavailable(
                f"Cannot save devices to {self.path}: {exc}"
            ) from exc
        finally:
            if tmp_path.is_file():
                tmp_path.unlink()
