"""Domain models for devices, commands and their outcomes."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union


class Action(str, Enum):
    WAKE = "wake"
    SLEEP = "sleep"
    STATUS = "status"

    @property
    def label(self) -> str:
        return {Action.WAKE: "WOL", Action.SLEEP: "SOL", Action.STATUS: "status"}[self]


class Reachability(str, Enum):
    UP = "UP"
    DOWN = "DOWN"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class SkipReason(str, Enum):
    DISABLED = "disabled"
    SOL_UNSUPPORTED = "sol_unsupported"
    NOT_FOUND = "not_found"

    @property
    def message(self) -> str:
        # Disabled devices read exactly like missing ones to callers.
        if self is SkipReason.SOL_UNSUPPORTED:
            return "Device does not support SOL"
        return "Device not found"


@dataclass(frozen=True, slots=True)
class Device:
    device_id: str
    name: str
    mac: Optional[str] = None
    ip: Optional[str] = None
    supports_sol: bool = False
    disabled: bool = False
    mqtt_alias: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.device_id,
            "name": self.name,
            "mac": self.mac,
            "ip": self.ip,
            "supportsSOL": self.supports_sol,
            "disabled": self.disabled,
            "mqttName": self.mqtt_alias,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Device":
        return cls(
            device_id=str(data["id"]),
            name=str(data.get("name") or ""),
            mac=data.get("mac") or None,
            ip=data.get("ip") or None,
            supports_sol=bool(data.get("supportsSOL", False)),
            disabled=bool(data.get("disabled", False)),
            mqtt_alias=data.get("mqttName") or None,
        )


@dataclass(frozen=True, slots=True)
class SingleDevice:
    """Select one device by its directory id."""

    device_id: str


@dataclass(frozen=True, slots=True)
class AliasedDevice:
    """Select one device by its MQTT alias."""

    alias: str


@dataclass(frozen=True, slots=True)
class AllDevices:
    """Select every device in the directory."""


ALL_DEVICES = AllDevices()

DeviceSelector = Union[SingleDevice, AliasedDevice, AllDevices]


@dataclass(frozen=True, slots=True)
class CommandRequest:
    selector: DeviceSelector
    action: Action
    origin: str = "local"


@dataclass(frozen=True, slots=True)
class ActionOutcome:
    device_id: str
    device_name: str
    action: Action
    status: OutcomeStatus
    skip_reason: Optional[SkipReason] = None
    error: Optional[str] = None
    reachability: Optional[Reachability] = None

    @classmethod
    def success(
        cls,
        device: Device,
        action: Action,
        *,
        reachability: Optional[Reachability] = None,
    ) -> "ActionOutcome":
        return cls(
            device_id=device.device_id,
            device_name=device.name,
            action=action,
            status=OutcomeStatus.SUCCESS,
            reachability=reachability,
        )

    @classmethod
    def skipped(
        cls, device: Device, action: Action, reason: SkipReason
    ) -> "ActionOutcome":
        return cls(
            device_id=device.device_id,
            device_name=device.name,
            action=action,
            status=OutcomeStatus.SKIPPED,
            skip_reason=reason,
        )

    @classmethod
    def failed(
        cls, device: Device, action: Action, error: BaseException | str
    ) -> "ActionOutcome":
        return cls(
            device_id=device.device_id,
            device_name=device.name,
            action=action,
            status=OutcomeStatus.FAILED,
            error=str(error),
        )

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    def describe(self) -> str:
        """Human readable one-liner, as published on MQTT and printed by the CLI."""

        if self.status is OutcomeStatus.SKIPPED:
            return (self.skip_reason or SkipReason.NOT_FOUND).message
        if self.status is OutcomeStatus.FAILED:
            if self.action is Action.STATUS:
                return f'Failed to probe device "{self.device_name}": {self.error}'
            return (
                f'Failed to send {self.action.label} to device '
                f'"{self.device_name}": {self.error}'
            )
        if self.action is Action.STATUS:
            verdict = self.reachability.value if self.reachability else "DOWN"
            return f'Device "{self.device_name}" is {verdict}'
        return f'{self.action.label} sent to device "{self.device_name}"'

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "deviceId": self.device_id,
            "deviceName": self.device_name,
            "action": self.action.value,
            "status": self.status.value,
        }
        if self.skip_reason is not None:
            payload["reason"] = self.skip_reason.value
        if self.error is not None:
            payload["error"] = self.error
        if self.reachability is not None:
            payload["reachability"] = self.reachability.value
        return payload


@dataclass(slots=True)
class DispatchResult:
    """Aggregated result of one dispatched command.

    ``accepted`` is set for fan-out sweeps: the result is returned before the
    per-device actions finish and ``completion`` resolves to their outcomes
    once every device has been handled.
    """

    request: CommandRequest
    outcomes: Tuple[ActionOutcome, ...] = ()
    success: bool = False
    accepted: bool = False
    completion: Optional["asyncio.Future[List[ActionOutcome]]"] = field(
        default=None, repr=False, compare=False
    )

    @property
    def not_found(self) -> bool:
        """True when a single-device target is absent or disabled."""

        if self.accepted:
            return False
        if not self.outcomes:
            return True
        return self.outcomes[0].skip_reason in (
            SkipReason.DISABLED,
            SkipReason.NOT_FOUND,
        )

    @property
    def outcome(self) -> Optional[ActionOutcome]:
        return self.outcomes[0] if self.outcomes else None

    def describe(self) -> str:
        if self.accepted:
            return f"{self.request.action.label} sent to all devices"
        if not self.outcomes:
            return SkipReason.NOT_FOUND.message
        return self.outcomes[0].describe()
