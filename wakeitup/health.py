"""Service health: component status plus live dispatcher figures."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from .core.models import ActionOutcome, CommandRequest, OutcomeStatus
from .core.protocols import DeviceDirectory


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _stamp(moment: datetime) -> str:
    return moment.isoformat(timespec="seconds")


class _SweepSource(Protocol):
    @property
    def pending_sweeps(self) -> int: ...


class _IcmpSource(Protocol):
    @property
    def icmp_available(self) -> bool: ...


@dataclass(slots=True)
class ComponentStatus:
    healthy: bool
    detail: Optional[str] = None
    updated_at: datetime = field(default_factory=_now)


@dataclass(slots=True)
class DeviceFailure:
    device_id: str
    device_name: str
    action: str
    error: Optional[str]
    at: datetime = field(default_factory=_now)

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.device_id,
            "name": self.device_name,
            "action": self.action,
            "error": self.error,
            "at": _stamp(self.at),
        }


class ServiceHealth:
    """What ``/healthz`` reports about the running service.

    Components (network, directory, http, mqtt) are marked by the
    application as they start and stop. Device count, pending sweeps and
    ICMP availability are read live from the attached collaborators. As an
    outcome observer, it remembers devices whose last sweep action failed
    until a later sweep succeeds for them.
    """

    def __init__(self, *, failure_limit: int = 20) -> None:
        self._components: Dict[str, ComponentStatus] = {}
        self._state = "starting"
        self._state_healthy = False
        self._failures: "OrderedDict[str, DeviceFailure]" = OrderedDict()
        self._failure_limit = failure_limit
        self._directory: Optional[DeviceDirectory] = None
        self._dispatcher: Optional[_SweepSource] = None
        self._actuator: Optional[_IcmpSource] = None

    def attach(
        self,
        *,
        directory: Optional[DeviceDirectory] = None,
        dispatcher: Optional[_SweepSource] = None,
        actuator: Optional[_IcmpSource] = None,
    ) -> None:
        if directory is not None:
            self._directory = directory
        if dispatcher is not None:
            self._dispatcher = dispatcher
        if actuator is not None:
            self._actuator = actuator

    def mark(self, component: str, healthy: bool, detail: Optional[str] = None) -> None:
        self._components[component] = ComponentStatus(healthy, detail)

    def set_state(self, state: str, *, healthy: bool) -> None:
        self._state = state
        self._state_healthy = healthy

    def record_outcome(self, request: CommandRequest, outcome: ActionOutcome) -> None:
        if outcome.status is OutcomeStatus.FAILED:
            self._failures.pop(outcome.device_id, None)
            self._failures[outcome.device_id] = DeviceFailure(
                outcome.device_id,
                outcome.device_name,
                outcome.action.value,
                outcome.error,
            )
            while len(self._failures) > self._failure_limit:
                self._failures.popitem(last=False)
        elif outcome.status is OutcomeStatus.SUCCESS:
            self._failures.pop(outcome.device_id, None)

    @property
    def icmp_available(self) -> Optional[bool]:
        if self._actuator is None:
            return None
        return self._actuator.icmp_available

    async def snapshot(self) -> Dict[str, object]:
        icmp = self.icmp_available
        healthy = (
            self._state_healthy
            and all(status.healthy for status in self._components.values())
            and icmp is not False
        )

        payload: Dict[str, object] = {
            "status": "ok" if healthy else "degraded",
            "state": self._state,
            "components": {
                name: {
                    "healthy": status.healthy,
                    "detail": status.detail,
                    "updatedAt": _stamp(status.updated_at),
                }
                for name, status in self._components.items()
            },
            "icmpAvailable": icmp,
            "failingDevices": [failure.as_dict() for failure in self._failures.values()],
        }
        if self._directory is not None:
            payload["devices"] = len(await self._directory.list_all())
        if self._dispatcher is not None:
            payload["pendingSweeps"] = self._dispatcher.pending_sweeps
        return payload
