"""Protocol definitions for the collaborators of the dispatcher."""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol, Sequence

from .models import ActionOutcome, CommandRequest, Device, Reachability

OutcomeObserver = Callable[[CommandRequest, ActionOutcome], Awaitable[None] | None]


class DeviceDirectory(Protocol):
    """Read-only device lookup used by the dispatcher."""

    async def find_by_id(self, device_id: str) -> Optional[Device]:
        """Return the device with the given id, or None."""
        ...

    async def find_by_alias(self, alias: str) -> Optional[Device]:
        """Return the device whose MQTT alias equals ``alias``, or None."""
        ...

    async def list_all(self) -> Sequence[Device]:
        """Return every device in enumeration order."""
        ...


class Actuator(Protocol):
    """Minimal contract for components that put packets on the wire."""

    @property
    def icmp_available(self) -> bool:
        """Whether status probes can currently open an ICMP socket."""
        ...

    async def wake(self, mac) -> None:
        """Broadcast a magic packet for ``mac``.

        Raises:
            TransmitFailed: If the datagram could not be sent.
        """
        ...

    async def probe(self, host: str, timeout: float) -> Reachability:
        """Send one ICMP echo and report whether a reply arrived in time.

        Raises:
            NetworkCapabilityError: If no ICMP socket can be opened.
        """
        ...
