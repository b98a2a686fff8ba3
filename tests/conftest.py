from typing import Dict, Iterable, List, Optional

import pytest

from wakeitup.config import NetworkConfig
from wakeitup.core.errors import NetworkCapabilityError, TransmitFailed
from wakeitup.core.models import Device, Reachability
from wakeitup.directory import InMemoryDeviceDirectory


class FakeActuator:
    """Records every network action instead of touching sockets."""

    def __init__(
        self,
        *,
        reachability: Reachability = Reachability.UP,
        fail_for: Iterable[str] = (),
    ) -> None:
        self.reachability = reachability
        self.icmp_available = True
        self.fail_for = {mac.lower() for mac in fail_for}
        self.probe_error: Optional[Exception] = None
        self.woken: List[str] = []
        self.probed: List[tuple[str, float]] = []

    async def wake(self, mac) -> None:
        value = str(mac)
        if value in self.fail_for:
            raise TransmitFailed(f"Could not send magic packet to {value}: boom")
        self.woken.append(value)

    async def probe(self, host: str, timeout: float) -> Reachability:
        if self.probe_error is not None:
            raise self.probe_error
        self.probed.append((host, timeout))
        return self.reachability


class StaticDirectory:
    """Directory double that performs no validation at all."""

    def __init__(self, devices: Iterable[Device]) -> None:
        self.devices: Dict[str, Device] = {d.device_id: d for d in devices}

    async def find_by_id(self, device_id: str) -> Optional[Device]:
        return self.devices.get(device_id)

    async def find_by_alias(self, alias: str) -> Optional[Device]:
        for device in self.devices.values():
            if device.mqtt_alias == alias:
                return device
        return None

    async def list_all(self) -> List[Device]:
        return list(self.devices.values())


class BrokenDirectory:
    async def find_by_id(self, device_id: str) -> Optional[Device]:
        raise ConnectionError("store offline")

    async def find_by_alias(self, alias: str) -> Optional[Device]:
        raise ConnectionError("store offline")

    async def list_all(self) -> List[Device]:
        raise ConnectionError("store offline")


@pytest.fixture
def devices() -> List[Device]:
    return [
        Device(
            device_id="1",
            name="Desktop",
            mac="AA:BB:CC:DD:EE:FF",
            ip="192.0.2.10",
            mqtt_alias="desktop",
        ),
        Device(
            device_id="2",
            name="NAS",
            mac="11:22:33:44:55:66",
            ip="192.0.2.20",
            supports_sol=True,
            mqtt_alias="nas",
        ),
        Device(
            device_id="3",
            name="Old laptop",
            mac="00:11:22:33:44:55",
            ip="192.0.2.30",
            supports_sol=True,
            disabled=True,
            mqtt_alias="laptop",
        ),
    ]


@pytest.fixture
def directory(devices) -> InMemoryDeviceDirectory:
    return InMemoryDeviceDirectory(devices)


@pytest.fixture
def actuator() -> FakeActuator:
    return FakeActuator()


@pytest.fixture
def network_config() -> NetworkConfig:
    return NetworkConfig(probe_timeout_seconds=0.2, sweep_concurrency=4)


@pytest.fixture
def icmp_denied():
    return NetworkCapabilityError("Cannot open an ICMP socket: permission denied")
