import pytest

from conftest import FakeActuator
from wakeitup.core.models import (
    ALL_DEVICES,
    Action,
    ActionOutcome,
    CommandRequest,
    Device,
    SkipReason,
)
from wakeitup.health import ServiceHealth

SWEEP = CommandRequest(ALL_DEVICES, Action.WAKE)


class Sweeps:
    pending_sweeps = 2


@pytest.mark.asyncio
async def test_snapshot_reports_components_and_state():
    health = ServiceHealth()
    health.mark("http", True)
    health.mark("mqtt", False, "connecting")
    health.set_state("active", healthy=True)

    snapshot = await health.snapshot()

    assert snapshot["status"] == "degraded"
    assert snapshot["state"] == "active"
    assert snapshot["components"]["http"]["healthy"] is True
    assert snapshot["components"]["mqtt"]["detail"] == "connecting"
    assert snapshot["icmpAvailable"] is None
    assert "devices" not in snapshot

    health.mark("mqtt", True)
    assert (await health.snapshot())["status"] == "ok"


@pytest.mark.asyncio
async def test_service_not_active_is_degraded():
    health = ServiceHealth()
    health.mark("http", True)

    assert (await health.snapshot())["status"] == "degraded"

    health.set_state("stopping", healthy=False)
    snapshot = await health.snapshot()
    assert snapshot["status"] == "degraded"
    assert snapshot["state"] == "stopping"


@pytest.mark.asyncio
async def test_snapshot_reads_live_figures(directory):
    actuator = FakeActuator()
    health = ServiceHealth()
    health.set_state("active", healthy=True)
    health.attach(directory=directory, dispatcher=Sweeps(), actuator=actuator)

    snapshot = await health.snapshot()

    assert snapshot["devices"] == 3
    assert snapshot["pendingSweeps"] == 2
    assert snapshot["icmpAvailable"] is True
    assert snapshot["status"] == "ok"

    actuator.icmp_available = False
    directory.add("Printer")
    snapshot = await health.snapshot()

    assert snapshot["devices"] == 4
    assert snapshot["status"] == "degraded"


@pytest.mark.asyncio
async def test_failing_devices_follow_sweep_outcomes(devices):
    desktop, nas, laptop = devices
    health = ServiceHealth()

    health.record_outcome(SWEEP, ActionOutcome.failed(desktop, Action.WAKE, "boom"))
    health.record_outcome(SWEEP, ActionOutcome.failed(nas, Action.WAKE, "down"))
    health.record_outcome(
        SWEEP, ActionOutcome.skipped(laptop, Action.WAKE, SkipReason.DISABLED)
    )

    failing = (await health.snapshot())["failingDevices"]
    assert [(f["name"], f["error"]) for f in failing] == [
        ("Desktop", "boom"),
        ("NAS", "down"),
    ]

    health.record_outcome(SWEEP, ActionOutcome.success(desktop, Action.WAKE))

    failing = (await health.snapshot())["failingDevices"]
    assert [f["id"] for f in failing] == ["2"]


@pytest.mark.asyncio
async def test_failing_devices_are_bounded():
    health = ServiceHealth(failure_limit=2)

    for index in range(4):
        device = Device(device_id=str(index), name=f"PC {index}")
        health.record_outcome(SWEEP, ActionOutcome.failed(device, Action.WAKE, "x"))

    failing = (await health.snapshot())["failingDevices"]
    assert [f["id"] for f in failing] == ["2", "3"]
