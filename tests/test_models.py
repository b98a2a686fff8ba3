from wakeitup.core.models import (
    ALL_DEVICES,
    Action,
    ActionOutcome,
    CommandRequest,
    Device,
    DispatchResult,
    Reachability,
    SingleDevice,
    SkipReason,
)

DESKTOP = Device(device_id="1", name="Desktop", mac="aa:bb:cc:dd:ee:ff")


def test_outcome_descriptions():
    assert (
        ActionOutcome.success(DESKTOP, Action.SLEEP).describe()
        == 'SOL sent to device "Desktop"'
    )
    assert (
        ActionOutcome.success(
            DESKTOP, Action.STATUS, reachability=Reachability.DOWN
        ).describe()
        == 'Device "Desktop" is DOWN'
    )
    assert (
        ActionOutcome.failed(DESKTOP, Action.WAKE, OSError("unreachable")).describe()
        == 'Failed to send WOL to device "Desktop": unreachable'
    )
    assert (
        ActionOutcome.skipped(DESKTOP, Action.WAKE, SkipReason.DISABLED).describe()
        == "Device not found"
    )


def test_outcome_as_dict_omits_empty_fields():
    payload = ActionOutcome.skipped(
        DESKTOP, Action.SLEEP, SkipReason.SOL_UNSUPPORTED
    ).as_dict()

    assert payload == {
        "deviceId": "1",
        "deviceName": "Desktop",
        "action": "sleep",
        "status": "skipped",
        "reason": "sol_unsupported",
    }


def test_dispatch_result_not_found():
    request = CommandRequest(SingleDevice("1"), Action.WAKE)

    empty = DispatchResult(request=request)
    disabled = DispatchResult(
        request=request,
        outcomes=(ActionOutcome.skipped(DESKTOP, Action.WAKE, SkipReason.DISABLED),),
    )
    unsupported = DispatchResult(
        request=request,
        outcomes=(
            ActionOutcome.skipped(DESKTOP, Action.SLEEP, SkipReason.SOL_UNSUPPORTED),
        ),
    )

    assert empty.not_found and empty.outcome is None
    assert empty.describe() == "Device not found"
    assert disabled.not_found
    assert not unsupported.not_found


def test_accepted_sweep_description():
    result = DispatchResult(
        request=CommandRequest(ALL_DEVICES, Action.WAKE),
        success=True,
        accepted=True,
    )

    assert not result.not_found
    assert result.describe() == "WOL sent to all devices"
