"""Core primitives for wake-it-up."""

from .errors import (
    ActuationError,
    DeviceNotFoundError,
    DirectoryError,
    DirectoryUnavailable,
    DispatchError,
    DuplicateAliasError,
    FormatError,
    InvalidCommandError,
    NetworkCapabilityError,
    NetworkUnavailable,
    TransmitFailed,
    WakeItUpError,
)
from .models import (
    ALL_DEVICES,
    Action,
    ActionOutcome,
    AliasedDevice,
    AllDevices,
    CommandRequest,
    Device,
    DeviceSelector,
    DispatchResult,
    OutcomeStatus,
    Reachability,
    SingleDevice,
    SkipReason,
)
from .protocols import Actuator, DeviceDirectory, OutcomeObserver

__all__ = [
    "ALL_DEVICES",
    "Action",
    "ActionOutcome",
    "ActuationError",
    "Actuator",
    "AliasedDevice",
    "AllDevices",
    "CommandRequest",
    "Device",
    "DeviceDirectory",
    "DeviceNotFoundError",
    "DeviceSelector",
    "DirectoryError",
    "DirectoryUnavailable",
    "DispatchError",
    "DispatchResult",
    "DuplicateAliasError",
    "FormatError",
    "InvalidCommandError",
    "NetworkCapabilityError",
    "NetworkUnavailable",
    "OutcomeObserver",
    "OutcomeStatus",
    "Reachability",
    "SingleDevice",
    "SkipReason",
    "TransmitFailed",
    "WakeItUpError",
]
