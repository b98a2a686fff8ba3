"""Error hierarchy for wake-it-up."""

from __future__ import annotations


class WakeItUpError(Exception):
    """Base error for wake-it-up."""


class FormatError(WakeItUpError, ValueError):
    """Raised when a MAC address string is malformed."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Malformed MAC address: {value!r}")
        self.value = value


class ActuationError(WakeItUpError):
    """Base error for network actions."""


class TransmitFailed(ActuationError):
    """Raised when a datagram could not be handed to the network stack."""


class NetworkCapabilityError(ActuationError):
    """Raised when the broadcast or ICMP sockets cannot be opened at all."""


class DispatchError(WakeItUpError):
    """Raised when a command cannot be dispatched as a whole."""


class DirectoryUnavailable(DispatchError):
    """Raised when the device directory itself cannot be read."""


class NetworkUnavailable(DispatchError):
    """Raised when the network layer required by a command is unavailable."""


class InvalidCommandError(WakeItUpError):
    """Raised when a command combines an action with an unsupported selector."""


class DirectoryError(WakeItUpError):
    """Base error for administrative directory edits."""


class DuplicateAliasError(DirectoryError):
    """Raised when an MQTT alias is already taken by another device."""


class DeviceNotFoundError(DirectoryError):
    """Raised when editing or removing an unknown device."""
