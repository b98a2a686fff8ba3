"""MAC address parsing and the Sleep-on-LAN byte reversal."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .core.errors import FormatError

_MAC_PATTERN = re.compile(r"[0-9A-Fa-f]{2}(?::[0-9A-Fa-f]{2}){5}")


@dataclass(frozen=True, slots=True)
class MacAddress:
    """Six raw octets. ``str()`` yields the canonical lowercase form."""

    octets: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.octets, (bytes, bytearray)) or len(self.octets) != 6:
            raise FormatError(self.octets)

    def __str__(self) -> str:
        return format_mac(self)


def parse_mac(value: str) -> MacAddress:
    """Parse ``XX:XX:XX:XX:XX:XX`` (any case) into a :class:`MacAddress`.

    Raises:
        FormatError: For anything else, including other separators.
    """

    if not isinstance(value, str) or not _MAC_PATTERN.fullmatch(value):
        raise FormatError(value)
    return MacAddress(bytes.fromhex(value.replace(":", "")))


def reverse_for_sol(mac: MacAddress) -> MacAddress:
    """Return the byte-reversed address that Sleep-on-LAN listeners expect."""

    return MacAddress(bytes(reversed(mac.octets)))


def format_mac(mac: MacAddress) -> str:
    return ":".join(f"{octet:02x}" for octet in mac.octets)


def normalize_mac(value: str) -> str:
    """Validate ``value`` and return its canonical lowercase spelling."""

    return format_mac(parse_mac(value))
