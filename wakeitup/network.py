"""Raw network actions: magic-packet broadcasts and ICMP echo probes."""

from __future__ import annotations

import asyncio
import ipaddress
import itertools
import logging
import os
import socket
import struct
from typing import Callable, Optional

from .config import NetworkConfig
from .core.errors import NetworkCapabilityError, TransmitFailed
from .core.models import Reachability
from .mac import MacAddress, format_mac

LOGGER = logging.getLogger(__name__)

ICMP_ECHO_REQUEST = 8
ICMP_ECHO_REPLY = 0
_PROBE_PAYLOAD = b"wake-it-up-probe"

SocketFactory = Callable[[int, int, int], socket.socket]


def build_magic_packet(mac: MacAddress) -> bytes:
    """Build a Wake-on-LAN magic packet.

    Format: 6 bytes of 0xFF followed by the target MAC address repeated 16 times.
    """

    return b"\xff" * 6 + bytes(mac.octets) * 16


def icmp_checksum(data: bytes) -> int:
    """RFC 1071 ones' complement checksum."""

    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack(f"!{len(data) // 2}H", data))
    total = (total >> 16) + (total & 0xFFFF)
    total += total >> 16
    return ~total & 0xFFFF


def build_echo_request(identifier: int, sequence: int, payload: bytes = _PROBE_PAYLOAD) -> bytes:
    header = struct.pack("!BBHHH", ICMP_ECHO_REQUEST, 0, 0, identifier, sequence)
    checksum = icmp_checksum(header + payload)
    header = struct.pack("!BBHHH", ICMP_ECHO_REQUEST, 0, checksum, identifier, sequence)
    return header + payload


def is_echo_reply(
    packet: bytes, sequence: int, identifier: Optional[int] = None
) -> bool:
    """Check whether ``packet`` answers the echo request ``sequence``.

    Raw sockets (and datagram sockets on some platforms) deliver the IPv4
    header in front of the ICMP message; it is stripped first. ``identifier``
    is None for Linux datagram sockets, where the kernel rewrites it.
    """

    if len(packet) >= 20 and packet[0] >> 4 == 4:
        header_length = (packet[0] & 0x0F) * 4
        packet = packet[header_length:]
    if len(packet) < 8:
        return False
    icmp_type, _code, _checksum, reply_id, reply_seq = struct.unpack(
        "!BBHHH", packet[:8]
    )
    if icmp_type != ICMP_ECHO_REPLY or reply_seq != sequence:
        return False
    return identifier is None or reply_id == identifier


class NetworkActuator:
    """Sends magic packets and ICMP probes on behalf of the dispatcher."""

    def __init__(
        self,
        config: NetworkConfig,
        *,
        socket_factory: SocketFactory = socket.socket,
    ) -> None:
        self._config = config
        self._socket_factory = socket_factory
        self._icmp_type: Optional[int] = None
        self._identifier = os.getpid() & 0xFFFF
        self._sequence = itertools.count(1)

    @property
    def icmp_available(self) -> bool:
        return self._icmp_type is not None

    def check_capabilities(self) -> None:
        """Open (and close) the sockets every later action depends on.

        Raises:
            NetworkCapabilityError: If broadcasting is not permitted, or if
                ``require_icmp`` is set and no ICMP socket can be opened.
        """

        try:
            with self._socket_factory(socket.AF_INET, socket.SOCK_DGRAM, 0) as sock:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
                if self._config.interface:
                    sock.bind((self._config.interface, 0))
        except OSError as exc:
            raise NetworkCapabilityError(
                f"Cannot open a broadcast UDP socket: {exc}"
            ) from exc

        try:
            sock = self._open_icmp_socket()
        except NetworkCapabilityError:
            if self._config.require_icmp:
                raise
            LOGGER.warning("ICMP unavailable; status probes will fail until it is")
        else:
            sock.close()
            LOGGER.info(
                "ICMP probes use %s sockets",
                "raw" if self._icmp_type == socket.SOCK_RAW else "datagram",
            )

    async def wake(self, mac: MacAddress) -> None:
        """Broadcast the magic packet for ``mac``. Success means sent, not woken."""

        packet = build_magic_packet(mac)
        target = (self._config.broadcast_address, self._config.wol_port)
        loop = asyncio.get_running_loop()
        try:
            with self._socket_factory(socket.AF_INET, socket.SOCK_DGRAM, 0) as sock:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
                sock.setblocking(False)
                if self._config.interface:
                    sock.bind((self._config.interface, 0))
                await loop.sock_sendto(sock, packet, target)
        except OSError as exc:
            raise TransmitFailed(
                f"Could not send magic packet to {format_mac(mac)}: {exc}"
            ) from exc

        LOGGER.debug(
            "Magic packet for %s sent via %s:%s", format_mac(mac), *target
        )

    async def probe(self, host: str, timeout: float) -> Reachability:
        """Send a single echo request to ``host`` and wait up to ``timeout``.

        Every non-reply outcome (timeout, unresolvable host, ICMP error) is
        reported as DOWN. Only a failure to open the ICMP socket raises.
        """

        sock = self._open_icmp_socket()
        sequence = next(self._sequence) & 0xFFFF
        try:
            await asyncio.wait_for(self._echo(sock, host, sequence), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.debug("Probe of %s timed out after %.2fs", host, timeout)
            return Reachability.DOWN
        except OSError as exc:
            LOGGER.debug("Probe of %s failed: %s", host, exc)
            return Reachability.DOWN
        finally:
            sock.close()
        return Reachability.UP

    def _open_icmp_socket(self) -> socket.socket:
        candidates = (
            [self._icmp_type]
            if self._icmp_type is not None
            else [socket.SOCK_DGRAM, socket.SOCK_RAW]
        )
        last_error: Optional[OSError] = None
        for sock_type in candidates:
            try:
                sock = self._socket_factory(
                    socket.AF_INET, sock_type, socket.IPPROTO_ICMP
                )
            except OSError as exc:
                last_error = exc
                continue
            sock.setblocking(False)
            self._icmp_type = sock_type
            return sock
        raise NetworkCapabilityError(
            "Cannot open an ICMP socket (unprivileged ping disabled and no "
            f"CAP_NET_RAW): {last_error}"
        )

    @staticmethod
    async def _resolve(host: str) -> str:
        try:
            return str(ipaddress.IPv4Address(host))
        except ValueError:
            pass
        # Name lookups run in the loop executor and cannot be cancelled; a
        # timed-out probe leaves the lookup to finish in the background.
        infos = await asyncio.get_running_loop().getaddrinfo(
            host, None, family=socket.AF_INET
        )
        return infos[0][4][0]

    async def _echo(self, sock: socket.socket, host: str, sequence: int) -> None:
        loop = asyncio.get_running_loop()
        address = await self._resolve(host)

        raw = self._icmp_type == socket.SOCK_RAW
        identifier = self._identifier if raw else None
        request = build_echo_request(self._identifier, sequence)
        await loop.sock_sendto(sock, request, (address, 0))

        while True:
            packet, source = await loop.sock_recvfrom(sock, 1024)
            if raw and source[0] != address:
                continue
            if is_echo_reply(packet, sequence, identifier):
                return
