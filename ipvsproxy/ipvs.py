"""IPVS service and destination records and helpers for their flags."""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass, field
from typing import Optional, Union

PERSISTENT_FLAG = 0x0001
HASHED_FLAG = 0x0002
ONE_PACKET_FLAG = 0x0004
SCHED1_FLAG = 0x0008
SCHED2_FLAG = 0x0010
SCHED3_FLAG = 0x0020

FULL_NETMASK = 0xFFFFFFFF
_UINT32 = 0xFFFFFFFF

ROUND_ROBIN = "rr"
LEAST_CONNECTION = "lc"
DESTINATION_HASHING = "dh"
SOURCE_HASHING = "sh"
MAGLEV_HASHING = "mh"

TCP_PROTOCOL = "tcp"
UDP_PROTOCOL = "udp"
NONE_PROTOCOL = "none"

IPPROTO_TCP = 6
IPPROTO_UDP = 17

_PROTOCOL_NUMBERS = {TCP_PROTOCOL: IPPROTO_TCP, UDP_PROTOCOL: IPPROTO_UDP}
_PROTOCOL_NAMES = {number: name for name, number in _PROTOCOL_NUMBERS.items()}

_FLAG_LABELS = (
    (PERSISTENT_FLAG, "[persistent port]"),
    (HASHED_FLAG, "[hashed entry]"),
    (ONE_PACKET_FLAG, "[one-packet scheduling]"),
    (SCHED1_FLAG, "[flag-1(fallback)]"),
    (SCHED2_FLAG, "[flag-2(port)]"),
    (SCHED3_FLAG, "[flag-3]"),
)

Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def _to_address(value) -> Optional[Address]:
    if value is None or isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    return ipaddress.ip_address(value)


@dataclass(frozen=True)
class SchedFlags:
    """The three IPVS scheduler flags."""

    flag1: bool = False
    flag2: bool = False
    flag3: bool = False

    def any(self) -> bool:
        return self.flag1 or self.flag2 or self.flag3


@dataclass
class IpvsStats:
    """Traffic counters reported for an IPVS service."""

    connections: int = 0
    packets_in: int = 0
    packets_out: int = 0
    bytes_in: int = 0
    bytes_out: int = 0
    cps: int = 0
    pps_in: int = 0
    pps_out: int = 0
    bps_in: int = 0
    bps_out: int = 0


@dataclass(eq=False)
class IpvsService:
    """A virtual service, addressed either by VIP/protocol/port or by firewall mark."""

    address: Optional[Address] = None
    protocol: int = 0
    port: int = 0
    fwmark: int = 0
    sched_name: str = ROUND_ROBIN
    flags: int = 0
    timeout: int = 0
    netmask: int = 0
    address_family: int = socket.AF_INET
    stats: IpvsStats = field(default_factory=IpvsStats)

    def __post_init__(self) -> None:
        self.address = _to_address(self.address)

    def __str__(self) -> str:
        return service_string(self)


@dataclass
class IpvsDestination:
    """A real server behind a virtual service."""

    address: Optional[Address] = None
    port: int = 0
    weight: int = 1
    address_family: int = socket.AF_INET

    def __post_init__(self) -> None:
        self.address = _to_address(self.address)

    def __str__(self) -> str:
        return destination_string(self)


def protocol_number(protocol: str) -> int:
    """Map a service protocol name to its IP protocol number, 0 if unknown."""
    return _PROTOCOL_NUMBERS.get(protocol.lower(), 0)


def protocol_name(number: int) -> str:
    """Map an IP protocol number to a service protocol name, "none" if unknown."""
    return _PROTOCOL_NAMES.get(number, NONE_PROTOCOL)


def _format_address(address: Optional[Address]) -> str:
    return "<nil>" if address is None else str(address)


def service_string(service: IpvsService) -> str:
    """Render an IPVS service for logs."""
    flags = "".join(label for bit, label in _FLAG_LABELS if service.flags & bit)
    if service.fwmark != 0:
        return f"FWMark:{service.fwmark} (Flags: {flags})"
    protocol = protocol_name(service.protocol)
    return f"{protocol}:{_format_address(service.address)}:{service.port} (Flags: {flags})"


def destination_string(destination: IpvsDestination) -> str:
    """Render an IPVS destination for logs."""
    return (
        f"{_format_address(destination.address)}:{destination.port} "
        f"(Weight: {destination.weight})"
    )


def set_persistence(service: IpvsService, persistent: bool, timeout: int) -> None:
    """Turn session persistence on or off for a service."""
    if persistent:
        service.flags |= PERSISTENT_FLAG
        service.netmask |= FULL_NETMASK
        service.timeout = timeout & _UINT32
    else:
        service.flags &= ~PERSISTENT_FLAG
        service.netmask &= ~FULL_NETMASK
        service.timeout = 0


def set_sched_flags(service: IpvsService, flags: SchedFlags) -> None:
    """Apply scheduler flags to a service, keeping a netmask set by persistence."""
    for enabled, bit in (
        (flags.flag1, SCHED1_FLAG),
        (flags.flag2, SCHED2_FLAG),
        (flags.flag3, SCHED3_FLAG),
    ):
        if enabled:
            service.flags |= bit
        else:
            service.flags &= ~bit

    if service.netmask & FULL_NETMASK or flags.any():
        service.netmask |= FULL_NETMASK
    else:
        service.netmask &= ~FULL_NETMASK


def sched_flags_changed(service: IpvsService, flags: SchedFlags) -> bool:
    """Whether the service's scheduler flags differ from the wanted ones."""
    return any(
        enabled != bool(service.flags & bit)
        for enabled, bit in (
            (flags.flag1, SCHED1_FLAG),
            (flags.flag2, SCHED2_FLAG),
            (flags.flag3, SCHED3_FLAG),
        )
    )