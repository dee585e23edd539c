"""Reporting the host's network interfaces."""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass, field
from typing import Any

import psutil


@dataclass
class Address:
    """One network address of an interface, in CIDR form."""

    addr: str


@dataclass
class InterfaceDetail:
    """Flags, hardware address and addresses of a network interface."""

    flags: str
    hardware_address: str
    addresses: list[Address] = field(default_factory=list)


def _prefix_length(netmask: str | None, max_prefix: int) -> int:
    if not netmask:
        return max_prefix
    try:
        return bin(int(ipaddress.ip_address(netmask))).count("1")
    except ValueError:
        return max_prefix


def _cidr(address: str, netmask: str | None) -> str:
    host = address.split("%", 1)[0]
    ip = ipaddress.ip_address(host)
    prefix = _prefix_length(netmask, ip.max_prefixlen)
    return ipaddress.ip_interface(f"{host}/{prefix}").with_prefixlen


def _flags(stats: Any) -> str:
    if stats is None:
        return ""
    flags = getattr(stats, "flags", None)
    if flags:
        return "|".join(f for f in flags.split(",") if f)
    return "up" if stats.isup else ""


class NetworkReporter:
    """Reports details of the host's network interfaces."""

    def stats(self) -> dict[str, dict[str, InterfaceDetail]]:
        """Return {"interfaces": {name: InterfaceDetail}}."""
        if_addrs = psutil.net_if_addrs()
        if_stats = psutil.net_if_stats()
        interfaces: dict[str, InterfaceDetail] = {}
        for name, addrs in if_addrs.items():
            hardware = ""
            addresses = []
            for entry in addrs:
                if entry.family == psutil.AF_LINK:
                    hardware = hardware or entry.address.replace("-", ":").lower()
                elif entry.family in (socket.AF_INET, socket.AF_INET6):
                    addresses.append(Address(_cidr(entry.address, entry.netmask)))
            interfaces[name] = InterfaceDetail(
                flags=_flags(if_stats.get(name)),
                hardware_address=hardware,
                addresses=addresses,
            )
        return {"interfaces": interfaces}