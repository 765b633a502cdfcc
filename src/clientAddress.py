"""
clientAddress.py — Validated IP address value type.

Every address that enters the resolution chain or the classifier goes through
IpAddress.parse() first. Anything that does not parse as an IPv4/IPv6 literal
comes back as None and is simply dropped, so malformed header values never
reach the decision logic.

"Public" here means "not in PRIVATE_RANGES". The table is
narrower than ipaddress.is_global: documentation and shared-address ranges
(203.0.113.0/24, 100.64.0.0/10, ...) count as public, the same way a web
server's "no private / no reserved range" validation filter treats them.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union


# ─────────────────────────────────────────────────────────────────────────────
#  Private / reserved ranges
# ─────────────────────────────────────────────────────────────────────────────

PRIVATE_RANGES = [
    # RFC 1918
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    # Reserved IPv4
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("240.0.0.0/4"),
    # IPv6 unique-local, link-local, loopback, unspecified, v4-mapped
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("::ffff:0:0/96"),
]

LOOPBACK_DEFAULT = "127.0.0.1"

_Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


# ─────────────────────────────────────────────────────────────────────────────
#  Value type
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class IpAddress:
    """A syntactically valid IPv4 or IPv6 address."""
    text:    str
    address: _Address = field(repr=False, compare=False)

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["IpAddress"]:
        """Return an IpAddress for a valid literal, None for anything else."""
        if value is None:
            return None
        candidate = str(value).strip()
        if not candidate:
            return None
        try:
            addr = ipaddress.ip_address(candidate)
        except ValueError:
            return None
        return cls(text=candidate, address=addr)

    @property
    def is_v4(self) -> bool:
        return self.address.version == 4

    @property
    def is_public(self) -> bool:
        return not any(self.address in net for net in PRIVATE_RANGES
                       if net.version == self.address.version)

    @property
    def is_loopback_or_unspecified(self) -> bool:
        return self.address.is_loopback or self.address.is_unspecified

    def __str__(self) -> str:
        return self.text


# ─────────────────────────────────────────────────────────────────────────────
#  Helpers
# ─────────────────────────────────────────────────────────────────────────────

def parse_ip_list(raw: Optional[str]) -> List[IpAddress]:
    """Split a comma-separated header value into valid addresses, in order."""
    if not raw:
        return []
    parsed = (IpAddress.parse(part) for part in raw.split(","))
    return [ip for ip in parsed if ip is not None]


def prefer_ipv4(addresses: Iterable[IpAddress]) -> List[IpAddress]:
    """Return the IPv4 entries if there are any, otherwise the IPv6 entries."""
    v4: List[IpAddress] = []
    v6: List[IpAddress] = []
    for ip in addresses:
        (v4 if ip.is_v4 else v6).append(ip)
    return v4 if v4 else v6


def is_valid_ip(value: Optional[str]) -> bool:
    return IpAddress.parse(value) is not None


def is_public_ip(value: Optional[str]) -> bool:
    ip = IpAddress.parse(value)
    return ip is not None and ip.is_public
