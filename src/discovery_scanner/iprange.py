"""
Candidate address enumeration and exclusion matching.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable

logger = logging.getLogger(__name__)


# Prefixes up to this length drop their network and broadcast addresses
ENDPOINT_SKIP_MAX_PREFIX = 30


class InvalidSubnetError(ValueError):
    """Raised when a subnet descriptor is not a parseable CIDR."""


def _parse_network(cidr: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
    try:
        # Host bits are allowed ("192.168.1.7/24" scans 192.168.1.0/24)
        return ipaddress.ip_network(cidr.strip(), strict=False)
    except (ValueError, TypeError, AttributeError) as e:
        raise InvalidSubnetError(f"invalid subnet {cidr!r}: {e}") from e


def generate_ip_list(cidr: str) -> list[str]:
    """
    Enumerate every candidate address in a CIDR block.

    Walks from the network address upward. For prefixes up to /30 the
    first and last addresses are skipped; longer prefixes keep both
    endpoints. The cut-off is the same for IPv6, so an IPv6 /120 keeps
    every address.

    Raises:
        InvalidSubnetError: if the CIDR does not parse
    """
    network = _parse_network(cidr)
    last = network.num_addresses - 1
    skip_endpoints = network.prefixlen <= ENDPOINT_SKIP_MAX_PREFIX

    ips = []
    for offset in range(network.num_addresses):
        if skip_endpoints and offset in (0, last):
            continue
        ips.append(str(network.network_address + offset))
    return ips


def is_excluded(ip: str, exclude_list: Iterable[str]) -> bool:
    """
    Check whether an address matches an exclusion list.

    Entries are literal addresses or CIDR blocks. Malformed entries never
    match.
    """
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        address = None

    for entry in exclude_list:
        entry = entry.strip()
        if entry == ip:
            return True
        if address is None or "/" not in entry:
            continue
        try:
            block = ipaddress.ip_network(entry, strict=False)
        except ValueError:
            logger.debug(f"Ignoring malformed exclusion entry: {entry!r}")
            continue
        if address.version == block.version and address in block:
            return True
    return False
