"""
TCP connect port probing.

One connection attempt per port, all in flight at once. A single host's
port set is a few dozen entries at most, so no extra bound is applied.
"""

from __future__ import annotations

import asyncio
import logging

from .._types import COMMON_PORTS, DiscoveryRule, PortScanType
from .base import Prober

logger = logging.getLogger(__name__)


def ports_to_scan(rule: DiscoveryRule) -> list[int]:
    """
    Determine which ports to probe for a rule.

    "full" is downgraded to the common set; "custom" with no ports falls
    back to the common set as well.
    """
    if not rule.scan_ports:
        return []

    if rule.port_scan_type == PortScanType.CUSTOM and rule.custom_ports:
        return sorted(set(rule.custom_ports))
    return list(COMMON_PORTS)


class PortProber(Prober):
    """Concurrent TCP connect scan of a single host."""

    @property
    def name(self) -> str:
        return "tcp-connect"

    async def scan_ports(self, ip: str, rule: DiscoveryRule) -> list[int]:
        """
        Probe the rule's port set on ip.

        Returns the sorted list of ports that accepted a connection
        within the rule timeout.
        """
        ports = ports_to_scan(rule)
        if not ports:
            return []

        results = await asyncio.gather(
            *(self.is_open(ip, port, rule.timeout) for port in ports)
        )
        open_ports = [port for port, is_open in zip(ports, results) if is_open]
        if open_ports:
            logger.debug(f"{ip}: open ports {open_ports}")
        return open_ports

    async def is_open(self, ip: str, port: int, timeout: float) -> bool:
        """Try one connection; the socket is closed straight away."""
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(ip, port), timeout=timeout
            )
        except (OSError, asyncio.TimeoutError):
            return False

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True
