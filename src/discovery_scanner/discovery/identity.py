"""
Host identity lookups: link-layer address and reverse DNS name.

Both lookups are best effort. A failure leaves the field empty and is
never reported upward.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Optional

from scapy.layers.l2 import ARP, Ether
from scapy.sendrecv import srp

from .base import Prober

logger = logging.getLogger(__name__)

BROADCAST_MAC = "ff:ff:ff:ff:ff:ff"


class ARPProber(Prober):
    """Resolve a MAC address with an ARP who-has on the local segment."""

    @property
    def name(self) -> str:
        return "arp"

    async def get_mac(self, ip: str, timeout: float) -> Optional[str]:
        """Return the lower-cased MAC for ip, or None."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._who_has, ip, timeout)
        except Exception as e:
            logger.debug(f"ARP lookup for {ip} failed: {e}")
            return None

    def _who_has(self, ip: str, timeout: float) -> Optional[str]:
        """Broadcast the ARP request (blocking)."""
        answered, _ = srp(
            Ether(dst=BROADCAST_MAC) / ARP(pdst=ip),
            timeout=timeout,
            retry=0,
            verbose=0,
        )
        for _, received in answered:
            mac = received[ARP].hwsrc
            if mac and mac.lower() != BROADCAST_MAC:
                return mac.lower()
        return None


class ReverseDNSProber(Prober):
    """PTR lookup for a host address."""

    @property
    def name(self) -> str:
        return "reverse-dns"

    async def get_hostname(self, ip: str, timeout: float) -> Optional[str]:
        """Return the first name the resolver knows for ip, or None."""
        loop = asyncio.get_running_loop()
        try:
            hostname, _, _ = await asyncio.wait_for(
                loop.run_in_executor(None, socket.gethostbyaddr, ip),
                timeout=timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Reverse lookup for {ip} failed: {e}")
            return None
        return hostname.rstrip(".") or None


class IdentityProber:
    """Runs both identity lookups for a host that answered ICMP."""

    def __init__(
        self,
        arp: ARPProber | None = None,
        dns: ReverseDNSProber | None = None,
    ):
        self.arp = arp or ARPProber()
        self.dns = dns or ReverseDNSProber()

    async def identify(
        self, ip: str, timeout: float
    ) -> tuple[Optional[str], Optional[str]]:
        """Return (mac_address, hostname); either may be None."""
        mac = await self.arp.get_mac(ip, timeout)
        hostname = await self.dns.get_hostname(ip, timeout)
        return mac, hostname
