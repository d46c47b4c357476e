"""
ICMP reachability probing.

Sending ICMP echo needs a raw socket. Privilege is checked once when the
prober is created; without it every probe reports "not alive" and the
pipeline falls back to port evidence.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket

from scapy.layers.inet import ICMP, IP
from scapy.sendrecv import sr1

from .base import Prober

logger = logging.getLogger(__name__)

ICMP_ECHO_REPLY = 0


def can_use_raw_socket() -> bool:
    """Check whether this process may open a raw ICMP socket."""
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        return True
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP)
    except (PermissionError, OSError):
        return False
    sock.close()
    return True


class PingProber(Prober):
    """Single ICMP echo per host."""

    def __init__(self, privileged: bool | None = None):
        """
        Initialize ping prober.

        Args:
            privileged: Override raw socket detection (None to detect)
        """
        self.privileged = can_use_raw_socket() if privileged is None else privileged
        if not self.privileged:
            logger.warning(
                "No raw socket access; ICMP probes disabled, "
                "liveness will rely on port scanning"
            )

    @property
    def name(self) -> str:
        return "icmp"

    async def ping(self, ip: str, timeout: float) -> bool:
        """
        Send one echo request and wait up to timeout for the reply.

        Returns False when unprivileged, on timeout, or on any send error.
        """
        if not self.privileged:
            return False

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._echo, ip, timeout)
        except Exception as e:
            logger.debug(f"ICMP probe to {ip} failed: {e}")
            return False

    def _echo(self, ip: str, timeout: float) -> bool:
        """Run the echo exchange (blocking)."""
        reply = sr1(IP(dst=ip) / ICMP(), timeout=timeout, verbose=0)
        if reply is None or not reply.haslayer(ICMP):
            return False
        return reply[ICMP].type == ICMP_ECHO_REPLY
