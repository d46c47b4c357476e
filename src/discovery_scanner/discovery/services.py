"""
Banner-based service detection.

Connects to each open port, nudges text protocols that wait for the
client to speak first, and reads at most one line. The banner is matched
against known protocol tokens; the port table is the fallback.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .._types import SERVICE_PORTS, ServiceInfo
from .base import Prober

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 3.0
DEFAULT_READ_TIMEOUT = 2.0

# Ports whose servers stay silent until they see a request
HTTP_PROBE_PORTS = frozenset({80, 8080})
HTTP_PROBE = b"GET / HTTP/1.0\r\n\r\n"

# Banner token -> service name, checked in order
BANNER_TOKENS: tuple[tuple[str, str], ...] = (
    ("SSH", "SSH"),
    ("FTP", "FTP"),
    ("HTTP", "HTTP"),
    ("SMTP", "SMTP"),
    ("MYSQL", "MySQL"),
    ("POSTGRESQL", "PostgreSQL"),
    ("IMAP", "IMAP"),
    ("POP3", "POP3"),
    ("REDIS", "Redis"),
    ("RFB", "VNC"),
)

UNKNOWN_SERVICE = "unknown"


def parse_service(banner: str, port: int) -> str:
    """Identify the service from a banner, falling back to the port table."""
    banner_upper = banner.upper()
    for token, service in BANNER_TOKENS:
        if token in banner_upper:
            return service
    return SERVICE_PORTS.get(port, UNKNOWN_SERVICE)


def parse_version(banner: str) -> str:
    """
    Pull a version out of a banner.

    Returns the word following the first word that carries a version
    marker ("v" or "Version"), or "" if there is none.
    """
    parts = banner.split()
    for i, part in enumerate(parts[:-1]):
        if "v" in part or "Version" in part:
            return parts[i + 1]
    return ""


class ServiceProber(Prober):
    """Sequential banner grab over a host's open ports."""

    def __init__(
        self,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
    ):
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout

    @property
    def name(self) -> str:
        return "banner"

    async def detect_services(self, ip: str, ports: list[int]) -> list[ServiceInfo]:
        """Probe each port in turn; unreachable ports are left out."""
        services = []
        for port in ports:
            service = await self.probe_service(ip, port)
            if service is not None:
                services.append(service)
        return services

    async def probe_service(self, ip: str, port: int) -> Optional[ServiceInfo]:
        """Identify the service on one port, or None if it refused us."""
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(ip, port), timeout=self.connect_timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Service probe connect to {ip}:{port} failed: {e}")
            return None

        try:
            banner = await self._read_banner(reader, writer, port)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

        if banner:
            return ServiceInfo(
                port=port,
                banner=banner,
                service=parse_service(banner, port),
                version=parse_version(banner),
            )
        return ServiceInfo(port=port, service=SERVICE_PORTS.get(port, UNKNOWN_SERVICE))

    async def _read_banner(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        port: int,
    ) -> str:
        """Read one newline-terminated line within the read deadline."""
        try:
            if port in HTTP_PROBE_PORTS:
                writer.write(HTTP_PROBE)
                await writer.drain()
            line = await asyncio.wait_for(
                reader.readuntil(b"\n"), timeout=self.read_timeout
            )
        except (
            OSError,
            asyncio.TimeoutError,
            asyncio.IncompleteReadError,
            asyncio.LimitOverrunError,
        ) as e:
            logger.debug(f"No banner from port {port}: {e!r}")
            return ""
        return line.decode("utf-8", errors="replace").strip()
