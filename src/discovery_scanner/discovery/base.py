"""
Base classes for host probers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from .._types import (
    DeviceStatus,
    DiscoveredDevice,
    ServiceInfo,
    new_id,
    now_utc,
)


@dataclass
class HostEvidence:
    """
    Evidence gathered for one host as it moves through the probe stages.

    Every stage fills in what it can and leaves the rest untouched. The
    orchestrator turns it into an immutable DiscoveredDevice once the
    last stage has run.
    """
    ip: str
    network_id: str
    scan_id: str
    status: DeviceStatus = DeviceStatus.UNKNOWN
    mac_address: Optional[str] = None
    hostname: Optional[str] = None
    open_ports: list[int] = field(default_factory=list)
    services: list[ServiceInfo] = field(default_factory=list)
    os_guess: Optional[str] = None
    os_family: Optional[str] = None

    def finalize(self, confidence: int) -> DiscoveredDevice:
        """Freeze the evidence into a device record."""
        now = now_utc()
        return DiscoveredDevice(
            id=new_id(),
            ip=self.ip,
            network_id=self.network_id,
            mac_address=self.mac_address,
            hostname=self.hostname,
            status=self.status,
            confidence=confidence,
            os_guess=self.os_guess,
            os_family=self.os_family,
            open_ports=sorted(self.open_ports),
            services=list(self.services),
            last_scan_id=self.scan_id,
            first_seen=now,
            last_seen=now,
        )


class Prober(ABC):
    """Base class for a single probe stage."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of this prober."""
        pass
