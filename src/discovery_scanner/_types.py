"""
Type definitions for the discovery scanner.

These dataclasses define the domain model shared by the probers, the
orchestrator and the inventory store: the per-network discovery rule,
the running scan record, and the per-host discovered device.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def now_utc() -> datetime:
    """Get current UTC timestamp (replaces deprecated datetime.utcnow())."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a record identifier."""
    return str(uuid.uuid4())


class ScanType(str, Enum):
    """How thorough a scan is."""
    QUICK = "quick"  # ICMP only
    FULL = "full"
    DEEP = "deep"


class PortScanType(str, Enum):
    """Which port set the port prober walks."""
    COMMON = "common"
    FULL = "full"      # downgraded to COMMON, no 1-65535 sweeps
    CUSTOM = "custom"


class ScanStatus(str, Enum):
    """Discovery scan lifecycle status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.FAILED)


class DeviceStatus(str, Enum):
    """Liveness of a discovered device."""
    UNKNOWN = "unknown"
    ONLINE = "online"


# Scan type -> scan depth recorded on the scan
SCAN_DEPTHS = {
    ScanType.QUICK: 1,
    ScanType.FULL: 3,
    ScanType.DEEP: 5,
}
DEFAULT_SCAN_DEPTH = 2


def scan_depth_for(scan_type: ScanType | str) -> int:
    """Convert a scan type to its depth level."""
    try:
        return SCAN_DEPTHS[ScanType(scan_type)]
    except ValueError:
        return DEFAULT_SCAN_DEPTH


# Ports probed when port_scan_type is common (or full)
COMMON_PORTS: tuple[int, ...] = (
    21, 22, 23, 25, 53, 80, 110, 111, 135, 139,
    143, 443, 445, 993, 995, 1723, 3306, 3389, 5900, 8080,
)

# Default service names by port, used when no banner identifies the service
SERVICE_PORTS: dict[int, str] = {
    21: "FTP",
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    80: "HTTP",
    110: "POP3",
    143: "IMAP",
    443: "HTTPS",
    3306: "MySQL",
    3389: "RDP",
    5432: "PostgreSQL",
    5900: "VNC",
    6379: "Redis",
    8080: "HTTP-Alt",
    27017: "MongoDB",
}


@dataclass
class Network:
    """A network subnet owned by the inventory."""
    id: str = field(default_factory=new_id)
    name: str = ""
    subnet: str = ""  # CIDR notation, e.g. "192.168.1.0/24"
    datacenter_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)


@dataclass(frozen=True)
class DiscoveryRule:
    """
    Per-network discovery configuration.

    Immutable for the duration of one scan.
    """
    scan_type: ScanType = ScanType.FULL
    scan_ports: bool = True
    port_scan_type: PortScanType = PortScanType.COMMON
    custom_ports: tuple[int, ...] = ()
    service_detection: bool = True
    os_detection: bool = True
    exclude_ips: tuple[str, ...] = ()
    timeout_seconds: int = 5

    # Stored with the rule but not interpreted by the scanner
    id: str = field(default_factory=new_id)
    network_id: Optional[str] = None
    enabled: bool = True
    scan_interval_hours: int = 24
    max_concurrent_scans: int = 10
    exclude_hosts: tuple[str, ...] = ()

    @property
    def timeout(self) -> float:
        """Per-probe timeout in seconds."""
        return float(self.timeout_seconds)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiscoveryRule":
        """Build a rule from a plain mapping (YAML section, DB row, ...)."""
        kwargs: dict[str, Any] = {}
        if "scan_type" in data:
            kwargs["scan_type"] = ScanType(data["scan_type"])
        if "port_scan_type" in data:
            kwargs["port_scan_type"] = PortScanType(data["port_scan_type"])
        if data.get("custom_ports") is not None:
            kwargs["custom_ports"] = tuple(int(p) for p in data["custom_ports"])
        for key in ("exclude_ips", "exclude_hosts"):
            if data.get(key) is not None:
                kwargs[key] = tuple(str(v) for v in data[key])
        for key in ("scan_ports", "service_detection", "os_detection", "enabled"):
            if key in data:
                kwargs[key] = bool(data[key])
        for key in ("timeout_seconds", "scan_interval_hours", "max_concurrent_scans"):
            if data.get(key) is not None:
                kwargs[key] = int(data[key])
        for key in ("id", "network_id"):
            if data.get(key):
                kwargs[key] = data[key]
        return cls(**kwargs)


@dataclass
class DiscoveryScan:
    """
    Run record for one discovery scan.

    Mutated by the orchestrator only; terminal once status is
    completed or failed.
    """
    id: str = field(default_factory=new_id)
    network_id: str = ""
    status: ScanStatus = ScanStatus.PENDING
    scan_type: ScanType = ScanType.FULL
    scan_depth: int = DEFAULT_SCAN_DEPTH
    total_hosts: int = 0
    scanned_hosts: int = 0
    found_hosts: int = 0
    progress_percent: float = 0.0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class ServiceInfo:
    """A service identified on an open TCP port."""
    port: int
    protocol: str = "tcp"
    banner: str = ""
    service: str = "unknown"
    version: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "port": self.port,
            "protocol": self.protocol,
            "banner": self.banner,
            "service": self.service,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServiceInfo":
        return cls(
            port=int(data["port"]),
            protocol=data.get("protocol", "tcp"),
            banner=data.get("banner", ""),
            service=data.get("service", "unknown"),
            version=data.get("version", ""),
        )


@dataclass(frozen=True)
class DiscoveredDevice:
    """
    Per-host discovery result, keyed by IP address.

    Overwritten on every scan of the same IP (last write wins).
    """
    ip: str
    network_id: str
    id: str = field(default_factory=new_id)
    mac_address: Optional[str] = None
    hostname: Optional[str] = None
    status: DeviceStatus = DeviceStatus.UNKNOWN
    confidence: int = 50
    os_guess: Optional[str] = None
    os_family: Optional[str] = None
    open_ports: list[int] = field(default_factory=list)
    services: list[ServiceInfo] = field(default_factory=list)
    last_scan_id: Optional[str] = None
    first_seen: datetime = field(default_factory=now_utc)
    last_seen: datetime = field(default_factory=now_utc)
