"""
Network Discovery Scanner - finds and fingerprints hosts on a subnet.

Given a network from the inventory, the scanner enumerates its candidate
addresses and runs each one through a staged probe pipeline under a
bounded pool:

    ICMP reachability -> ARP / reverse DNS -> TCP connect -> banners -> OS guess

Results are upserted into the inventory by IP as they are produced, and
the running scan record is reported to the caller at milestones.
"""

__version__ = "1.0.0"

from ._types import (
    DeviceStatus,
    DiscoveredDevice,
    DiscoveryRule,
    DiscoveryScan,
    Network,
    PortScanType,
    ScanStatus,
    ScanType,
    ServiceInfo,
)
from .device_db import DiscoveryDatabase, DiscoveryStorage, NetworkNotFoundError
from .iprange import InvalidSubnetError
from .scanner_service import (
    DiscoveryScanner,
    ScanAbortedError,
    Scanner,
    create_scanner,
    register_scanner,
)

__all__ = [
    "__version__",
    "DeviceStatus",
    "DiscoveredDevice",
    "DiscoveryRule",
    "DiscoveryScan",
    "Network",
    "PortScanType",
    "ScanStatus",
    "ScanType",
    "ServiceInfo",
    "DiscoveryDatabase",
    "DiscoveryStorage",
    "NetworkNotFoundError",
    "InvalidSubnetError",
    "DiscoveryScanner",
    "ScanAbortedError",
    "Scanner",
    "create_scanner",
    "register_scanner",
]
