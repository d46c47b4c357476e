"""
Host probers for network discovery.

Each prober covers one stage of the per-host pipeline:
- ICMP: reachability (privilege gated)
- Identity: ARP MAC resolution and reverse DNS
- TCP connect: open ports from the rule's port set
- Banner: service and version from open ports
"""

from .base import HostEvidence, Prober
from .identity import ARPProber, IdentityProber, ReverseDNSProber
from .ping import PingProber, can_use_raw_socket
from .ports import PortProber, ports_to_scan
from .services import ServiceProber, parse_service, parse_version

__all__ = [
    "HostEvidence",
    "Prober",
    "ARPProber",
    "IdentityProber",
    "ReverseDNSProber",
    "PingProber",
    "can_use_raw_socket",
    "PortProber",
    "ports_to_scan",
    "ServiceProber",
    "parse_service",
    "parse_version",
]
