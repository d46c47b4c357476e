"""
Confidence scoring and passive OS guessing.

The OS guess is purely port/service-pattern based; no packet-stack
fingerprinting is done.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from ._types import ServiceInfo

logger = logging.getLogger(__name__)

WINDOWS_PORTS = frozenset({135, 139, 445, 3389})
LINUX_PORTS = frozenset({22, 111, 2049})
UNIX_PORTS = frozenset({22, 111})

UNKNOWN_OS = "Unknown"

BASE_CONFIDENCE = 50
MAX_CONFIDENCE = 100
MAC_WEIGHT = 20
HOSTNAME_WEIGHT = 15
OPEN_PORTS_WEIGHT = 10
OS_GUESS_WEIGHT = 5


@dataclass(frozen=True)
class OSGuess:
    """Best-effort operating system guess."""
    os: str = UNKNOWN_OS
    family: str = UNKNOWN_OS

    @property
    def is_known(self) -> bool:
        return self.family != UNKNOWN_OS


def guess_os(open_ports: Iterable[int], services: Iterable[ServiceInfo] = ()) -> OSGuess:
    """
    Guess the OS from open ports and identified services.

    Windows ports without Linux ports => Windows; Linux ports without
    Windows ports => Linux; the narrower Unix set alone => Unix-like.
    An SSH service only fills in a guess that is still unknown.
    """
    port_set = set(open_ports)
    has_windows = bool(port_set & WINDOWS_PORTS)
    has_linux = bool(port_set & LINUX_PORTS)
    has_unix = bool(port_set & UNIX_PORTS)

    guess = OSGuess()
    if has_windows and not has_linux:
        guess = OSGuess("Windows", "Windows")
    elif has_linux and not has_windows:
        guess = OSGuess("Linux", "Unix")
    elif has_unix:
        guess = OSGuess("Unix-like", "Unix")

    if not guess.is_known and any(svc.service == "SSH" for svc in services):
        guess = OSGuess("Linux/Unix", "Unix")

    return guess


def calculate_confidence(
    mac_address: Optional[str],
    hostname: Optional[str],
    open_ports: list[int],
    os_guess: Optional[str],
) -> int:
    """
    Score how much corroborating evidence a host produced.

    Starts at 50 and adds 20 for a MAC, 15 for a hostname, 10 for any
    open port and 5 for any OS guess (including "Unknown", which
    means detection ran), capped at 100.
    """
    score = BASE_CONFIDENCE
    if mac_address:
        score += MAC_WEIGHT
    if hostname:
        score += HOSTNAME_WEIGHT
    if open_ports:
        score += OPEN_PORTS_WEIGHT
    if os_guess:
        score += OS_GUESS_WEIGHT
    return min(score, MAX_CONFIDENCE)
