"""
Discovery Scanner Service - scan orchestration.

Builds the host list for a network, fans the per-host probe pipeline out
under a bounded pool, persists each discovered device, and reports the
running scan record back to the caller.

Per-host failures never fail a scan. Only an unknown network or an
unparseable subnet does.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import signal
import sys
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from ._types import (
    DeviceStatus,
    DiscoveredDevice,
    DiscoveryRule,
    DiscoveryScan,
    ScanStatus,
    ScanType,
    new_id,
    now_utc,
    scan_depth_for,
)
from .classifier import calculate_confidence, guess_os
from .config import ScannerConfig
from .device_db import DiscoveryDatabase, DiscoveryStorage
from .discovery import (
    HostEvidence,
    IdentityProber,
    PingProber,
    PortProber,
    ServiceProber,
)
from .iprange import generate_ip_list, is_excluded

logger = logging.getLogger(__name__)

OnUpdate = Callable[[DiscoveryScan], Union[None, Awaitable[None]]]

DEFAULT_MAX_CONCURRENT_HOSTS = 5
DEFAULT_PROGRESS_REPORT_EVERY = 50


class ScanAbortedError(Exception):
    """Raised when a scan fails before any host was probed."""

    def __init__(self, scan: DiscoveryScan):
        super().__init__(scan.error_message or "scan aborted")
        self.scan = scan


class Scanner(ABC):
    """
    A network discovery implementation.

    Callers depend on this interface only, so an alternate scanner can be
    registered and selected without changing them.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry name of this scanner."""
        pass

    @abstractmethod
    async def scan_network(
        self,
        network_id: str,
        rule: DiscoveryRule,
        on_update: Optional[OnUpdate] = None,
    ) -> DiscoveryScan:
        """
        Scan one network and return the terminal scan record.

        on_update receives a snapshot of the scan at creation, failure,
        progress milestones and completion.

        Raises:
            ScanAbortedError: network not found or subnet invalid
        """
        pass


ScannerFactory = Callable[[DiscoveryStorage, ScannerConfig], Scanner]

_SCANNERS: dict[str, ScannerFactory] = {}


def register_scanner(name: str, factory: ScannerFactory) -> None:
    """Make a scanner implementation selectable by name."""
    _SCANNERS[name] = factory


def available_scanners() -> list[str]:
    """Names of all registered scanners."""
    return sorted(_SCANNERS)


def create_scanner(
    name: str,
    storage: DiscoveryStorage,
    config: Optional[ScannerConfig] = None,
) -> Scanner:
    """Instantiate a registered scanner."""
    try:
        factory = _SCANNERS[name]
    except KeyError:
        raise ValueError(
            f"Unknown scanner {name!r} (available: {', '.join(available_scanners())})"
        ) from None
    return factory(storage, config or ScannerConfig())


class ScanProgress:
    """
    The scan aggregate shared by all host tasks.

    Every counter mutation goes through one lock, held only for the
    update itself.
    """

    def __init__(self, scan: DiscoveryScan, report_every: int = DEFAULT_PROGRESS_REPORT_EVERY):
        self.scan = scan
        self.report_every = report_every
        self._lock = asyncio.Lock()

    def snapshot(self) -> DiscoveryScan:
        """Copy of the scan safe to hand to callers."""
        return replace(self.scan)

    async def host_found(self) -> None:
        async with self._lock:
            self.scan.found_hosts += 1

    async def host_scanned(self) -> Optional[DiscoveryScan]:
        """
        Count one finished host.

        Returns a snapshot when this host is a reporting milestone (every
        report_every hosts, and the last host), otherwise None.
        """
        async with self._lock:
            scan = self.scan
            scan.scanned_hosts += 1
            if scan.total_hosts > 0:
                scan.progress_percent = scan.scanned_hosts / scan.total_hosts * 100
            milestone = (
                scan.scanned_hosts % self.report_every == 0
                or scan.scanned_hosts == scan.total_hosts
            )
            return self.snapshot() if milestone else None


class DiscoveryScanner(Scanner):
    """
    Built-in scanner: ICMP, ARP/reverse DNS, TCP connect and banner probes.
    """

    def __init__(
        self,
        storage: DiscoveryStorage,
        config: Optional[ScannerConfig] = None,
        ping: Optional[PingProber] = None,
        identity: Optional[IdentityProber] = None,
        ports: Optional[PortProber] = None,
        services: Optional[ServiceProber] = None,
    ):
        """
        Initialize the scanner.

        Args:
            storage: Inventory store used for network lookup and results
            config: Scanner configuration (defaults if None)
            ping, identity, ports, services: Prober overrides
        """
        self.storage = storage
        self.config = config or ScannerConfig()
        self.max_concurrent_hosts = self.config.max_concurrent_hosts
        self.progress_report_every = self.config.progress_report_every

        self.ping = ping or PingProber()
        self.identity = identity or IdentityProber()
        self.ports = ports or PortProber()
        self.services = services or ServiceProber(
            connect_timeout=self.config.service_connect_timeout,
            read_timeout=self.config.service_read_timeout,
        )

    @property
    def name(self) -> str:
        return "builtin"

    async def scan_network(
        self,
        network_id: str,
        rule: DiscoveryRule,
        on_update: Optional[OnUpdate] = None,
    ) -> DiscoveryScan:
        scan = DiscoveryScan(
            id=new_id(),
            network_id=network_id,
            status=ScanStatus.RUNNING,
            scan_type=rule.scan_type,
            scan_depth=scan_depth_for(rule.scan_type),
            started_at=now_utc(),
        )
        await self._report(on_update, replace(scan))

        try:
            network = self.storage.get_network(network_id)
        except Exception as e:
            await self._abort(scan, f"getting network: {e}", on_update)
            raise ScanAbortedError(scan) from e

        try:
            ips = generate_ip_list(network.subnet)
        except Exception as e:
            await self._abort(scan, f"generating IP list: {e}", on_update)
            raise ScanAbortedError(scan) from e

        scan.total_hosts = len(ips)
        await self._report(on_update, replace(scan))

        logger.info(f"Starting network scan (network_id={network_id}, hosts={len(ips)})")
        logger.debug(
            f"Scan configuration: type={rule.scan_type.value}, "
            f"scan_ports={rule.scan_ports}, timeout={rule.timeout_seconds}s"
        )

        progress = ScanProgress(scan, self.progress_report_every)
        pool = asyncio.Semaphore(self.max_concurrent_hosts)

        try:
            await asyncio.gather(*(
                self._scan_one(ip, network_id, rule, progress, pool, on_update)
                for ip in ips
            ))
        except asyncio.CancelledError:
            logger.warning(f"Scan {scan.id} cancelled")
            self._finish(scan, ScanStatus.FAILED, "scan cancelled")
            await self._report(on_update, replace(scan))
            raise

        self._finish(scan, ScanStatus.COMPLETED)
        await self._report(on_update, replace(scan))

        logger.info(
            f"Network scan completed (network_id={network_id}, "
            f"found={scan.found_hosts}, duration={scan.duration_seconds}s)"
        )
        return scan

    async def _scan_one(
        self,
        ip: str,
        network_id: str,
        rule: DiscoveryRule,
        progress: ScanProgress,
        pool: asyncio.Semaphore,
        on_update: Optional[OnUpdate],
    ) -> None:
        """Run one host through the pipeline inside a pool slot."""
        async with pool:
            try:
                if is_excluded(ip, rule.exclude_ips):
                    logger.debug(f"Skipping excluded host {ip}")
                else:
                    await self._probe_and_store(ip, network_id, rule, progress)
            finally:
                milestone = await progress.host_scanned()

        if milestone is not None:
            if milestone.scanned_hosts % self.progress_report_every == 0:
                logger.info(
                    f"Scan progress: {milestone.scanned_hosts}/{milestone.total_hosts}"
                )
            await self._report(on_update, milestone)

    async def _probe_and_store(
        self,
        ip: str,
        network_id: str,
        rule: DiscoveryRule,
        progress: ScanProgress,
    ) -> None:
        try:
            device = await self.scan_host(ip, network_id, rule, progress.scan.id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Host scan failed for {ip}: {e}")
            return

        if device is None:
            return

        await progress.host_found()
        logger.debug(
            f"Device discovered: {ip} (status={device.status.value}, "
            f"ports={len(device.open_ports)})"
        )

        try:
            self.storage.create_or_update_discovered_device(device)
        except Exception as e:
            logger.error(f"Failed to save discovered device {ip}: {e}")

    async def scan_host(
        self,
        ip: str,
        network_id: str,
        rule: DiscoveryRule,
        scan_id: str,
    ) -> Optional[DiscoveredDevice]:
        """
        Run the multi-stage probe pipeline on one host.

        Returns None when a quick scan gets no ICMP reply; otherwise a
        device record built from whatever evidence the stages produced.
        """
        timeout = rule.timeout

        # Stage 1: ICMP
        alive = await self.ping.ping(ip, timeout)
        if rule.scan_type == ScanType.QUICK and not alive:
            return None

        evidence = HostEvidence(ip=ip, network_id=network_id, scan_id=scan_id)

        # Stage 2: MAC and hostname, only for hosts that answered
        if alive:
            evidence.status = DeviceStatus.ONLINE
            evidence.mac_address, evidence.hostname = await self.identity.identify(ip, timeout)

        # Stage 3: ports, even if ICMP failed
        if rule.scan_ports and rule.scan_type != ScanType.QUICK:
            open_ports = await self.ports.scan_ports(ip, rule)
            if open_ports:
                evidence.open_ports = open_ports
                if evidence.status == DeviceStatus.UNKNOWN:
                    evidence.status = DeviceStatus.ONLINE

        # Stage 4: services
        if rule.service_detection and evidence.open_ports:
            evidence.services = await self.services.detect_services(ip, evidence.open_ports)

        # Stage 5: OS
        if rule.os_detection:
            guess = guess_os(evidence.open_ports, evidence.services)
            evidence.os_guess = guess.os
            evidence.os_family = guess.family

        confidence = calculate_confidence(
            evidence.mac_address,
            evidence.hostname,
            evidence.open_ports,
            evidence.os_guess,
        )
        return evidence.finalize(confidence)

    async def _abort(
        self,
        scan: DiscoveryScan,
        message: str,
        on_update: Optional[OnUpdate],
    ) -> None:
        logger.error(f"Scan {scan.id} failed: {message}")
        self._finish(scan, ScanStatus.FAILED, message)
        await self._report(on_update, replace(scan))

    def _finish(
        self,
        scan: DiscoveryScan,
        status: ScanStatus,
        error_message: Optional[str] = None,
    ) -> None:
        scan.status = status
        scan.error_message = error_message
        scan.completed_at = now_utc()
        if scan.started_at:
            scan.duration_seconds = int((scan.completed_at - scan.started_at).total_seconds())

    async def _report(self, on_update: Optional[OnUpdate], scan: DiscoveryScan) -> None:
        """Hand a scan snapshot to the caller; failures are only logged."""
        if on_update is None:
            return
        try:
            result = on_update(scan)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Progress report for scan {scan.id} failed: {e}")


register_scanner("builtin", lambda storage, config: DiscoveryScanner(storage, config))


def main():
    """Entry point: run one discovery scan for a network."""
    import argparse

    parser = argparse.ArgumentParser(description="Network Discovery Scanner")
    parser.add_argument("--config", type=str, help="Path to config file")
    parser.add_argument("--network-id", type=str, required=True, help="Network to scan")
    parser.add_argument(
        "--scan-type",
        type=str,
        choices=[t.value for t in ScanType],
        help="Override the rule's scan type",
    )
    parser.add_argument("--log-level", type=str, help="Log level")
    args = parser.parse_args()

    # Load configuration
    if args.config:
        config = ScannerConfig.from_yaml(Path(args.config))
    else:
        config = ScannerConfig.from_env()
    if args.log_level:
        config.log_level = args.log_level

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Config error: {error}")
        sys.exit(1)

    db = DiscoveryDatabase(config.db_path)
    rule = db.get_discovery_rule(args.network_id) or replace(
        config.default_rule, network_id=args.network_id
    )
    if args.scan_type:
        rule = replace(rule, scan_type=ScanType(args.scan_type))

    scanner = create_scanner(config.scanner_name, db, config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    task = loop.create_task(
        scanner.scan_network(args.network_id, rule, on_update=db.update_discovery_scan)
    )

    def signal_handler():
        logger.info("Received shutdown signal")
        task.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        scan = loop.run_until_complete(task)
    except ScanAbortedError as e:
        logger.error(f"Scan aborted: {e}")
        sys.exit(1)
    except asyncio.CancelledError:
        logger.info("Scan cancelled")
        sys.exit(1)
    finally:
        loop.close()

    logger.info(
        f"Scan {scan.id}: {scan.found_hosts} devices found "
        f"across {scan.scanned_hosts} hosts in {scan.duration_seconds}s"
    )


if __name__ == "__main__":
    main()
