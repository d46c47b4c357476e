"""
Inventory store for the discovery scanner.

DiscoveryStorage is the interface the scanner consumes. DiscoveryDatabase
is the SQLite reference implementation storing:
- Networks (subnet lookup for a scan)
- Discovered devices, upserted by IP
- Discovery scan records
- Per-network discovery rules

Uses WAL mode for crash safety and concurrent reads.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from ._types import (
    DeviceStatus,
    DiscoveredDevice,
    DiscoveryRule,
    DiscoveryScan,
    Network,
    ScanStatus,
    ScanType,
    ServiceInfo,
    now_utc,
)

logger = logging.getLogger(__name__)


class NetworkNotFoundError(LookupError):
    """Raised when a network id has no record."""


class DiscoveryStorage(ABC):
    """Store operations the scanner depends on."""

    @abstractmethod
    def get_network(self, network_id: str) -> Network:
        """Resolve a network; raises NetworkNotFoundError."""
        pass

    @abstractmethod
    def create_or_update_discovered_device(self, device: DiscoveredDevice) -> None:
        """Idempotent upsert keyed by IP."""
        pass

    @abstractmethod
    def update_discovery_scan(self, scan: DiscoveryScan) -> None:
        """Persist the current scan aggregate."""
        pass


# Database schema
SCHEMA = """
CREATE TABLE IF NOT EXISTS networks (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    subnet TEXT NOT NULL,
    datacenter_id TEXT,
    description TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- One row per IP; every scan overwrites the previous result
CREATE TABLE IF NOT EXISTS discovered_devices (
    id TEXT PRIMARY KEY,
    ip TEXT NOT NULL UNIQUE,
    mac_address TEXT,
    hostname TEXT,
    network_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'unknown',
    confidence INTEGER DEFAULT 50,
    os_guess TEXT,
    os_family TEXT,
    open_ports TEXT,  -- JSON array
    services TEXT,  -- JSON array
    first_seen TEXT NOT NULL,
    last_seen TEXT NOT NULL,
    last_scan_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (network_id) REFERENCES networks(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS discovery_scans (
    id TEXT PRIMARY KEY,
    network_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    scan_type TEXT NOT NULL DEFAULT 'full',
    scan_depth INTEGER NOT NULL DEFAULT 2,
    total_hosts INTEGER,
    scanned_hosts INTEGER DEFAULT 0,
    found_hosts INTEGER DEFAULT 0,
    progress_percent REAL DEFAULT 0,
    started_at TEXT,
    completed_at TEXT,
    duration_seconds INTEGER,
    error_message TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS discovery_rules (
    id TEXT PRIMARY KEY,
    network_id TEXT NOT NULL UNIQUE,
    enabled BOOLEAN NOT NULL DEFAULT 1,
    scan_interval_hours INTEGER DEFAULT 24,
    scan_type TEXT NOT NULL DEFAULT 'full',
    max_concurrent_scans INTEGER DEFAULT 10,
    timeout_seconds INTEGER DEFAULT 5,
    scan_ports BOOLEAN DEFAULT 1,
    port_scan_type TEXT DEFAULT 'common',
    custom_ports TEXT,  -- JSON array
    service_detection BOOLEAN DEFAULT 1,
    os_detection BOOLEAN DEFAULT 1,
    exclude_ips TEXT,  -- JSON array
    exclude_hosts TEXT,  -- JSON array
    updated_at TEXT NOT NULL,
    FOREIGN KEY (network_id) REFERENCES networks(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_discovered_devices_network ON discovered_devices(network_id);
CREATE INDEX IF NOT EXISTS idx_discovered_devices_mac ON discovered_devices(mac_address);
CREATE INDEX IF NOT EXISTS idx_discovered_devices_status ON discovered_devices(status);
CREATE INDEX IF NOT EXISTS idx_discovered_devices_last_seen ON discovered_devices(last_seen);
CREATE INDEX IF NOT EXISTS idx_discovery_scans_network ON discovery_scans(network_id);
CREATE INDEX IF NOT EXISTS idx_discovery_scans_status ON discovery_scans(status);
"""


def _iso_format(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime as ISO string."""
    return dt.isoformat() if dt else None


def _parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string."""
    if not s:
        return None
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        return None


class DiscoveryDatabase(DiscoveryStorage):
    """
    SQLite store for networks, discovery results and scan records.

    A fresh connection is opened per operation, so writes from concurrent
    host tasks never share a cursor.
    """

    def __init__(self, db_path: Path | str = "/var/lib/discovery/discovery.db"):
        self.db_path = Path(db_path)
        self._ensure_directory()
        self._init_db()

    def _ensure_directory(self) -> None:
        """Ensure database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _init_db(self) -> None:
        """Initialize database with schema."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.commit()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Networks
    # -------------------------------------------------------------------------

    def create_network(self, network: Network) -> Network:
        """Insert a network record."""
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO networks (id, name, subnet, datacenter_id, description, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                network.id,
                network.name,
                network.subnet,
                network.datacenter_id,
                network.description,
                _iso_format(network.created_at),
                _iso_format(network.updated_at),
            ))
            conn.commit()
        return network

    def get_network(self, network_id: str) -> Network:
        """Get network by ID."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM networks WHERE id = ?", (network_id,)
            ).fetchone()
        if row is None:
            raise NetworkNotFoundError(f"network not found: {network_id}")
        return Network(
            id=row["id"],
            name=row["name"],
            subnet=row["subnet"],
            datacenter_id=row["datacenter_id"],
            description=row["description"],
            created_at=_parse_datetime(row["created_at"]) or now_utc(),
            updated_at=_parse_datetime(row["updated_at"]) or now_utc(),
        )

    # -------------------------------------------------------------------------
    # Discovered devices
    # -------------------------------------------------------------------------

    def create_or_update_discovered_device(self, device: DiscoveredDevice) -> None:
        """
        Insert or overwrite the record for device.ip.

        All fields are replaced by the new values; only the row id,
        first_seen and created_at survive from an earlier scan.
        """
        now = _iso_format(now_utc())
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO discovered_devices (
                    id, ip, mac_address, hostname, network_id, status,
                    confidence, os_guess, os_family, open_ports, services,
                    first_seen, last_seen, last_scan_id, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(ip) DO UPDATE SET
                    mac_address = excluded.mac_address,
                    hostname = excluded.hostname,
                    network_id = excluded.network_id,
                    status = excluded.status,
                    confidence = excluded.confidence,
                    os_guess = excluded.os_guess,
                    os_family = excluded.os_family,
                    open_ports = excluded.open_ports,
                    services = excluded.services,
                    last_seen = excluded.last_seen,
                    last_scan_id = excluded.last_scan_id,
                    updated_at = excluded.updated_at
            """, (
                device.id,
                device.ip,
                device.mac_address,
                device.hostname,
                device.network_id,
                device.status.value,
                device.confidence,
                device.os_guess,
                device.os_family,
                json.dumps(list(device.open_ports)),
                json.dumps([s.to_dict() for s in device.services]),
                _iso_format(device.first_seen),
                _iso_format(device.last_seen),
                device.last_scan_id,
                now,
                now,
            ))
            conn.commit()

    def get_discovered_device_by_ip(self, ip: str) -> Optional[DiscoveredDevice]:
        """Get discovered device by IP address."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM discovered_devices WHERE ip = ?", (ip,)
            ).fetchone()
        return self._row_to_device(row) if row else None

    def list_discovered_devices(
        self,
        network_id: Optional[str] = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> list[DiscoveredDevice]:
        """List discovered devices, most recently seen first."""
        query = "SELECT * FROM discovered_devices WHERE 1=1"
        params: list = []

        if network_id:
            query += " AND network_id = ?"
            params.append(network_id)

        query += " ORDER BY last_seen DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_device(row) for row in rows]

    def _row_to_device(self, row: sqlite3.Row) -> DiscoveredDevice:
        """Convert database row to DiscoveredDevice."""
        return DiscoveredDevice(
            id=row["id"],
            ip=row["ip"],
            network_id=row["network_id"],
            mac_address=row["mac_address"],
            hostname=row["hostname"],
            status=DeviceStatus(row["status"]),
            confidence=row["confidence"],
            os_guess=row["os_guess"],
            os_family=row["os_family"],
            open_ports=json.loads(row["open_ports"] or "[]"),
            services=[ServiceInfo.from_dict(s) for s in json.loads(row["services"] or "[]")],
            last_scan_id=row["last_scan_id"],
            first_seen=_parse_datetime(row["first_seen"]) or now_utc(),
            last_seen=_parse_datetime(row["last_seen"]) or now_utc(),
        )

    # -------------------------------------------------------------------------
    # Discovery scans
    # -------------------------------------------------------------------------

    def update_discovery_scan(self, scan: DiscoveryScan) -> None:
        """Create or update a scan record by id."""
        now = _iso_format(now_utc())
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO discovery_scans (
                    id, network_id, status, scan_type, scan_depth, total_hosts,
                    scanned_hosts, found_hosts, progress_percent, started_at,
                    completed_at, duration_seconds, error_message, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    total_hosts = excluded.total_hosts,
                    scanned_hosts = excluded.scanned_hosts,
                    found_hosts = excluded.found_hosts,
                    progress_percent = excluded.progress_percent,
                    started_at = excluded.started_at,
                    completed_at = excluded.completed_at,
                    duration_seconds = excluded.duration_seconds,
                    error_message = excluded.error_message,
                    updated_at = excluded.updated_at
            """, (
                scan.id,
                scan.network_id,
                scan.status.value,
                scan.scan_type.value,
                scan.scan_depth,
                scan.total_hosts,
                scan.scanned_hosts,
                scan.found_hosts,
                scan.progress_percent,
                _iso_format(scan.started_at),
                _iso_format(scan.completed_at),
                scan.duration_seconds,
                scan.error_message,
                now,
                now,
            ))
            conn.commit()

    def get_discovery_scan(self, scan_id: str) -> Optional[DiscoveryScan]:
        """Get scan record by ID."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM discovery_scans WHERE id = ?", (scan_id,)
            ).fetchone()
        return self._row_to_scan(row) if row else None

    def list_discovery_scans(
        self,
        network_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[DiscoveryScan]:
        """Get recent scans, newest first."""
        query = "SELECT * FROM discovery_scans"
        params: list = []
        if network_id:
            query += " WHERE network_id = ?"
            params.append(network_id)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_scan(row) for row in rows]

    def _row_to_scan(self, row: sqlite3.Row) -> DiscoveryScan:
        """Convert database row to DiscoveryScan."""
        return DiscoveryScan(
            id=row["id"],
            network_id=row["network_id"],
            status=ScanStatus(row["status"]),
            scan_type=ScanType(row["scan_type"]),
            scan_depth=row["scan_depth"],
            total_hosts=row["total_hosts"] or 0,
            scanned_hosts=row["scanned_hosts"] or 0,
            found_hosts=row["found_hosts"] or 0,
            progress_percent=row["progress_percent"] or 0.0,
            started_at=_parse_datetime(row["started_at"]),
            completed_at=_parse_datetime(row["completed_at"]),
            duration_seconds=row["duration_seconds"],
            error_message=row["error_message"],
        )

    # -------------------------------------------------------------------------
    # Discovery rules
    # -------------------------------------------------------------------------

    def save_discovery_rule(self, rule: DiscoveryRule) -> None:
        """Create or replace the rule for rule.network_id."""
        if not rule.network_id:
            raise ValueError("discovery rule has no network_id")

        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO discovery_rules (
                    id, network_id, enabled, scan_interval_hours, scan_type,
                    max_concurrent_scans, timeout_seconds, scan_ports, port_scan_type,
                    custom_ports, service_detection, os_detection, exclude_ips,
                    exclude_hosts, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(network_id) DO UPDATE SET
                    enabled = excluded.enabled,
                    scan_interval_hours = excluded.scan_interval_hours,
                    scan_type = excluded.scan_type,
                    max_concurrent_scans = excluded.max_concurrent_scans,
                    timeout_seconds = excluded.timeout_seconds,
                    scan_ports = excluded.scan_ports,
                    port_scan_type = excluded.port_scan_type,
                    custom_ports = excluded.custom_ports,
                    service_detection = excluded.service_detection,
                    os_detection = excluded.os_detection,
                    exclude_ips = excluded.exclude_ips,
                    exclude_hosts = excluded.exclude_hosts,
                    updated_at = excluded.updated_at
            """, (
                rule.id,
                rule.network_id,
                rule.enabled,
                rule.scan_interval_hours,
                rule.scan_type.value,
                rule.max_concurrent_scans,
                rule.timeout_seconds,
                rule.scan_ports,
                rule.port_scan_type.value,
                json.dumps(list(rule.custom_ports)),
                rule.service_detection,
                rule.os_detection,
                json.dumps(list(rule.exclude_ips)),
                json.dumps(list(rule.exclude_hosts)),
                _iso_format(now_utc()),
            ))
            conn.commit()

    def get_discovery_rule(self, network_id: str) -> Optional[DiscoveryRule]:
        """Get the rule configured for a network, if any."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM discovery_rules WHERE network_id = ?", (network_id,)
            ).fetchone()
        if row is None:
            return None

        return DiscoveryRule.from_dict({
            "id": row["id"],
            "network_id": row["network_id"],
            "enabled": row["enabled"],
            "scan_interval_hours": row["scan_interval_hours"],
            "scan_type": row["scan_type"],
            "max_concurrent_scans": row["max_concurrent_scans"],
            "timeout_seconds": row["timeout_seconds"],
            "scan_ports": row["scan_ports"],
            "port_scan_type": row["port_scan_type"],
            "custom_ports": json.loads(row["custom_ports"] or "[]"),
            "service_detection": row["service_detection"],
            "os_detection": row["os_detection"],
            "exclude_ips": json.loads(row["exclude_ips"] or "[]"),
            "exclude_hosts": json.loads(row["exclude_hosts"] or "[]"),
        })
