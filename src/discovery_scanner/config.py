"""
Discovery scanner configuration.

Loaded from environment variables or a YAML file. The default_rule
section supplies the DiscoveryRule used for networks that have no rule
stored in the inventory.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from ._types import DiscoveryRule

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() == "true"


def _env_list(name: str) -> list[str]:
    value = os.getenv(name, "")
    return [v.strip() for v in value.split(",") if v.strip()]


@dataclass
class ScannerConfig:
    """Discovery scanner configuration."""

    # Store
    db_path: Path = field(default_factory=lambda: Path("/var/lib/discovery/discovery.db"))

    # Orchestration
    scanner_name: str = "builtin"
    max_concurrent_hosts: int = 5  # kept low to limit concurrent store writes
    progress_report_every: int = 50

    # Service prober
    service_connect_timeout: float = 3.0
    service_read_timeout: float = 2.0

    # Rule applied when a network has none stored
    default_rule: DiscoveryRule = field(default_factory=DiscoveryRule)

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ScannerConfig":
        """
        Load configuration from environment variables.

        Raises ValueError for an unknown scan type or port scan type.
        """
        config = cls()

        if db_path := os.getenv("DISCOVERY_DB_PATH"):
            config.db_path = Path(db_path)

        config.scanner_name = os.getenv("DISCOVERY_SCANNER", config.scanner_name)
        config.max_concurrent_hosts = int(os.getenv("DISCOVERY_MAX_CONCURRENT_HOSTS", "5"))
        config.progress_report_every = int(os.getenv("DISCOVERY_PROGRESS_EVERY", "50"))
        config.service_connect_timeout = float(os.getenv("DISCOVERY_SERVICE_CONNECT_TIMEOUT", "3"))
        config.service_read_timeout = float(os.getenv("DISCOVERY_SERVICE_READ_TIMEOUT", "2"))

        rule = {
            "scan_type": os.getenv("DISCOVERY_SCAN_TYPE", "full"),
            "scan_ports": _env_bool("DISCOVERY_SCAN_PORTS", True),
            "port_scan_type": os.getenv("DISCOVERY_PORT_SCAN_TYPE", "common"),
            "custom_ports": [int(p) for p in _env_list("DISCOVERY_CUSTOM_PORTS")],
            "service_detection": _env_bool("DISCOVERY_SERVICE_DETECTION", True),
            "os_detection": _env_bool("DISCOVERY_OS_DETECTION", True),
            "exclude_ips": _env_list("DISCOVERY_EXCLUDE_IPS"),
            "timeout_seconds": int(os.getenv("DISCOVERY_TIMEOUT_SECONDS", "5")),
        }
        config.default_rule = DiscoveryRule.from_dict(rule)

        config.log_level = os.getenv("LOG_LEVEL", "INFO")

        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "ScannerConfig":
        """Load configuration from YAML file."""
        if not path.exists():
            logger.warning(f"Config file not found: {path}, using defaults")
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        config = cls()

        if "paths" in data:
            p = data["paths"]
            if "db" in p:
                config.db_path = Path(p["db"])

        if "scanner" in data:
            s = data["scanner"]
            config.scanner_name = s.get("name", config.scanner_name)
            config.max_concurrent_hosts = s.get("max_concurrent_hosts", 5)
            config.progress_report_every = s.get("progress_report_every", 50)

        if "service_detection" in data:
            d = data["service_detection"]
            config.service_connect_timeout = d.get("connect_timeout", 3.0)
            config.service_read_timeout = d.get("read_timeout", 2.0)

        if "default_rule" in data:
            config.default_rule = DiscoveryRule.from_dict(data["default_rule"] or {})

        config.log_level = data.get("log_level", "INFO")

        return config

    def validate(self) -> list[str]:
        """Validate configuration, returning list of errors."""
        errors = []

        if self.max_concurrent_hosts < 1:
            errors.append(f"Invalid max_concurrent_hosts: {self.max_concurrent_hosts}")

        if self.progress_report_every < 1:
            errors.append(f"Invalid progress_report_every: {self.progress_report_every}")

        if self.service_connect_timeout <= 0 or self.service_read_timeout <= 0:
            errors.append("Service detection timeouts must be positive")

        rule = self.default_rule
        if rule.timeout_seconds <= 0:
            errors.append(f"Invalid timeout_seconds: {rule.timeout_seconds}")

        bad_ports = [p for p in rule.custom_ports if not 1 <= p <= 65535]
        if bad_ports:
            errors.append(f"Custom ports out of range: {bad_ports}")

        return errors


# Example discovery.yaml:
"""
paths:
  db: "/var/lib/discovery/discovery.db"

scanner:
  name: "builtin"
  max_concurrent_hosts: 5
  progress_report_every: 50

service_detection:
  connect_timeout: 3
  read_timeout: 2

default_rule:
  scan_type: "full"          # quick, full, deep
  scan_ports: true
  port_scan_type: "common"   # common, full, custom
  custom_ports: [22, 80, 443]
  service_detection: true
  os_detection: true
  exclude_ips:
    - "192.168.1.1"
    - "192.168.1.128/25"
  timeout_seconds: 5

log_level: "INFO"
"""
