"""Tests for scanner configuration."""

from pathlib import Path

import pytest

from discovery_scanner._types import PortScanType, ScanType
from discovery_scanner.config import ScannerConfig


CONFIG_YAML = """
paths:
  db: "/tmp/discovery-test.db"

scanner:
  name: "builtin"
  max_concurrent_hosts: 3
  progress_report_every: 25

service_detection:
  connect_timeout: 1.5
  read_timeout: 0.5

default_rule:
  scan_type: "deep"
  port_scan_type: "custom"
  custom_ports: [22, 443]
  exclude_ips:
    - "192.168.1.1"
    - "192.168.1.128/25"
  timeout_seconds: 2

log_level: "DEBUG"
"""


class TestDefaults:

    def test_defaults(self):
        config = ScannerConfig()

        assert config.scanner_name == "builtin"
        assert config.max_concurrent_hosts == 5
        assert config.progress_report_every == 50
        assert config.service_connect_timeout == 3.0
        assert config.service_read_timeout == 2.0
        assert config.default_rule.scan_type == ScanType.FULL
        assert config.validate() == []


class TestFromYaml:
    """Tests for YAML loading."""

    def test_load(self, tmp_path):
        path = tmp_path / "discovery.yaml"
        path.write_text(CONFIG_YAML)

        config = ScannerConfig.from_yaml(path)

        assert config.db_path == Path("/tmp/discovery-test.db")
        assert config.max_concurrent_hosts == 3
        assert config.progress_report_every == 25
        assert config.service_connect_timeout == 1.5
        assert config.service_read_timeout == 0.5
        assert config.default_rule.scan_type == ScanType.DEEP
        assert config.default_rule.port_scan_type == PortScanType.CUSTOM
        assert config.default_rule.custom_ports == (22, 443)
        assert config.default_rule.exclude_ips == ("192.168.1.1", "192.168.1.128/25")
        assert config.default_rule.timeout_seconds == 2
        assert config.log_level == "DEBUG"
        assert config.validate() == []

    def test_missing_file_uses_defaults(self, tmp_path):
        config = ScannerConfig.from_yaml(tmp_path / "missing.yaml")

        assert config.max_concurrent_hosts == 5
        assert config.default_rule.scan_type == ScanType.FULL

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        config = ScannerConfig.from_yaml(path)

        assert config.log_level == "INFO"

    def test_invalid_scan_type(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("default_rule:\n  scan_type: thorough\n")

        with pytest.raises(ValueError):
            ScannerConfig.from_yaml(path)


class TestFromEnv:
    """Tests for environment loading."""

    def test_load(self, monkeypatch):
        monkeypatch.setenv("DISCOVERY_DB_PATH", "/tmp/env.db")
        monkeypatch.setenv("DISCOVERY_MAX_CONCURRENT_HOSTS", "8")
        monkeypatch.setenv("DISCOVERY_SCAN_TYPE", "quick")
        monkeypatch.setenv("DISCOVERY_SCAN_PORTS", "false")
        monkeypatch.setenv("DISCOVERY_CUSTOM_PORTS", "22, 8443")
        monkeypatch.setenv("DISCOVERY_EXCLUDE_IPS", "10.0.0.1,10.0.1.0/24")
        monkeypatch.setenv("LOG_LEVEL", "WARNING")

        config = ScannerConfig.from_env()

        assert config.db_path == Path("/tmp/env.db")
        assert config.max_concurrent_hosts == 8
        assert config.default_rule.scan_type == ScanType.QUICK
        assert config.default_rule.scan_ports is False
        assert config.default_rule.custom_ports == (22, 8443)
        assert config.default_rule.exclude_ips == ("10.0.0.1", "10.0.1.0/24")
        assert config.log_level == "WARNING"

    def test_defaults(self, monkeypatch):
        for name in ("DISCOVERY_SCAN_TYPE", "DISCOVERY_MAX_CONCURRENT_HOSTS", "LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        config = ScannerConfig.from_env()

        assert config.max_concurrent_hosts == 5
        assert config.default_rule.scan_type == ScanType.FULL
        assert config.default_rule.service_detection is True

    def test_invalid_port_scan_type(self, monkeypatch):
        monkeypatch.setenv("DISCOVERY_PORT_SCAN_TYPE", "everything")

        with pytest.raises(ValueError):
            ScannerConfig.from_env()


class TestValidate:
    """Tests for configuration validation."""

    def test_bad_pool_size(self):
        config = ScannerConfig(max_concurrent_hosts=0)

        assert any("max_concurrent_hosts" in e for e in config.validate())

    def test_bad_timeouts(self):
        config = ScannerConfig(service_read_timeout=0)

        assert config.validate() == ["Service detection timeouts must be positive"]

    def test_bad_custom_ports(self, tmp_path):
        path = tmp_path / "ports.yaml"
        path.write_text("default_rule:\n  custom_ports: [22, 70000]\n")

        errors = ScannerConfig.from_yaml(path).validate()

        assert errors == ["Custom ports out of range: [70000]"]
