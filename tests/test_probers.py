"""Tests for the host probers."""

import asyncio
import socket
from contextlib import asynccontextmanager
from unittest.mock import patch

import pytest
from scapy.layers.inet import ICMP, IP
from scapy.layers.l2 import ARP, Ether

from discovery_scanner._types import COMMON_PORTS, DiscoveryRule, PortScanType, ServiceInfo
from discovery_scanner.discovery import (
    ARPProber,
    IdentityProber,
    PingProber,
    PortProber,
    ReverseDNSProber,
    ServiceProber,
    parse_service,
    parse_version,
    ports_to_scan,
)


@asynccontextmanager
async def tcp_server(handler=None):
    """Run a loopback TCP server, yielding its port."""

    async def default_handler(reader, writer):
        writer.close()

    server = await asyncio.start_server(handler or default_handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        yield port
    finally:
        server.close()
        await server.wait_closed()


def closed_port() -> int:
    """Find a loopback port with nothing listening."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestPingProber:
    """Tests for ICMP reachability."""

    @pytest.mark.asyncio
    async def test_unprivileged_reports_not_alive(self):
        """Without raw sockets, ping should return False and send nothing."""
        prober = PingProber(privileged=False)

        with patch("discovery_scanner.discovery.ping.sr1") as sr1:
            assert await prober.ping("10.0.0.1", 1.0) is False
            sr1.assert_not_called()
        assert prober.privileged is False

    @pytest.mark.asyncio
    async def test_echo_reply(self):
        prober = PingProber(privileged=True)
        reply = IP(src="10.0.0.1") / ICMP(type=0)

        with patch("discovery_scanner.discovery.ping.sr1", return_value=reply):
            assert await prober.ping("10.0.0.1", 1.0) is True

    @pytest.mark.asyncio
    async def test_no_reply(self):
        prober = PingProber(privileged=True)

        with patch("discovery_scanner.discovery.ping.sr1", return_value=None):
            assert await prober.ping("10.0.0.1", 1.0) is False

    @pytest.mark.asyncio
    async def test_unreachable_is_not_alive(self):
        """Destination-unreachable is not an echo reply."""
        prober = PingProber(privileged=True)
        reply = IP(src="10.0.0.254") / ICMP(type=3, code=1)

        with patch("discovery_scanner.discovery.ping.sr1", return_value=reply):
            assert await prober.ping("10.0.0.1", 1.0) is False

    @pytest.mark.asyncio
    async def test_send_error_is_not_alive(self):
        prober = PingProber(privileged=True)

        with patch("discovery_scanner.discovery.ping.sr1", side_effect=PermissionError("denied")):
            assert await prober.ping("10.0.0.1", 1.0) is False


class TestIdentityProber:
    """Tests for ARP and reverse DNS lookups."""

    @pytest.mark.asyncio
    async def test_arp_reply(self):
        reply = Ether(src="AA:BB:CC:DD:EE:FF") / ARP(op=2, hwsrc="AA:BB:CC:DD:EE:FF", psrc="10.0.0.7")
        answered = [(None, reply)]

        with patch("discovery_scanner.discovery.identity.srp", return_value=(answered, [])):
            mac = await ARPProber().get_mac("10.0.0.7", 1.0)

        assert mac == "aa:bb:cc:dd:ee:ff"

    @pytest.mark.asyncio
    async def test_arp_no_reply(self):
        with patch("discovery_scanner.discovery.identity.srp", return_value=([], [])):
            assert await ARPProber().get_mac("10.0.0.7", 1.0) is None

    @pytest.mark.asyncio
    async def test_arp_error(self):
        with patch("discovery_scanner.discovery.identity.srp", side_effect=OSError("no interface")):
            assert await ARPProber().get_mac("10.0.0.7", 1.0) is None

    @pytest.mark.asyncio
    async def test_reverse_dns(self):
        with patch(
            "discovery_scanner.discovery.identity.socket.gethostbyaddr",
            return_value=("printer.office.lan.", [], ["10.0.0.7"]),
        ):
            hostname = await ReverseDNSProber().get_hostname("10.0.0.7", 1.0)

        assert hostname == "printer.office.lan"

    @pytest.mark.asyncio
    async def test_reverse_dns_failure(self):
        with patch(
            "discovery_scanner.discovery.identity.socket.gethostbyaddr",
            side_effect=socket.herror(1, "Unknown host"),
        ):
            assert await ReverseDNSProber().get_hostname("10.0.0.7", 1.0) is None

    @pytest.mark.asyncio
    async def test_lookups_are_independent(self):
        """A failed ARP lookup should not prevent the name lookup."""
        with patch("discovery_scanner.discovery.identity.srp", side_effect=OSError("boom")), \
             patch(
                 "discovery_scanner.discovery.identity.socket.gethostbyaddr",
                 return_value=("nas.lan", [], ["10.0.0.7"]),
             ):
            mac, hostname = await IdentityProber().identify("10.0.0.7", 1.0)

        assert mac is None
        assert hostname == "nas.lan"


class TestPortsToScan:
    """Tests for port set selection."""

    def test_common(self):
        assert ports_to_scan(DiscoveryRule(port_scan_type=PortScanType.COMMON)) == list(COMMON_PORTS)

    def test_full_downgraded_to_common(self):
        assert ports_to_scan(DiscoveryRule(port_scan_type=PortScanType.FULL)) == list(COMMON_PORTS)

    def test_custom(self):
        rule = DiscoveryRule(port_scan_type=PortScanType.CUSTOM, custom_ports=(8443, 22, 22))
        assert ports_to_scan(rule) == [22, 8443]

    def test_custom_without_ports_uses_common(self):
        rule = DiscoveryRule(port_scan_type=PortScanType.CUSTOM)
        assert ports_to_scan(rule) == list(COMMON_PORTS)

    def test_port_scanning_disabled(self):
        assert ports_to_scan(DiscoveryRule(scan_ports=False)) == []


class TestPortProber:
    """Tests for the TCP connect scan."""

    @pytest.mark.asyncio
    async def test_open_and_closed_ports(self):
        """Only ports that accept a connection should be reported."""
        shut = closed_port()
        async with tcp_server() as port:
            rule = DiscoveryRule(
                port_scan_type=PortScanType.CUSTOM,
                custom_ports=(port, shut),
                timeout_seconds=2,
            )
            open_ports = await PortProber().scan_ports("127.0.0.1", rule)

        assert open_ports == [port]

    @pytest.mark.asyncio
    async def test_timeout_is_not_open(self):
        """A connect that does not finish within the timeout is not open."""

        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        with patch("discovery_scanner.discovery.ports.asyncio.open_connection", side_effect=hang):
            assert await PortProber().is_open("10.0.0.1", 22, 0.05) is False

    @pytest.mark.asyncio
    async def test_no_ports(self):
        rule = DiscoveryRule(scan_ports=False)
        assert await PortProber().scan_ports("127.0.0.1", rule) == []


class TestBannerParsing:
    """Tests for banner classification."""

    def test_ssh_banner(self):
        assert parse_service("SSH-2.0-OpenSSH_9.6p1 Ubuntu-3ubuntu13", 2222) == "SSH"

    def test_case_insensitive(self):
        assert parse_service("220 mail.example.com esmtp Postfix", 25) == "SMTP"

    def test_ftp_banner(self):
        assert parse_service("220 (vsFTPd 3.0.5)", 21) == "FTP"

    def test_falls_back_to_port_table(self):
        assert parse_service("+OK Dovecot ready.", 110) == "POP3"

    def test_unknown(self):
        assert parse_service("hello there", 40000) == "unknown"

    def test_version_after_marker(self):
        assert parse_version("220 (vsFTPd 3.0.5)") == "3.0.5)"
        assert parse_version("MySQL Version 8.0.36 ready") == "8.0.36"

    def test_no_version(self):
        assert parse_version("SSH-2.0-OpenSSH_9.6") == ""
        assert parse_version("") == ""

    def test_marker_as_last_word(self):
        assert parse_version("running v") == ""


class TestServiceProber:
    """Tests for banner grabbing against loopback servers."""

    @pytest.mark.asyncio
    async def test_passive_banner(self):
        async def greet(reader, writer):
            writer.write(b"SSH-2.0-OpenSSH_9.6\r\n")
            await writer.drain()
            writer.close()

        async with tcp_server(greet) as port:
            service = await ServiceProber().probe_service("127.0.0.1", port)

        assert service == ServiceInfo(
            port=port, protocol="tcp", banner="SSH-2.0-OpenSSH_9.6", service="SSH", version=""
        )

    @pytest.mark.asyncio
    async def test_http_probe_sent(self):
        """HTTP ports should get a request before the read."""
        received = []

        async def http(reader, writer):
            received.append(await reader.readline())
            writer.write(b"HTTP/1.0 200 OK\r\nServer: test\r\n\r\n")
            await writer.drain()
            writer.close()

        async with tcp_server(http) as port:
            with patch("discovery_scanner.discovery.services.HTTP_PROBE_PORTS", frozenset({port})):
                service = await ServiceProber().probe_service("127.0.0.1", port)

        assert received == [b"GET / HTTP/1.0\r\n"]
        assert service.banner == "HTTP/1.0 200 OK"
        assert service.service == "HTTP"

    @pytest.mark.asyncio
    async def test_silent_server_uses_port_table(self):
        """No banner within the deadline should classify from the port only."""

        async def silent(reader, writer):
            await asyncio.sleep(0.5)
            writer.close()

        async with tcp_server(silent) as port:
            prober = ServiceProber(read_timeout=0.1)
            with patch.dict("discovery_scanner.discovery.services.SERVICE_PORTS", {port: "Redis"}):
                service = await prober.probe_service("127.0.0.1", port)

        assert service.banner == ""
        assert service.service == "Redis"
        assert service.version == ""

    @pytest.mark.asyncio
    async def test_silent_unknown_port(self):
        async def silent(reader, writer):
            await asyncio.sleep(0.5)
            writer.close()

        async with tcp_server(silent) as port:
            service = await ServiceProber(read_timeout=0.1).probe_service("127.0.0.1", port)

        assert service.service == "unknown"

    @pytest.mark.asyncio
    async def test_partial_line_is_not_a_banner(self):
        """Data without a newline before close is not a banner."""

        async def partial(reader, writer):
            writer.write(b"MySQL partial")
            await writer.drain()
            writer.close()

        async with tcp_server(partial) as port:
            service = await ServiceProber().probe_service("127.0.0.1", port)

        assert service.banner == ""

    @pytest.mark.asyncio
    async def test_refused_port_skipped(self):
        prober = ServiceProber(connect_timeout=1.0)
        services = await prober.detect_services("127.0.0.1", [closed_port()])
        assert services == []
