"""Unit tests for the diagnostic checks."""

import socket
from unittest.mock import MagicMock, patch

import pytest
import yaml

from ztgw.core.safety import CheckResult
from ztgw.services.diagnostics import (
    Diagnostics,
    FirewallCheck,
    ForwardingCheck,
    InstallationCheck,
    MembershipCheck,
    PeerCheck,
    PeerPingCheck,
    RootServerCheck,
    RouteCheck,
    ServiceCheck,
)
from ztgw.services.firewall import IptablesBackend, NullBackend
from ztgw.services.network import InterfaceService
from ztgw.services.sysctl import IPV4_FORWARD, IPV6_FORWARD
from ztgw.services.systemd import SystemdService
from ztgw.services.zerotier import ZeroTierClient


NETWORK_ID = "8056c2e21c000001"


@pytest.fixture
def zerotier(ctx, host):
    return ZeroTierClient(ctx, host)


class TestZeroTierChecks:
    def test_installation(self, host, zerotier):
        assert InstallationCheck(zerotier).run().result == CheckResult.PASS
        host.binaries.discard("zerotier-cli")
        outcome = InstallationCheck(zerotier).run()
        assert outcome.result == CheckResult.FAIL
        assert "ztgw install" in outcome.remediation

    def test_service(self, ctx, host, zerotier):
        outcome = ServiceCheck(zerotier, SystemdService(ctx, host)).run()
        assert outcome.result == CheckResult.PASS
        assert outcome.details["active"] is True

        host.zt_running = False
        assert ServiceCheck(zerotier, SystemdService(ctx, host)).run().result == CheckResult.FAIL

    def test_membership_for_network(self, host, zerotier):
        assert MembershipCheck(zerotier, NETWORK_ID).run().result == CheckResult.FAIL

        host.join_network(NETWORK_ID, status="ACCESS_DENIED")
        outcome = MembershipCheck(zerotier, NETWORK_ID).run()
        assert outcome.result == CheckResult.WARN
        assert "ZeroTier Central" in outcome.remediation

        host.memberships[NETWORK_ID].status = "OK"
        assert MembershipCheck(zerotier, NETWORK_ID.upper()).run().result == CheckResult.PASS

    def test_no_memberships(self, zerotier):
        assert MembershipCheck(zerotier).run().result == CheckResult.WARN

    def test_membership_skipped_when_service_down(self, host, zerotier):
        host.zt_running = False
        assert MembershipCheck(zerotier).run().result == CheckResult.SKIP

    def test_peers(self, host, zerotier):
        outcome = PeerCheck(zerotier).run()
        assert outcome.result == CheckResult.PASS
        assert outcome.details == {"LEAF": 2}

        host.peers = []
        assert PeerCheck(zerotier).run().result == CheckResult.WARN


class TestHostChecks:
    def test_forwarding(self, host, forwarding):
        check = ForwardingCheck(forwarding, IPV4_FORWARD)
        assert check.name == "IPv4 forwarding"
        assert check.run().result == CheckResult.WARN

        host.set_proc(IPV4_FORWARD, "1")
        outcome = check.run()
        assert outcome.result == CheckResult.WARN
        assert outcome.message == "Enabled now but not persisted"

        forwarding.persist(IPV4_FORWARD)
        assert check.run().result == CheckResult.PASS

    def test_forwarding_unavailable(self, ctx, host, tmp_path):
        from ztgw.services.sysctl import ForwardingService

        service = ForwardingService(ctx, host, proc_root=tmp_path / "none")
        assert ForwardingCheck(service, IPV6_FORWARD).run().result == CheckResult.SKIP

    def test_firewall(self, ctx, host, tool_config):
        interfaces = InterfaceService(ctx, host)
        backend = IptablesBackend(ctx, host, tool_config.firewall)
        assert FirewallCheck(backend, interfaces).run().result == CheckResult.WARN

        host.nat_rules.append(("-o", "eth0", "-j", "MASQUERADE"))
        outcome = FirewallCheck(backend, interfaces).run()
        assert outcome.result == CheckResult.PASS
        assert outcome.message == "iptables; NAT on eth0"

    def test_firewall_without_backend(self, ctx, host):
        outcome = FirewallCheck(NullBackend(ctx, host), InterfaceService(ctx, host)).run()
        assert outcome.result == CheckResult.WARN

    def test_routes(self, ctx, host):
        assert RouteCheck(InterfaceService(ctx, host)).run().result == CheckResult.WARN
        host.join_network(NETWORK_ID)
        assert RouteCheck(InterfaceService(ctx, host)).run().result == CheckResult.PASS

    def test_ping(self, host):
        assert PeerPingCheck(host, "10.147.17.1").run().result == CheckResult.PASS
        host.fail("ping")
        assert PeerPingCheck(host, "10.147.17.1").run().result == CheckResult.FAIL

    def test_ping_runs_in_dry_run(self, dry_host):
        assert PeerPingCheck(dry_host, "10.147.17.1").run().result == CheckResult.PASS
        assert dry_host.spawned[-1][0] == "ping"

    def test_root_server_unreachable(self):
        with patch("ztgw.services.diagnostics.socket.create_connection", side_effect=OSError("timed out")):
            outcome = RootServerCheck("103.195.103.66").run()
        assert outcome.result == CheckResult.WARN
        assert outcome.check_name == "Root server 103.195.103.66"


class TestDiagnostics:
    @pytest.fixture
    def diagnostics(self, ctx, host, forwarding, tool_config):
        return Diagnostics(
            ctx,
            host,
            zerotier=ZeroTierClient(ctx, host),
            forwarding=forwarding,
            backend=IptablesBackend(ctx, host, tool_config.firewall),
            interfaces=InterfaceService(ctx, host),
            systemd=SystemdService(ctx, host),
        )

    @pytest.fixture(autouse=True)
    def offline_network(self):
        connection = MagicMock()
        connection.__enter__.return_value = connection
        with patch("ztgw.services.diagnostics.socket.create_connection", return_value=connection), \
                patch(
                    "ztgw.services.diagnostics.socket.getaddrinfo",
                    return_value=[(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("198.51.100.1", 0))],
                ):
            yield

    def test_check_list(self, diagnostics):
        names = [c.name for c in diagnostics.build_checks(full=True, peer="10.147.17.1")]
        assert names[0] == "System"
        assert names[-1] == "Peer reachability"
        assert "Root server 8.17.13.51" in names

    def test_run_healthy_host(self, host, diagnostics):
        host.join_network(NETWORK_ID)
        report = diagnostics.run(network_id=NETWORK_ID)

        assert report.critical_failures == []
        assert {r.check_name for r in report.issues} >= {"IPv4 forwarding"}

    def test_missing_client_is_critical(self, host, diagnostics):
        host.binaries.discard("zerotier-cli")
        report = diagnostics.run()
        assert [r.check_name for r in report.critical_failures] == ["ZeroTier installation"]

    def test_query_error_becomes_failure(self, host, diagnostics):
        host._cmd_zerotier_cli = lambda args, input_text: (
            (0, "{}", "") if args[:2] == ["-j", "info"] else (1, "", "connection refused")
        )
        report = diagnostics.run()
        membership = next(r for r in report.results if r.check_name == "Network memberships")
        assert membership.result == CheckResult.FAIL
        assert membership.remediation == "Is the zerotier-one service running?"

    def test_yaml_report(self, diagnostics):
        data = yaml.safe_load(diagnostics.run().to_yaml())
        assert data["checks"][0]["name"] == "ZeroTier installation"
        assert data["issues"] == len([c for c in data["checks"] if c["result"] in ("fail", "warn")])
