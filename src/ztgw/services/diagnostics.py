"""Read-only troubleshooting checks.

Every check only observes the host; nothing here mutates state, so the
full set runs the same way with or without --dry-run.
"""

import platform
import socket
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import yaml

from ztgw.core.context import ExecutionContext
from ztgw.core.executor import CommandExecutor
from ztgw.core.safety import (
    CheckOutcome,
    CheckResult,
    CheckRunner,
    HostCheck,
    parse_os_release,
)
from ztgw.services.firewall import Backend, FirewallBackend, GatewayRules
from ztgw.services.network import OVERLAY_PREFIX, InterfaceService
from ztgw.services.sysctl import IPV4_FORWARD, IPV6_FORWARD, ForwardingService
from ztgw.services.systemd import ZEROTIER_SERVICE, SystemdService
from ztgw.services.zerotier import ZeroTierClient


ZT_PORT = 9993
ROOT_SERVERS = ("103.195.103.66", "8.17.13.51")
DNS_PROBE_HOST = "my.zerotier.com"
CONNECT_TIMEOUT = 3


class InstallationCheck(HostCheck):
    name = "ZeroTier installation"
    critical = True

    def __init__(self, zerotier: ZeroTierClient) -> None:
        self.zerotier = zerotier

    def run(self) -> CheckOutcome:
        if not self.zerotier.is_installed():
            return self.outcome(
                CheckResult.FAIL,
                "zerotier-cli not found",
                remediation="Install ZeroTier with: ztgw install",
            )
        version = self.zerotier.version() or "unknown"
        return self.outcome(CheckResult.PASS, f"Installed (version {version})")


class ServiceCheck(HostCheck):
    name = "ZeroTier service"
    critical = True

    def __init__(self, zerotier: ZeroTierClient, systemd: SystemdService) -> None:
        self.zerotier = zerotier
        self.systemd = systemd

    def run(self) -> CheckOutcome:
        if not self.zerotier.is_installed():
            return self.outcome(CheckResult.SKIP, "Client not installed")

        details = {}
        if self.systemd.available():
            status = self.systemd.status(ZEROTIER_SERVICE)
            details = {"active": status.active, "enabled": status.enabled}

        info = self.zerotier.info()
        if info is None:
            return self.outcome(
                CheckResult.FAIL,
                "Service is not responding",
                details=details,
                remediation=f"systemctl start {ZEROTIER_SERVICE}",
            )
        state = "ONLINE" if info.online else "OFFLINE"
        details.update({"address": info.address, "version": info.version})
        result = CheckResult.PASS if info.online else CheckResult.WARN
        return self.outcome(result, f"Node {info.address} is {state}", details=details)


class MembershipCheck(HostCheck):
    """Joined networks; with a network id, that network must be OK."""

    name = "Network memberships"
    critical = False

    def __init__(self, zerotier: ZeroTierClient, network_id: Optional[str] = None) -> None:
        self.zerotier = zerotier
        self.network_id = network_id.lower() if network_id else None

    def run(self) -> CheckOutcome:
        if not self.zerotier.is_running():
            return self.outcome(CheckResult.SKIP, "Service not running")

        memberships = self.zerotier.list_memberships()
        details: dict[str, Any] = {
            m.network_id: f"{m.status} {m.interface or '-'} {','.join(m.assigned_addresses) or '-'}"
            for m in memberships
        }

        if self.network_id:
            membership = next((m for m in memberships if m.network_id == self.network_id), None)
            if membership is None:
                return self.outcome(
                    CheckResult.FAIL,
                    f"Not a member of {self.network_id}",
                    details=details,
                    remediation=f"zerotier-cli join {self.network_id}",
                )
            if not membership.ok:
                return self.outcome(
                    CheckResult.WARN,
                    f"{self.network_id} status is {membership.status}",
                    details=details,
                    remediation="Authorize this node in ZeroTier Central",
                )
            return self.outcome(
                CheckResult.PASS,
                f"{self.network_id} OK on {membership.interface or 'unknown interface'}",
                details=details,
            )

        if not memberships:
            return self.outcome(
                CheckResult.WARN,
                "No networks joined",
                remediation="ztgw configure -n NETWORK_ID",
            )
        not_ok = [m.network_id for m in memberships if not m.ok]
        if not_ok:
            return self.outcome(
                CheckResult.WARN,
                f"{len(memberships)} joined, not OK: {', '.join(not_ok)}",
                details=details,
            )
        return self.outcome(CheckResult.PASS, f"{len(memberships)} joined, all OK", details=details)


class PeerCheck(HostCheck):
    name = "Peers"
    critical = False

    def __init__(self, zerotier: ZeroTierClient) -> None:
        self.zerotier = zerotier

    def run(self) -> CheckOutcome:
        if not self.zerotier.is_running():
            return self.outcome(CheckResult.SKIP, "Service not running")

        peers = self.zerotier.list_peers()
        if not peers:
            return self.outcome(
                CheckResult.WARN,
                "No peers",
                remediation=f"Check that UDP {ZT_PORT} is allowed outbound",
            )
        roles = Counter(peer.role or "UNKNOWN" for peer in peers)
        return self.outcome(CheckResult.PASS, f"{len(peers)} peers", details=dict(roles))


class ForwardingCheck(HostCheck):
    """Forwarding is optional on plain members, so disabled only warns."""

    critical = False

    def __init__(self, forwarding: ForwardingService, key: str) -> None:
        self.forwarding = forwarding
        self.key = key

    @property
    def name(self) -> str:
        return "IPv6 forwarding" if self.key == IPV6_FORWARD else "IPv4 forwarding"

    def run(self) -> CheckOutcome:
        if not self.forwarding.runtime_available(self.key):
            return self.outcome(CheckResult.SKIP, f"{self.key} not available")

        details = {
            "runtime": self.forwarding.runtime_enabled(self.key),
            "persisted": self.forwarding.persisted_enabled(self.key),
        }
        if not details["runtime"]:
            return self.outcome(
                CheckResult.WARN,
                "Disabled (needed only on gateways)",
                details=details,
                remediation=f"sysctl -w {self.key}=1",
            )
        if not details["persisted"]:
            return self.outcome(
                CheckResult.WARN,
                "Enabled now but not persisted",
                details=details,
                remediation=f"Set {self.key} = 1 in {self.forwarding.sysctl_conf}",
            )
        return self.outcome(CheckResult.PASS, "Enabled", details=details)


class FirewallCheck(HostCheck):
    name = "Firewall"
    critical = False

    def __init__(self, backend: FirewallBackend, interfaces: InterfaceService) -> None:
        self.backend = backend
        self.interfaces = interfaces

    def run(self) -> CheckOutcome:
        if self.backend.kind == Backend.NONE:
            return self.outcome(
                CheckResult.WARN,
                "No supported firewall backend detected",
                remediation="Install iptables or nftables",
            )

        phy_iface = self.interfaces.default_route_interface()
        if not phy_iface:
            return self.outcome(CheckResult.WARN, f"{self.backend.kind.value}; no default route")

        rules = GatewayRules(phy_iface, f"{OVERLAY_PREFIX}+")
        details = {
            "backend": self.backend.kind.value,
            "masquerade": self.backend.has_masquerade(rules),
        }
        if not details["masquerade"]:
            return self.outcome(
                CheckResult.WARN,
                f"{self.backend.kind.value}; no NAT on {phy_iface}",
                details=details,
                remediation="ztgw configure (only needed on gateways)",
            )
        return self.outcome(
            CheckResult.PASS,
            f"{self.backend.kind.value}; NAT on {phy_iface}",
            details=details,
        )


class RouteCheck(HostCheck):
    name = "Routing"
    critical = False

    def __init__(self, interfaces: InterfaceService) -> None:
        self.interfaces = interfaces

    def run(self) -> CheckOutcome:
        routes = self.interfaces.routes()
        overlay = [r for r in routes if f" dev {OVERLAY_PREFIX}" in f" {r}"]
        if not overlay:
            return self.outcome(CheckResult.WARN, "No routes via ZeroTier interfaces")
        return self.outcome(
            CheckResult.PASS,
            f"{len(overlay)} routes via ZeroTier",
            details={str(i): route for i, route in enumerate(overlay, 1)},
        )


class PeerPingCheck(HostCheck):
    name = "Peer reachability"
    critical = False

    def __init__(self, executor: CommandExecutor, address: str) -> None:
        self.executor = executor
        self.address = address

    def run(self) -> CheckOutcome:
        result = self.executor.run(
            ["ping", "-c", "3", "-W", "2", self.address],
            check=False,
            read_only=True,
        )
        if not result.success:
            return self.outcome(
                CheckResult.FAIL,
                f"{self.address} did not answer",
                remediation="Check the peer is online and its firewall allows ICMP",
            )
        summary = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ""
        return self.outcome(CheckResult.PASS, f"{self.address} answered", details={"rtt": summary})


class DnsCheck(HostCheck):
    name = "DNS"
    critical = False

    def __init__(self, hostname: str = DNS_PROBE_HOST) -> None:
        self.hostname = hostname

    def run(self) -> CheckOutcome:
        try:
            infos = socket.getaddrinfo(self.hostname, None)
        except (socket.gaierror, UnicodeError) as e:
            return self.outcome(
                CheckResult.WARN,
                f"Cannot resolve {self.hostname}",
                details={"error": str(e)},
                remediation="Check /etc/resolv.conf",
            )
        addresses = sorted({info[4][0] for info in infos})
        return self.outcome(
            CheckResult.PASS,
            f"{self.hostname} resolves",
            details={"addresses": ", ".join(addresses)},
        )


class RootServerCheck(HostCheck):
    critical = False

    def __init__(self, address: str, port: int = ZT_PORT, timeout: float = CONNECT_TIMEOUT) -> None:
        self.address = address
        self.port = port
        self.timeout = timeout

    @property
    def name(self) -> str:
        return f"Root server {self.address}"

    def run(self) -> CheckOutcome:
        try:
            with socket.create_connection((self.address, self.port), timeout=self.timeout):
                pass
        except OSError as e:
            return self.outcome(
                CheckResult.WARN,
                f"Cannot reach {self.address}:{self.port}",
                details={"error": str(e)},
                remediation=f"Allow outbound traffic to port {self.port}",
            )
        return self.outcome(CheckResult.PASS, f"Reached {self.address}:{self.port}")


class SystemInfoCheck(HostCheck):
    name = "System"
    critical = False

    def __init__(self, interfaces: InterfaceService) -> None:
        self.interfaces = interfaces

    def run(self) -> CheckOutcome:
        os_release = parse_os_release() or {}
        details: dict[str, Any] = {
            "kernel": platform.release(),
            "architecture": platform.machine(),
        }
        for iface in self.interfaces.all_interfaces():
            addresses = ", ".join(str(a) for a in iface.addresses) or "-"
            details[iface.name] = f"{iface.state} {addresses}"
        return self.outcome(
            CheckResult.PASS,
            os_release.get("PRETTY_NAME", platform.system()),
            details=details,
        )


@dataclass
class DiagnosticReport:
    started_at: datetime
    results: list[CheckOutcome]
    critical_failures: list[CheckOutcome]

    @property
    def issues(self) -> list[CheckOutcome]:
        return [r for r in self.results if r.result in (CheckResult.FAIL, CheckResult.WARN)]

    def to_yaml(self) -> str:
        return yaml.safe_dump(
            {
                "generated": self.started_at.isoformat(timespec="seconds"),
                "issues": len(self.issues),
                "critical_failures": [r.check_name for r in self.critical_failures],
                "checks": [
                    {
                        "name": r.check_name,
                        "result": r.result.value,
                        "message": r.message,
                        "details": r.details,
                        "remediation": r.remediation,
                    }
                    for r in self.results
                ],
            },
            default_flow_style=False,
            sort_keys=False,
        )


class Diagnostics:
    """Assembles and runs the diagnostic checks."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        zerotier: ZeroTierClient,
        forwarding: ForwardingService,
        backend: FirewallBackend,
        interfaces: InterfaceService,
        systemd: SystemdService,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.zerotier = zerotier
        self.forwarding = forwarding
        self.backend = backend
        self.interfaces = interfaces
        self.systemd = systemd

    def build_checks(
        self,
        network_id: Optional[str] = None,
        peer: Optional[str] = None,
        full: bool = False,
    ) -> list[HostCheck]:
        checks: list[HostCheck] = []
        if full:
            checks.append(SystemInfoCheck(self.interfaces))
        checks += [
            InstallationCheck(self.zerotier),
            ServiceCheck(self.zerotier, self.systemd),
            MembershipCheck(self.zerotier, network_id),
            PeerCheck(self.zerotier),
            ForwardingCheck(self.forwarding, IPV4_FORWARD),
            ForwardingCheck(self.forwarding, IPV6_FORWARD),
            FirewallCheck(self.backend, self.interfaces),
            RouteCheck(self.interfaces),
            DnsCheck(),
        ]
        checks += [RootServerCheck(address) for address in ROOT_SERVERS]
        if peer:
            checks.append(PeerPingCheck(self.executor, peer))
        return checks

    def run(
        self,
        network_id: Optional[str] = None,
        peer: Optional[str] = None,
        full: bool = False,
    ) -> DiagnosticReport:
        started_at = datetime.now()
        runner = CheckRunner(self.build_checks(network_id, peer, full), title="Diagnostics")
        results = runner.run_all()
        runner.display_results(results, verbose=self.ctx.is_verbose)
        return DiagnosticReport(
            started_at=started_at,
            results=results,
            critical_failures=runner.critical_failures(results),
        )
