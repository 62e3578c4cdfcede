"""Health checks and the monitor loop.

A HealthReport is one snapshot of the ZeroTier service, the watched
memberships, the peer count and the forwarding flags. The monitor polls
on an interval and alerts on edges only: a condition that stays bad
produces one alert when it starts and one when it clears.
"""

import signal
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ztgw.core.context import ExecutionContext
from ztgw.core.desired_state import DesiredState
from ztgw.core.exceptions import ZTError
from ztgw.core.runlog import EventType
from ztgw.services.alerts import Alert, AlertDispatcher, AlertKind
from ztgw.services.network import InterfaceService
from ztgw.services.sysctl import IPV4_FORWARD, ForwardingService
from ztgw.services.zerotier import STATUS_OK, ZeroTierClient


STATUS_MISSING = "NOT_JOINED"
STATUS_UNAVAILABLE = "UNAVAILABLE"


@dataclass(frozen=True)
class NetworkHealth:
    network_id: str
    status: str
    interface: Optional[str] = None
    interface_up: bool = False
    addresses: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK


@dataclass(frozen=True)
class HealthReport:
    timestamp: datetime
    service_up: bool
    node_address: Optional[str] = None
    networks: tuple[NetworkHealth, ...] = ()
    peer_count: int = 0
    forwarding: dict[str, bool] = field(default_factory=dict)

    def network(self, network_id: str) -> Optional[NetworkHealth]:
        for network in self.networks:
            if network.network_id == network_id:
                return network
        return None

    @property
    def issues(self) -> list[str]:
        if not self.service_up:
            return ["ZeroTier service is not responding"]

        issues = []
        for network in self.networks:
            if not network.ok:
                issues.append(f"Network {network.network_id} status is {network.status}")
                continue
            if not network.interface:
                issues.append(f"Network {network.network_id} has no interface")
            elif not network.interface_up:
                issues.append(f"Interface {network.interface} is down")
            if not network.addresses:
                issues.append(f"Network {network.network_id} has no assigned address")
        if self.peer_count == 0:
            issues.append("No connected peers")
        for key, enabled in self.forwarding.items():
            if not enabled:
                issues.append(f"{key} is disabled")
        return issues

    @property
    def healthy(self) -> bool:
        return not self.issues

    def metrics_line(self) -> str:
        ok = sum(1 for n in self.networks if n.ok)
        return (
            f"node={self.node_address or '-'} networks={ok}/{len(self.networks)} "
            f"peers={self.peer_count} healthy={'yes' if self.healthy else 'no'}"
        )


def detect_transitions(
    previous: Optional[HealthReport],
    current: HealthReport,
    last_up: Optional[HealthReport] = None,
) -> list[Alert]:
    """Alerts for conditions that changed between two reports.

    The first report is the baseline and yields no alerts. While the
    service is down, network and peer changes are folded into the single
    service alert. When it comes back, networks and peers are compared
    against ``last_up``, the last report taken with the service up.
    """
    if previous is None:
        return []

    alerts = []
    if previous.service_up and not current.service_up:
        return [Alert(
            AlertKind.SERVICE_DOWN,
            "ZeroTier service is down",
            "zerotier-one stopped responding to zerotier-cli.",
        )]
    if not previous.service_up and current.service_up:
        alerts.append(Alert(
            AlertKind.SERVICE_RESTORED,
            "ZeroTier service is back",
            "zerotier-one is responding again.",
        ))
    if not current.service_up:
        return alerts

    if not previous.service_up:
        if last_up is None:
            return alerts
        previous = last_up

    for network in current.networks:
        before = previous.network(network.network_id)
        was_ok = before is not None and before.ok
        if was_ok and not network.ok:
            alerts.append(Alert(
                AlertKind.NETWORK_DEGRADED,
                f"Network {network.network_id} is {network.status}",
                f"Membership status changed from {STATUS_OK} to {network.status}.",
                network_id=network.network_id,
            ))
        elif before is not None and not was_ok and network.ok:
            alerts.append(Alert(
                AlertKind.NETWORK_RESTORED,
                f"Network {network.network_id} is {STATUS_OK} again",
                f"Membership status changed from {before.status} to {STATUS_OK}.",
                network_id=network.network_id,
            ))
    for before in previous.networks:
        if before.ok and current.network(before.network_id) is None:
            alerts.append(Alert(
                AlertKind.NETWORK_DEGRADED,
                f"Network {before.network_id} is {STATUS_MISSING}",
                "The membership disappeared from listnetworks.",
                network_id=before.network_id,
            ))

    if previous.peer_count > 0 and current.peer_count == 0:
        alerts.append(Alert(
            AlertKind.PEERS_LOST,
            "No ZeroTier peers connected",
            f"Peer count dropped from {previous.peer_count} to 0.",
        ))
    elif previous.peer_count == 0 and current.peer_count > 0:
        alerts.append(Alert(
            AlertKind.PEERS_RESTORED,
            "ZeroTier peers reconnected",
            f"{current.peer_count} peers connected.",
        ))
    return alerts


class HealthChecker:
    """Builds HealthReports from live host state."""

    def __init__(
        self,
        ctx: ExecutionContext,
        zerotier: ZeroTierClient,
        forwarding: ForwardingService,
        interfaces: InterfaceService,
    ) -> None:
        self.ctx = ctx
        self.zerotier = zerotier
        self.forwarding = forwarding
        self.interfaces = interfaces

    def check_once(self, desired: Optional[DesiredState] = None) -> HealthReport:
        """Probe the host once.

        With a desired state only its network is watched and IPv6 forwarding
        is included when requested; otherwise every joined network is.
        """
        now = datetime.now()
        keys = self.forwarding.keys(desired.ipv6) if desired else [IPV4_FORWARD]
        forwarding = {key: self.forwarding.runtime_enabled(key) for key in keys}

        info = self.zerotier.info()
        if info is None:
            networks = ()
            if desired:
                networks = (NetworkHealth(desired.network_id, STATUS_UNAVAILABLE),)
            return HealthReport(timestamp=now, service_up=False, networks=networks, forwarding=forwarding)

        memberships = {m.network_id: m for m in self.zerotier.list_memberships()}
        watched = [desired.network_id] if desired else sorted(memberships)

        networks = []
        for network_id in watched:
            membership = memberships.get(network_id)
            if membership is None:
                networks.append(NetworkHealth(network_id, STATUS_MISSING))
                continue
            interface_up = False
            if membership.interface:
                iface = self.interfaces.get(membership.interface)
                interface_up = iface is not None and iface.is_up
            networks.append(NetworkHealth(
                network_id=network_id,
                status=membership.status,
                interface=membership.interface,
                interface_up=interface_up,
                addresses=membership.assigned_addresses,
            ))

        return HealthReport(
            timestamp=now,
            service_up=True,
            node_address=info.address,
            networks=tuple(networks),
            peer_count=len(self.zerotier.list_peers()),
            forwarding=forwarding,
        )


class Monitor:
    """Polls a HealthChecker and dispatches edge alerts until cancelled."""

    def __init__(
        self,
        ctx: ExecutionContext,
        checker: HealthChecker,
        dispatcher: Optional[AlertDispatcher] = None,
    ) -> None:
        self.ctx = ctx
        self.checker = checker
        self.dispatcher = dispatcher
        self.previous: Optional[HealthReport] = None
        self.last_up: Optional[HealthReport] = None
        self._cancel = threading.Event()

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def install_signal_handlers(self) -> None:
        """Stop the loop cleanly on SIGINT and SIGTERM."""
        for signum in (signal.SIGINT, signal.SIGTERM):
            signal.signal(signum, lambda *_: self.cancel())

    def poll(self, desired: Optional[DesiredState] = None) -> tuple[HealthReport, list[Alert]]:
        report = self.checker.check_once(desired)
        alerts = detect_transitions(self.previous, report, self.last_up)
        self.previous = report
        if report.service_up:
            self.last_up = report

        self.ctx.run_log.info(
            EventType.HEALTH,
            "healthy" if report.healthy else "unhealthy",
            service_up=report.service_up,
            peers=report.peer_count,
            networks={n.network_id: n.status for n in report.networks},
            issues=report.issues,
        )
        if self.dispatcher:
            for alert in alerts:
                self.dispatcher.send(alert, report)
        return report, alerts

    def watch(
        self,
        desired: Optional[DesiredState] = None,
        interval: float = 60,
        on_report: Optional[Callable[[HealthReport, list[Alert]], None]] = None,
        max_polls: Optional[int] = None,
    ) -> int:
        """Poll until cancelled or max_polls is reached. Returns the poll count."""
        polls = 0
        while not self.cancelled:
            try:
                report, alerts = self.poll(desired)
            except ZTError as e:
                self.ctx.console.error(f"Health check failed: {e.message}")
                self.ctx.run_log.error("Health check failed", details=e.details)
            else:
                if on_report:
                    on_report(report, alerts)
            polls += 1
            if max_polls is not None and polls >= max_polls:
                break
            if self._cancel.wait(interval):
                break
        return polls
