"""Multi-network topologies.

hub-spoke joins the hub network first, then every spoke, and turns this
node into a router between them. mesh joins every network. multi-site
and custom layouts need controller-side routes, so for those only the
steps are printed.
"""

from dataclasses import dataclass, field
from typing import Optional

from ztgw.core.context import ExecutionContext
from ztgw.core.desired_state import TopologyConfig, TopologyRole, TopologyType
from ztgw.core.exceptions import ValidationError
from ztgw.core.executor import CommandExecutor
from ztgw.core.safety import CheckOutcome, CheckResult, CheckRunner, ConfirmationPolicy, HostCheck
from ztgw.core.steps import OperationStep, StepOutcome
from ztgw.services.diagnostics import InstallationCheck
from ztgw.services.network import InterfaceService, NetworkInterface
from ztgw.services.sysctl import IPV4_FORWARD, ForwardingService
from ztgw.services.zerotier import Membership, ZeroTierClient


REQUIRED_TOOLS = ("ip", "sysctl")
FIREWALL_TOOLS = ("iptables", "nft")

MULTI_SITE_GUIDANCE = (
    "Deploy a gateway at each site: ztgw configure -n NETWORK_ID",
    "Check NAT and forwarding on each gateway: ztgw check",
    "Add a managed route per site subnet in ZeroTier Central",
    "Verify site-to-site connectivity: ztgw diagnose -p REMOTE_IP",
)


class TopologyTypeCheck(HostCheck):
    name = "Topology type"
    critical = True

    def __init__(self, topology: TopologyConfig) -> None:
        self.topology = topology

    def run(self) -> CheckOutcome:
        if self.topology.type is None:
            return self.outcome(
                CheckResult.FAIL,
                "Topology type not specified",
                remediation=f"Set TYPE to one of: {', '.join(t.value for t in TopologyType)}",
            )
        return self.outcome(CheckResult.PASS, self.topology.type.value)


class TopologyNetworksCheck(HostCheck):
    name = "Networks"
    critical = True

    def __init__(self, topology: TopologyConfig) -> None:
        self.topology = topology

    def run(self) -> CheckOutcome:
        networks = self.topology.networks
        if self.topology.type in (TopologyType.HUB_SPOKE, TopologyType.MESH) and not networks:
            return self.outcome(
                CheckResult.FAIL,
                "No networks defined",
                remediation="Add NETWORK=<16 hex digits> lines",
            )
        if self.topology.type == TopologyType.HUB_SPOKE and len(networks) == 1:
            return self.outcome(CheckResult.WARN, f"Hub {networks[0]} has no spokes")
        if not networks:
            return self.outcome(CheckResult.SKIP, "No networks defined")
        return self.outcome(CheckResult.PASS, ", ".join(networks))


class RequiredToolsCheck(HostCheck):
    name = "Required tools"
    critical = False

    def __init__(self, executor: CommandExecutor) -> None:
        self.executor = executor

    def run(self) -> CheckOutcome:
        missing = [tool for tool in REQUIRED_TOOLS if not self.executor.which(tool)]
        if not any(self.executor.which(tool) for tool in FIREWALL_TOOLS):
            missing.append(" or ".join(FIREWALL_TOOLS))
        if missing:
            return self.outcome(
                CheckResult.WARN,
                f"Missing: {', '.join(missing)}",
                remediation="Install the iproute2, procps and iptables/nftables packages",
            )
        return self.outcome(CheckResult.PASS, "All present")


@dataclass
class TopologyStatus:
    type: Optional[TopologyType]
    memberships: list[Membership] = field(default_factory=list)
    forwarding: bool = False
    overlay_interfaces: list[NetworkInterface] = field(default_factory=list)

    def missing(self, topology: TopologyConfig) -> list[str]:
        """Configured networks this node has not joined."""
        joined = {m.network_id for m in self.memberships}
        return [n for n in topology.networks if n not in joined]


class TopologyManager:
    """Validate, deploy, inspect and tear down a topology."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        zerotier: ZeroTierClient,
        forwarding: ForwardingService,
        interfaces: InterfaceService,
        confirmation: Optional[ConfirmationPolicy] = None,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.zerotier = zerotier
        self.forwarding = forwarding
        self.interfaces = interfaces
        self.confirmation = confirmation or ConfirmationPolicy.for_context(ctx)

    def validate(self, topology: TopologyConfig) -> list[CheckOutcome]:
        runner = CheckRunner(
            [
                TopologyTypeCheck(topology),
                TopologyNetworksCheck(topology),
                InstallationCheck(self.zerotier),
                RequiredToolsCheck(self.executor),
            ],
            title="Topology validation",
        )
        results = runner.run_all()
        runner.display_results(results, verbose=self.ctx.is_verbose)

        failures = runner.critical_failures(results)
        if failures:
            raise ValidationError(
                "Topology validation failed",
                details=[f"{r.check_name}: {r.message}" for r in failures],
            )
        return results

    def deploy(self, topology: TopologyConfig) -> list[str]:
        """Validate, then apply the topology. Returns descriptions of applied steps."""
        self.validate(topology)

        if topology.type in (TopologyType.MULTI_SITE, TopologyType.CUSTOM):
            self._show_guidance(topology)
            return []

        steps = self.steps(topology)
        pending = [step for step in steps if not step.is_satisfied()]
        if not pending:
            self.ctx.console.success("Topology already deployed")
            return []

        if not self.ctx.dry_run:
            for step in pending:
                self.ctx.console.print(f"  - {step.description}")
            if not self.confirmation.confirm(f"Deploy {topology.type.value} topology?"):
                self.ctx.console.info("Cancelled")
                return []

        applied = []
        with self.ctx.run_log.correlation(f"topology-{topology.type.value}"):
            for step in steps:
                if step.ensure(self.ctx) != StepOutcome.SATISFIED:
                    applied.append(step.description)

        self.ctx.console.success(f"{topology.type.value} topology deployed")
        self.ctx.console.hint("Authorize this node on every network in ZeroTier Central")
        if topology.type == TopologyType.HUB_SPOKE:
            self.ctx.console.hint("Add managed routes for each spoke network via this hub")
        return applied

    def steps(self, topology: TopologyConfig) -> list[OperationStep]:
        steps = []
        for state in topology.desired_states():
            label = state.role.value if state.role != TopologyRole.STANDALONE else "mesh"
            network_id = state.network_id
            steps.append(OperationStep(
                f"Join {label} network {network_id}",
                lambda network_id=network_id: self.zerotier.is_member(network_id),
                lambda network_id=network_id: self.zerotier.join(network_id),
            ))
        if topology.type == TopologyType.HUB_SPOKE:
            steps += self.forwarding.steps(topology.ipv6)
        return steps

    def _show_guidance(self, topology: TopologyConfig) -> None:
        if topology.type == TopologyType.CUSTOM:
            self.ctx.console.warn("Custom topologies are configured by hand")
            self.ctx.console.info("Use the topology file as the plan for a manual setup")
            return
        self.ctx.console.warn("Multi-site deployment needs per-site configuration")
        for number, line in enumerate(MULTI_SITE_GUIDANCE, 1):
            self.ctx.console.print(f"  {number}. {line}")

    def status(self, topology: Optional[TopologyConfig] = None) -> TopologyStatus:
        self.zerotier.require_installed()
        return TopologyStatus(
            type=topology.type if topology else None,
            memberships=self.zerotier.list_memberships(),
            forwarding=self.forwarding.runtime_enabled(IPV4_FORWARD),
            overlay_interfaces=self.interfaces.overlay_interfaces(),
        )

    def cleanup(self) -> list[str]:
        """Leave every joined network after confirmation. Returns the ids left."""
        memberships = self.zerotier.list_memberships()
        if not memberships:
            self.ctx.console.info("No networks joined")
            return []

        self.ctx.console.warn(f"This leaves all {len(memberships)} ZeroTier networks")
        if not self.confirmation.confirm("Leave all networks?"):
            self.ctx.console.info("Cleanup cancelled")
            return []

        left = []
        for membership in memberships:
            self.zerotier.leave(membership.network_id)
            left.append(membership.network_id)
        self.ctx.console.success(f"Left {len(left)} networks")
        return left
