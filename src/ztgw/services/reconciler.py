"""Gateway reconciliation.

Moves the host from its current state to a DesiredState through a fixed
sequence of states::

    UNINITIALIZED -> VALIDATED -> BACKED_UP -> JOINED
        -> FORWARDING_ENABLED -> FIREWALL_CONFIGURED -> COMPLETE

Any failure moves the machine to FAILED and stops; nothing is rolled back
automatically, but the snapshot location is reported so the operator can
run ``ztgw restore``.

Every change is an OperationStep, so a second run against an already
converged host performs only read-only checks.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from ztgw.core.context import ExecutionContext
from ztgw.core.desired_state import DesiredState
from ztgw.core.exceptions import (
    ExecutionError,
    FirewallError,
    PrerequisiteError,
    ReconcileError,
    ValidationError,
    ZTError,
)
from ztgw.core.executor import CommandExecutor
from ztgw.core.safety import ConfirmationPolicy
from ztgw.core.steps import OperationStep, StepOutcome
from ztgw.core.validation import validate_network_id
from ztgw.services.backup import BackupManager, Snapshot
from ztgw.services.firewall import Backend, FirewallBackend, GatewayRules
from ztgw.services.network import InterfaceService
from ztgw.services.sysctl import IPV6_FORWARD, ForwardingService
from ztgw.services.zerotier import ZeroTierClient


# Matches every ZeroTier interface when the real name is not known yet
WILDCARD_OVERLAY = "zt+"


class ReconcileState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    VALIDATED = "VALIDATED"
    BACKED_UP = "BACKED_UP"
    JOINED = "JOINED"
    FORWARDING_ENABLED = "FORWARDING_ENABLED"
    FIREWALL_CONFIGURED = "FIREWALL_CONFIGURED"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (ReconcileState.COMPLETE, ReconcileState.FAILED)


@dataclass
class ReconcileResult:
    state: ReconcileState
    backend: Backend
    desired: Optional[DesiredState] = None
    overlay_iface: Optional[str] = None
    snapshot: Optional[Snapshot] = None
    applied: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.applied)


class Reconciler:
    """Applies a DesiredState to the host, one state at a time."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        zerotier: ZeroTierClient,
        forwarding: ForwardingService,
        backend: FirewallBackend,
        backups: BackupManager,
        interfaces: InterfaceService,
        confirmation: Optional[ConfirmationPolicy] = None,
        take_backup: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.zerotier = zerotier
        self.forwarding = forwarding
        self.backend = backend
        self.backups = backups
        self.interfaces = interfaces
        self.confirmation = confirmation or ConfirmationPolicy.for_context(ctx)
        self.take_backup = take_backup
        self._sleep = sleep

        self.state = ReconcileState.UNINITIALIZED
        self.result = ReconcileResult(state=self.state, backend=backend.kind)

    # State machine

    def _transition(self, new_state: ReconcileState) -> None:
        if self.state.terminal:
            raise RuntimeError(f"No transitions out of {self.state.value}")
        self.ctx.run_log.transition(self.state.value, new_state.value)
        self.ctx.console.debug(f"State: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.result.state = new_state

    def _fail(self, step: ReconcileState, error: ZTError) -> ReconcileError:
        snapshot_path = str(self.result.snapshot.path) if self.result.snapshot else None
        log_path = str(self.ctx.run_log.log_path)
        self._transition(ReconcileState.FAILED)
        self.ctx.run_log.error(
            f"Reconciliation failed at {step.value}: {error.message}",
            step=step.value,
            snapshot=snapshot_path,
            log=log_path,
            details=error.details,
        )
        return ReconcileError(
            f"Reconciliation failed while reaching {step.value}: {error.message}",
            step=step.value,
            cause=error,
            snapshot_path=snapshot_path,
            log_path=log_path,
        )

    def run(self, desired: DesiredState) -> ReconcileResult:
        """Reconcile the host to ``desired``.

        Returns:
            The result; ``cancelled`` is set when the confirmation policy
            declined the change (state stays VALIDATED)

        Raises:
            ReconcileError: A step failed; the machine is in FAILED
        """
        if self.state != ReconcileState.UNINITIALIZED:
            raise RuntimeError("A Reconciler runs once; create a new one")

        with self.ctx.run_log.correlation("reconcile"):
            target = ReconcileState.VALIDATED
            try:
                desired = self._validate(desired)
                self.result.desired = desired
                self._transition(ReconcileState.VALIDATED)

                pending = self._plan(desired)
                if pending and not self.ctx.dry_run:
                    self._show_plan(pending)
                    if not self.confirmation.confirm("Apply these changes to the host?"):
                        self.ctx.console.info("Cancelled")
                        self.result.cancelled = True
                        return self.result
                elif not pending:
                    self.ctx.console.success("Host already matches the desired state")

                target = ReconcileState.BACKED_UP
                self._backup(bool(pending))
                self._transition(target)

                target = ReconcileState.JOINED
                self._ensure(self._join_step(desired))
                self._transition(target)

                target = ReconcileState.FORWARDING_ENABLED
                for step in self.forwarding.steps(desired.ipv6):
                    self._ensure(step)
                self._transition(target)

                target = ReconcileState.FIREWALL_CONFIGURED
                overlay = self._resolve_overlay(desired, wait=True)
                self.result.overlay_iface = overlay
                for step in self.backend.steps(GatewayRules(desired.phy_iface, overlay)):
                    self._ensure(step)
                self._transition(target)

                target = ReconcileState.COMPLETE
                self._transition(target)
                self._summarize(desired)
            except ZTError as e:
                raise self._fail(target, e) from e
            except OSError as e:
                error = ExecutionError(
                    f"{e.strerror or e}: {e.filename}" if e.filename else str(e),
                    hint="Run as root or with sudo",
                )
                raise self._fail(target, error) from e

        return self.result

    # Stages

    def _validate(self, desired: DesiredState) -> DesiredState:
        """Check the desired state against the host; fill discoverable defaults."""
        self.ctx.console.step("Validating desired state")
        validate_network_id(desired.network_id)

        self.zerotier.require_installed()
        if not self.zerotier.is_running():
            raise PrerequisiteError(
                "ZeroTier service is not responding",
                hint="Start it with: systemctl start zerotier-one",
            )

        if self.backend.kind == Backend.NONE:
            raise FirewallError(
                "No supported firewall backend detected",
                backend=Backend.NONE.value,
                hint="Install iptables or nftables, or enable firewalld or ufw",
            )

        phy_iface = desired.phy_iface or self.interfaces.default_route_interface()
        if not phy_iface:
            raise ValidationError(
                "Cannot determine the physical interface",
                hint="Set PHY_IFACE in the config or pass -p IFACE",
            )
        if not self.interfaces.exists(phy_iface):
            raise ValidationError(
                f"Physical interface does not exist: {phy_iface}",
                hint="List interfaces with: ip -brief link",
            )

        if desired.phy_subnet:
            if not self.interfaces.has_address_in(phy_iface, desired.phy_subnet):
                raise ValidationError(
                    f"{phy_iface} has no address inside {desired.phy_subnet}",
                    hint="Check PHY_SUBNET, or the interface address with: ip addr show " + phy_iface,
                )
            phy_subnet = desired.phy_subnet
        else:
            phy_subnet = self.interfaces.primary_subnet(phy_iface)
            if phy_subnet:
                self.ctx.console.verbose(f"Using subnet {phy_subnet} of {phy_iface}")

        if desired.ipv6 and not self.forwarding.runtime_available(IPV6_FORWARD):
            raise ValidationError(
                "IPv6 forwarding requested but IPv6 is not available on this host",
                hint="Drop ENABLE_IPV6 or enable IPv6 in the kernel",
            )

        return desired.with_host_defaults(phy_iface=phy_iface, phy_subnet=phy_subnet)

    def _join_step(self, desired: DesiredState) -> OperationStep:
        network_id = desired.network_id
        return OperationStep(
            f"Join ZeroTier network {network_id}",
            lambda: self.zerotier.is_member(network_id),
            lambda: self.zerotier.join(network_id),
        )

    def _all_steps(self, desired: DesiredState) -> list[OperationStep]:
        overlay = self._resolve_overlay(desired, wait=False)
        steps = [self._join_step(desired)]
        steps += self.forwarding.steps(desired.ipv6)
        steps += self.backend.steps(GatewayRules(desired.phy_iface, overlay))
        return steps

    def _plan(self, desired: DesiredState) -> list[OperationStep]:
        """Steps whose check currently fails."""
        return [step for step in self._all_steps(desired) if not step.is_satisfied()]

    def check(self, desired: DesiredState) -> list[tuple[str, bool]]:
        """Read-only drift report: every step and whether the host satisfies it.

        Raises:
            ZTError: If the desired state does not validate against the host
        """
        desired = self._validate(desired)
        self.result.desired = desired
        return [(step.description, step.is_satisfied()) for step in self._all_steps(desired)]

    def _show_plan(self, pending: list[OperationStep]) -> None:
        self.ctx.console.plan(step.description for step in pending)

    def _backup(self, has_changes: bool) -> None:
        if not self.take_backup:
            self.ctx.console.warn("Snapshot skipped (--no-backup)")
            return
        if not has_changes:
            self.ctx.console.verbose("Nothing to change; snapshot skipped")
            return
        self.result.snapshot = self.backups.snapshot(self.backend, self.forwarding)

    def _ensure(self, step: OperationStep) -> None:
        outcome = step.ensure(self.ctx)
        if outcome != StepOutcome.SATISFIED:
            self.result.applied.append(step.description)

    def _resolve_overlay(self, desired: DesiredState, wait: bool) -> str:
        """Overlay interface: explicit ZT_IFACE, the membership's device, or zt+.

        Rules already installed for zt+ cover every ZeroTier interface, so a
        host converged before its device name was known keeps using them.
        """
        if desired.zt_iface:
            return desired.zt_iface
        if desired.phy_iface and self.backend.rules_present(
            GatewayRules(desired.phy_iface, WILDCARD_OVERLAY)
        ):
            return WILDCARD_OVERLAY

        deadline = time.monotonic() + (self.ctx.config.runner.join_wait if wait else 0)
        while True:
            membership = self.zerotier.membership(desired.network_id)
            if membership and membership.interface:
                return membership.interface
            if self.ctx.dry_run or time.monotonic() >= deadline:
                break
            self._sleep(1)

        if wait and not self.ctx.dry_run:
            self.ctx.console.warn(
                f"Overlay interface for {desired.network_id} not known yet; "
                f"matching all ZeroTier interfaces ({WILDCARD_OVERLAY})"
            )
        return WILDCARD_OVERLAY

    def _summarize(self, desired: DesiredState) -> None:
        try:
            membership = self.zerotier.membership(desired.network_id)
        except ZTError:
            membership = None
        if membership:
            member_status = membership.status
        else:
            member_status = "not joined (dry-run)" if self.ctx.dry_run else "unknown"
        details = {
            "Network": desired.network_id,
            "Membership": member_status,
            "Physical interface": f"{desired.phy_iface} ({desired.phy_subnet or 'subnet unknown'})",
            "Overlay interface": self.result.overlay_iface,
            "Firewall backend": self.backend.kind.value,
            "IPv6 forwarding": "enabled" if desired.ipv6 else "not requested",
            "Changes": len(self.result.applied),
            "Snapshot": self.result.snapshot.path if self.result.snapshot else "none",
            "Run log": self.ctx.run_log.log_path,
        }
        title = "Gateway preview" if self.ctx.dry_run else "Gateway configuration"
        self.ctx.console.summary(title, details, ok=True)

        if membership and membership.status != "OK":
            self.ctx.console.hint(
                f"Authorize this node for {desired.network_id} in ZeroTier Central"
            )
        if desired.phy_subnet and membership and membership.assigned_addresses:
            overlay_ip = membership.assigned_addresses[0].split("/")[0]
            self.ctx.console.hint(
                f"Add a managed route {desired.phy_subnet} via {overlay_ip} in ZeroTier Central"
            )
