"""Firewall backend detection.

Priority order, first match wins:

1. firewalld: ``firewall-cmd`` present and the service is active
2. ufw: ``ufw`` present and ``ufw status`` reports active
3. nftables: ``nft`` present and at least one table exists
4. iptables: ``iptables`` present
5. none

Detection never fails: a probe that errors counts as "not this backend".
"""

from typing import Callable, Optional

from ztgw.core.config import FirewallConfig
from ztgw.core.context import ExecutionContext
from ztgw.core.exceptions import ZTError
from ztgw.core.executor import CommandExecutor
from ztgw.services.firewall.base import Backend, FirewallBackend, NullBackend
from ztgw.services.firewall.firewalld import FirewalldBackend
from ztgw.services.firewall.iptables import IptablesBackend
from ztgw.services.firewall.nftables import NftablesBackend
from ztgw.services.firewall.ufw import UfwBackend
from ztgw.services.systemd import SystemdService


BACKEND_CLASSES: dict[Backend, type[FirewallBackend]] = {
    Backend.IPTABLES: IptablesBackend,
    Backend.FIREWALLD: FirewalldBackend,
    Backend.UFW: UfwBackend,
    Backend.NFTABLES: NftablesBackend,
    Backend.NONE: NullBackend,
}


class BackendDetector:
    """Determines which firewall subsystem is active on the host."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        systemd: Optional[SystemdService] = None,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.systemd = systemd or SystemdService(ctx, executor)

    def _firewalld_active(self) -> bool:
        return self.executor.which("firewall-cmd") and self.systemd.is_active("firewalld")

    def _ufw_active(self) -> bool:
        if not self.executor.which("ufw"):
            return False
        result = self.executor.run(["ufw", "status"], check=False, read_only=True)
        return result.success and "Status: active" in result.stdout

    def _nftables_has_tables(self) -> bool:
        if not self.executor.which("nft"):
            return False
        result = self.executor.run(["nft", "list", "tables"], check=False, read_only=True)
        return result.success and any(
            line.startswith("table ") for line in result.stdout.splitlines()
        )

    def _iptables_present(self) -> bool:
        return self.executor.which("iptables")

    def _probe(self, probe: Callable[[], bool]) -> bool:
        try:
            return probe()
        except ZTError as e:
            self.ctx.console.debug(f"Backend probe failed: {e}")
            return False

    def detect(self) -> Backend:
        probes = [
            (Backend.FIREWALLD, self._firewalld_active),
            (Backend.UFW, self._ufw_active),
            (Backend.NFTABLES, self._nftables_has_tables),
            (Backend.IPTABLES, self._iptables_present),
        ]
        for backend, probe in probes:
            if self._probe(probe):
                self.ctx.console.verbose(f"Detected firewall backend: {backend.value}")
                return backend
        self.ctx.console.verbose("No supported firewall backend detected")
        return Backend.NONE


def create_backend(
    kind: Backend,
    ctx: ExecutionContext,
    executor: CommandExecutor,
    settings: Optional[FirewallConfig] = None,
) -> FirewallBackend:
    return BACKEND_CLASSES[kind](ctx, executor, settings)


def select_backend(
    ctx: ExecutionContext,
    executor: CommandExecutor,
    settings: Optional[FirewallConfig] = None,
) -> FirewallBackend:
    """Detect the backend once, honouring an explicit settings override."""
    settings = settings or FirewallConfig()
    if settings.backend != "auto":
        kind = Backend(settings.backend)
        ctx.console.verbose(f"Using configured firewall backend: {kind.value}")
    else:
        kind = BackendDetector(ctx, executor).detect()
    return create_backend(kind, ctx, executor, settings)
