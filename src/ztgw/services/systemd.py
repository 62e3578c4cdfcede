"""Systemd service abstraction.

Status queries are read-only probes and run in dry-run mode too.
"""

from dataclasses import dataclass

from ztgw.core.context import ExecutionContext
from ztgw.core.executor import CommandExecutor


ZEROTIER_SERVICE = "zerotier-one"


@dataclass
class ServiceStatus:
    """Status of a systemd service."""
    name: str
    active: bool
    enabled: bool


class SystemdService:
    """Read-only queries against systemd units."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    def available(self) -> bool:
        """Check whether systemctl exists on this host."""
        return self.executor.which("systemctl")

    def is_active(self, service: str) -> bool:
        """Check if a service is active (running)."""
        if not self.available():
            return False
        result = self.executor.run(
            ["systemctl", "is-active", "--quiet", service],
            check=False,
            read_only=True,
        )
        return result.success

    def is_enabled(self, service: str) -> bool:
        if not self.available():
            return False
        result = self.executor.run(
            ["systemctl", "is-enabled", "--quiet", service],
            check=False,
            read_only=True,
        )
        return result.success

    def status(self, service: str) -> ServiceStatus:
        return ServiceStatus(
            name=service,
            active=self.is_active(service),
            enabled=self.is_enabled(service),
        )
