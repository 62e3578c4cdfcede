"""Firewall backend interface.

A backend knows how to check and add the three gateway rules for a
(physical, overlay) interface pair, how to persist them across reboots,
and how to dump and reload its state for snapshots.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from ztgw.core.config import FirewallConfig
from ztgw.core.context import ExecutionContext
from ztgw.core.exceptions import CommandTimeoutError, ExecutionError, FirewallError
from ztgw.core.executor import CommandExecutor, RunResult
from ztgw.core.steps import OperationStep


class Backend(str, Enum):
    """Firewall subsystem."""
    IPTABLES = "iptables"
    FIREWALLD = "firewalld"
    UFW = "ufw"
    NFTABLES = "nftables"
    NONE = "none"


class Direction(str, Enum):
    """Forward-accept rule direction."""
    OUTBOUND = "outbound"  # overlay -> physical
    RETURN = "return"      # physical -> overlay, established traffic only


@dataclass(frozen=True)
class GatewayRules:
    """The interface pair a gateway NATs between."""
    phy_iface: str
    overlay_iface: str

    def forward_pair(self, direction: Direction) -> tuple[str, str]:
        """(in interface, out interface) for a forward rule."""
        if direction == Direction.OUTBOUND:
            return self.overlay_iface, self.phy_iface
        return self.phy_iface, self.overlay_iface


class FirewallBackend(ABC):
    """Base class for firewall adapters."""

    kind: Backend
    binary: str

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        settings: Optional[FirewallConfig] = None,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.settings = settings or FirewallConfig()

    # Rule checks and mutations

    @abstractmethod
    def has_masquerade(self, rules: GatewayRules) -> bool:
        ...

    @abstractmethod
    def add_masquerade(self, rules: GatewayRules) -> None:
        ...

    @abstractmethod
    def has_forward(self, rules: GatewayRules, direction: Direction) -> bool:
        ...

    @abstractmethod
    def add_forward(self, rules: GatewayRules, direction: Direction) -> None:
        ...

    @abstractmethod
    def is_persisted(self, rules: GatewayRules) -> bool:
        """Check that the rules survive a reboot."""
        ...

    @abstractmethod
    def persist(self, rules: GatewayRules) -> None:
        ...

    # Snapshot support

    @abstractmethod
    def dump(self) -> str:
        """Current live rule set as text."""
        ...

    @abstractmethod
    def persisted_files(self) -> list[Path]:
        """Files holding the backend's boot-time rules."""
        ...

    @abstractmethod
    def reload(self, dump_file: Optional[Path] = None) -> None:
        """Reload live rules after persisted files were restored.

        Args:
            dump_file: Rule dump captured with ``dump()``, for backends
                that can load it directly
        """
        ...

    # Composition

    def rules_present(self, rules: GatewayRules) -> bool:
        return (
            self.has_masquerade(rules)
            and self.has_forward(rules, Direction.OUTBOUND)
            and self.has_forward(rules, Direction.RETURN)
        )

    def steps(self, rules: GatewayRules) -> list[OperationStep]:
        """Idempotent steps that bring the gateway rules into place."""
        phy, overlay = rules.phy_iface, rules.overlay_iface
        return [
            OperationStep(
                f"Masquerade traffic leaving {phy} ({self.kind.value})",
                lambda: self.has_masquerade(rules),
                lambda: self.add_masquerade(rules),
            ),
            OperationStep(
                f"Accept forwarding {overlay} -> {phy}",
                lambda: self.has_forward(rules, Direction.OUTBOUND),
                lambda: self.add_forward(rules, Direction.OUTBOUND),
            ),
            OperationStep(
                f"Accept return traffic {phy} -> {overlay}",
                lambda: self.has_forward(rules, Direction.RETURN),
                lambda: self.add_forward(rules, Direction.RETURN),
            ),
            OperationStep(
                f"Persist {self.kind.value} rules",
                lambda: self.is_persisted(rules),
                lambda: self.persist(rules),
            ),
        ]

    # Helpers

    def _probe(self, args: list[str]) -> RunResult:
        """Run a read-only query; never raises on non-zero exit."""
        return self.executor.run(args, check=False, read_only=True)

    def _apply(self, args: list[str], description: Optional[str] = None) -> RunResult:
        """Run a mutating command, converting failures to FirewallError."""
        try:
            return self.executor.run(args, description=description)
        except CommandTimeoutError:
            raise
        except ExecutionError as e:
            raise FirewallError(
                f"{self.kind.value} command failed: {e.command}",
                rule=e.command,
                backend=self.kind.value,
                details=e.details,
            ) from e

    def _file_contains(self, path: Path, lines: list[str]) -> bool:
        content = self.executor.read_file(path)
        if content is None:
            return False
        present = {line.strip() for line in content.splitlines()}
        return all(line in present for line in lines)


class NullBackend(FirewallBackend):
    """No supported firewall found: every rule operation fails."""

    kind = Backend.NONE
    binary = ""

    def _unsupported(self) -> FirewallError:
        return FirewallError(
            "No supported firewall backend detected",
            backend=self.kind.value,
            hint="Install iptables or nftables, or enable firewalld or ufw",
        )

    def has_masquerade(self, rules: GatewayRules) -> bool:
        raise self._unsupported()

    def add_masquerade(self, rules: GatewayRules) -> None:
        raise self._unsupported()

    def has_forward(self, rules: GatewayRules, direction: Direction) -> bool:
        raise self._unsupported()

    def add_forward(self, rules: GatewayRules, direction: Direction) -> None:
        raise self._unsupported()

    def is_persisted(self, rules: GatewayRules) -> bool:
        raise self._unsupported()

    def persist(self, rules: GatewayRules) -> None:
        raise self._unsupported()

    def dump(self) -> str:
        return ""

    def persisted_files(self) -> list[Path]:
        return []

    def reload(self, dump_file: Optional[Path] = None) -> None:
        return None

    def steps(self, rules: GatewayRules) -> list[OperationStep]:
        raise self._unsupported()
