"""Iptables backend.

Rules are checked with ``-C`` before being appended with ``-A``; persisted
rules are written with ``iptables-save`` and verified by looking for the
rules' save-format lines in the rules file.
"""

from pathlib import Path
from typing import Optional

from ztgw.core.exceptions import FirewallError
from ztgw.services.firewall.base import Backend, Direction, FirewallBackend, GatewayRules


def masquerade_spec(rules: GatewayRules) -> list[str]:
    """POSTROUTING rule spec (without table/chain)."""
    return ["-o", rules.phy_iface, "-j", "MASQUERADE"]


def forward_spec(rules: GatewayRules, direction: Direction) -> list[str]:
    """FORWARD rule spec (without chain)."""
    in_iface, out_iface = rules.forward_pair(direction)
    spec = ["-i", in_iface, "-o", out_iface]
    if direction == Direction.RETURN:
        spec += ["-m", "conntrack", "--ctstate", "RELATED,ESTABLISHED"]
    return spec + ["-j", "ACCEPT"]


def save_lines(rules: GatewayRules) -> list[str]:
    """The rules as ``iptables-save`` prints them."""
    return [
        "-A POSTROUTING " + " ".join(masquerade_spec(rules)),
        "-A FORWARD " + " ".join(forward_spec(rules, Direction.OUTBOUND)),
        "-A FORWARD " + " ".join(forward_spec(rules, Direction.RETURN)),
    ]


class IptablesBackend(FirewallBackend):
    kind = Backend.IPTABLES
    binary = "iptables"

    @property
    def rules_file(self) -> Path:
        return self.settings.iptables_rules_file

    def _iptables(self, *args: str) -> list[str]:
        # -w waits for the xtables lock instead of failing
        return ["iptables", "-w", *args]

    def has_masquerade(self, rules: GatewayRules) -> bool:
        result = self._probe(self._iptables("-t", "nat", "-C", "POSTROUTING", *masquerade_spec(rules)))
        return result.success

    def add_masquerade(self, rules: GatewayRules) -> None:
        self._apply(self._iptables("-t", "nat", "-A", "POSTROUTING", *masquerade_spec(rules)))

    def has_forward(self, rules: GatewayRules, direction: Direction) -> bool:
        result = self._probe(self._iptables("-C", "FORWARD", *forward_spec(rules, direction)))
        return result.success

    def add_forward(self, rules: GatewayRules, direction: Direction) -> None:
        self._apply(self._iptables("-A", "FORWARD", *forward_spec(rules, direction)))

    def is_persisted(self, rules: GatewayRules) -> bool:
        return self._file_contains(self.rules_file, save_lines(rules))

    def persist(self, rules: GatewayRules) -> None:
        saved = self.dump()
        if not saved.strip() and not self.ctx.dry_run:
            raise FirewallError(
                "iptables-save returned no rules",
                backend=self.kind.value,
                hint="Check that the iptables kernel modules are loaded",
            )
        self.executor.write_file(
            self.rules_file,
            saved,
            description=f"Save rules to {self.rules_file}",
            permissions=0o640,
        )

    def dump(self) -> str:
        result = self._probe(["iptables-save"])
        return result.stdout if result.success else ""

    def persisted_files(self) -> list[Path]:
        return [self.rules_file]

    def reload(self, dump_file: Optional[Path] = None) -> None:
        source = dump_file or self.rules_file
        self._apply(["iptables-restore", str(source)], description=f"Load iptables rules from {source}")
