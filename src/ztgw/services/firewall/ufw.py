"""UFW backend.

ufw has no command for NAT, so masquerading is a ``*nat`` block managed in
``/etc/ufw/before.rules`` between ztgw markers. The forward rules are
plain ``ufw route allow`` rules, which ufw persists on its own.
"""

from pathlib import Path
from typing import Optional

from jinja2 import Environment, PackageLoader, select_autoescape

from ztgw.services.firewall.base import Backend, Direction, FirewallBackend, GatewayRules
from ztgw.services.firewall.iptables import masquerade_spec


UFW_DIR = Path("/etc/ufw")

jinja_env = Environment(
    loader=PackageLoader("ztgw", "templates"),
    autoescape=select_autoescape(),
)


def nat_block_marker(phy_iface: str) -> str:
    return f"# BEGIN ztgw nat {phy_iface}"


def render_nat_block(phy_iface: str) -> str:
    return jinja_env.get_template("firewall/ufw_nat.rules.j2").render(phy_iface=phy_iface)


def insert_nat_block(content: str, phy_iface: str) -> str:
    """Put the NAT block ahead of the file's first table (ufw reads it in order)."""
    block = render_nat_block(phy_iface)
    lines = content.splitlines()
    for index, line in enumerate(lines):
        if line.startswith("*"):
            before = "\n".join(lines[:index])
            after = "\n".join(lines[index:])
            prefix = f"{before}\n" if before else ""
            return f"{prefix}{block}\n\n{after}\n"
    separator = "\n" if content and not content.endswith("\n") else ""
    return f"{content}{separator}{block}\n"


def route_rule(rules: GatewayRules, direction: Direction) -> list[str]:
    in_iface, out_iface = rules.forward_pair(direction)
    return ["route", "allow", "in", "on", in_iface, "out", "on", out_iface]


class UfwBackend(FirewallBackend):
    kind = Backend.UFW
    binary = "ufw"

    @property
    def before_rules(self) -> Path:
        return self.settings.ufw_before_rules

    def _nat_block_present(self, rules: GatewayRules) -> bool:
        content = self.executor.read_file(self.before_rules)
        return content is not None and nat_block_marker(rules.phy_iface) in content

    def _write_nat_block(self, rules: GatewayRules) -> None:
        content = self.executor.read_file(self.before_rules) or ""
        if nat_block_marker(rules.phy_iface) in content:
            return
        self.executor.write_file(
            self.before_rules,
            insert_nat_block(content, rules.phy_iface),
            description=f"Add NAT block for {rules.phy_iface} to {self.before_rules}",
            permissions=0o640,
        )

    def has_masquerade(self, rules: GatewayRules) -> bool:
        live = self._probe(["iptables", "-w", "-t", "nat", "-C", "POSTROUTING", *masquerade_spec(rules)])
        return live.success and self._nat_block_present(rules)

    def add_masquerade(self, rules: GatewayRules) -> None:
        self._write_nat_block(rules)
        self._apply(["ufw", "reload"], description="Reload ufw")

    def has_forward(self, rules: GatewayRules, direction: Direction) -> bool:
        result = self._probe(["ufw", "show", "added"])
        if not result.success:
            return False
        wanted = "ufw " + " ".join(route_rule(rules, direction))
        return any(line.strip() == wanted for line in result.stdout.splitlines())

    def add_forward(self, rules: GatewayRules, direction: Direction) -> None:
        self._apply(["ufw", *route_rule(rules, direction)])

    def is_persisted(self, rules: GatewayRules) -> bool:
        # route rules are saved to user.rules by ufw itself
        return self._nat_block_present(rules)

    def persist(self, rules: GatewayRules) -> None:
        self._write_nat_block(rules)

    def dump(self) -> str:
        status = self._probe(["ufw", "status", "verbose"])
        added = self._probe(["ufw", "show", "added"])
        return f"{status.stdout}\n{added.stdout}"

    def persisted_files(self) -> list[Path]:
        return [self.before_rules, UFW_DIR / "user.rules", UFW_DIR / "user6.rules"]

    def reload(self, dump_file: Optional[Path] = None) -> None:
        self._apply(["ufw", "reload"], description="Reload ufw")
