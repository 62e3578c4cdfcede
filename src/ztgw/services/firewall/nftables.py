"""Nftables backend.

Gateway rules live in a dedicated ``ip ztgw`` table so they never collide
with distribution rules. Persistence writes the full ruleset to the
nftables boot file.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

from jinja2 import Environment, PackageLoader, select_autoescape

from ztgw.core.exceptions import FirewallError
from ztgw.services.firewall.base import Backend, Direction, FirewallBackend, GatewayRules


TABLE_FAMILY = "ip"
TABLE_NAME = "ztgw"

# chain name -> (type, hook, priority)
CHAINS = {
    "postrouting": ("nat", "postrouting", 100),
    "forward": ("filter", "forward", 0),
}

jinja_env = Environment(
    loader=PackageLoader("ztgw", "templates"),
    autoescape=select_autoescape(),
)


def nft_iface(name: str) -> str:
    """Quoted interface match; iptables-style ``zt+`` becomes ``zt*``."""
    if name.endswith("+"):
        name = name[:-1] + "*"
    return f'"{name}"'


def masquerade_expr(rules: GatewayRules) -> list[str]:
    return ["oifname", nft_iface(rules.phy_iface), "masquerade"]


def forward_expr(rules: GatewayRules, direction: Direction) -> list[str]:
    in_iface, out_iface = rules.forward_pair(direction)
    expr = ["iifname", nft_iface(in_iface), "oifname", nft_iface(out_iface)]
    if direction == Direction.RETURN:
        expr += ["ct", "state", "established,related"]
    return expr + ["accept"]


def listed_rules(rules: GatewayRules) -> list[str]:
    """The rules as ``nft list`` prints them."""
    return [
        " ".join(masquerade_expr(rules)),
        " ".join(forward_expr(rules, Direction.OUTBOUND)),
        " ".join(forward_expr(rules, Direction.RETURN)),
    ]


class NftablesBackend(FirewallBackend):
    kind = Backend.NFTABLES
    binary = "nft"

    @property
    def rules_file(self) -> Path:
        return self.settings.nftables_file

    def _chain_has(self, chain: str, expr: list[str]) -> bool:
        result = self._probe(["nft", "list", "chain", TABLE_FAMILY, TABLE_NAME, chain])
        if not result.success:
            return False
        wanted = " ".join(expr)
        return any(line.strip() == wanted for line in result.stdout.splitlines())

    def _ensure_chain(self, chain: str) -> None:
        chain_type, hook, priority = CHAINS[chain]
        # "add" is a no-op for an identical existing table/chain
        self._apply(["nft", "add", "table", TABLE_FAMILY, TABLE_NAME])
        self._apply([
            "nft", "add", "chain", TABLE_FAMILY, TABLE_NAME, chain,
            f"{{ type {chain_type} hook {hook} priority {priority} ; policy accept ; }}",
        ])

    def _add_rule(self, chain: str, expr: list[str]) -> None:
        self._ensure_chain(chain)
        self._apply(["nft", "add", "rule", TABLE_FAMILY, TABLE_NAME, chain, *expr])

    def has_masquerade(self, rules: GatewayRules) -> bool:
        return self._chain_has("postrouting", masquerade_expr(rules))

    def add_masquerade(self, rules: GatewayRules) -> None:
        self._add_rule("postrouting", masquerade_expr(rules))

    def has_forward(self, rules: GatewayRules, direction: Direction) -> bool:
        return self._chain_has("forward", forward_expr(rules, direction))

    def add_forward(self, rules: GatewayRules, direction: Direction) -> None:
        self._add_rule("forward", forward_expr(rules, direction))

    def is_persisted(self, rules: GatewayRules) -> bool:
        return self._file_contains(
            self.rules_file,
            [f"table {TABLE_FAMILY} {TABLE_NAME} {{"] + listed_rules(rules),
        )

    def persist(self, rules: GatewayRules) -> None:
        ruleset = self.dump()
        if not ruleset.strip() and not self.ctx.dry_run:
            raise FirewallError(
                "nft list ruleset returned nothing to save",
                backend=self.kind.value,
            )
        content = jinja_env.get_template("firewall/nftables.conf.j2").render(
            ruleset=ruleset.rstrip(),
            saved_at=datetime.now().isoformat(timespec="seconds"),
        )
        self.executor.write_file(
            self.rules_file,
            content + "\n",
            description=f"Save nftables ruleset to {self.rules_file}",
            permissions=0o755,
        )

    def dump(self) -> str:
        result = self._probe(["nft", "list", "ruleset"])
        return result.stdout if result.success else ""

    def persisted_files(self) -> list[Path]:
        return [self.rules_file]

    def reload(self, dump_file: Optional[Path] = None) -> None:
        source = dump_file or self.rules_file
        self._apply(["nft", "flush", "ruleset"], description="Flush nftables ruleset")
        self._apply(["nft", "-f", str(source)], description=f"Load nftables rules from {source}")
