"""Firewalld backend.

Masquerading is a zone setting; the forward rules are direct rules in the
FORWARD chain. Changes are made at runtime and then copied to the
permanent configuration with ``--runtime-to-permanent``.
"""

from pathlib import Path
from typing import Optional

from ztgw.services.firewall.base import Backend, Direction, FirewallBackend, GatewayRules
from ztgw.services.firewall.iptables import forward_spec


FIREWALLD_DIR = Path("/etc/firewalld")
DEFAULT_ZONE = "public"


class FirewalldBackend(FirewallBackend):
    kind = Backend.FIREWALLD
    binary = "firewall-cmd"

    def _zone_args(self) -> list[str]:
        zone = self.settings.firewalld_zone
        return ["--zone", zone] if zone else []

    def _direct_rule(self, rules: GatewayRules, direction: Direction) -> list[str]:
        return ["ipv4", "filter", "FORWARD", "0", *forward_spec(rules, direction)]

    def has_masquerade(self, rules: GatewayRules) -> bool:
        return self._probe(["firewall-cmd", *self._zone_args(), "--query-masquerade"]).success

    def add_masquerade(self, rules: GatewayRules) -> None:
        self._apply(["firewall-cmd", *self._zone_args(), "--add-masquerade"])

    def has_forward(self, rules: GatewayRules, direction: Direction) -> bool:
        return self._probe(
            ["firewall-cmd", "--direct", "--query-rule", *self._direct_rule(rules, direction)]
        ).success

    def add_forward(self, rules: GatewayRules, direction: Direction) -> None:
        self._apply(["firewall-cmd", "--direct", "--add-rule", *self._direct_rule(rules, direction)])

    def is_persisted(self, rules: GatewayRules) -> bool:
        queries = [
            ["firewall-cmd", "--permanent", *self._zone_args(), "--query-masquerade"],
            ["firewall-cmd", "--permanent", "--direct", "--query-rule",
             *self._direct_rule(rules, Direction.OUTBOUND)],
            ["firewall-cmd", "--permanent", "--direct", "--query-rule",
             *self._direct_rule(rules, Direction.RETURN)],
        ]
        return all(self._probe(query).success for query in queries)

    def persist(self, rules: GatewayRules) -> None:
        self._apply(["firewall-cmd", "--runtime-to-permanent"], description="Save firewalld runtime config")

    def dump(self) -> str:
        zone = self._probe(["firewall-cmd", *self._zone_args(), "--list-all"])
        direct = self._probe(["firewall-cmd", "--direct", "--get-all-rules"])
        return f"{zone.stdout}\n# direct rules\n{direct.stdout}"

    def default_zone(self) -> str:
        if self.settings.firewalld_zone:
            return self.settings.firewalld_zone
        result = self._probe(["firewall-cmd", "--get-default-zone"])
        return result.stdout.strip() or DEFAULT_ZONE

    def persisted_files(self) -> list[Path]:
        return [
            FIREWALLD_DIR / "direct.xml",
            FIREWALLD_DIR / "zones" / f"{self.default_zone()}.xml",
        ]

    def reload(self, dump_file: Optional[Path] = None) -> None:
        self._apply(["firewall-cmd", "--reload"], description="Reload firewalld")
