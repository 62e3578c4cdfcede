"""Network interface queries.

Provides:
- Interface existence and link state
- Address lookup and subnet membership checks
- Default-route interface discovery
- Overlay (zt*) interface listing

All queries go through ``ip -j`` and are read-only.
"""

import ipaddress
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from ztgw.core.context import ExecutionContext
from ztgw.core.executor import CommandExecutor


IPInterface = Union[ipaddress.IPv4Interface, ipaddress.IPv6Interface]

OVERLAY_PREFIX = "zt"
UP_STATES = frozenset({"UP", "UNKNOWN"})  # tun/tap devices report UNKNOWN


@dataclass
class NetworkInterface:
    """Detected network interface information."""
    name: str
    state: str
    addresses: list[IPInterface] = field(default_factory=list)

    @property
    def is_up(self) -> bool:
        return self.state in UP_STATES

    @property
    def ipv4(self) -> list[ipaddress.IPv4Interface]:
        return [a for a in self.addresses if isinstance(a, ipaddress.IPv4Interface)]


def _interface_from_json(entry: dict[str, Any]) -> NetworkInterface:
    addresses: list[IPInterface] = []
    for info in entry.get("addr_info", []):
        local = info.get("local")
        prefix = info.get("prefixlen")
        if not local or prefix is None:
            continue
        try:
            addresses.append(ipaddress.ip_interface(f"{local}/{prefix}"))
        except ValueError:
            continue
    return NetworkInterface(
        name=str(entry.get("ifname", "")),
        state=str(entry.get("operstate", "UNKNOWN")),
        addresses=addresses,
    )


def address_in_subnet(addresses: list[IPInterface], subnet: str) -> bool:
    """Check whether any address lies inside the subnet."""
    network = ipaddress.ip_network(subnet, strict=False)
    return any(
        a.version == network.version and a.ip in network
        for a in addresses
    )


class InterfaceService:
    """Read-only interface queries."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    def _ip_json(self, *args: str) -> list[dict[str, Any]]:
        result = self.executor.run(["ip", "-j", *args], check=False, read_only=True)
        if not result.success or not result.stdout.strip():
            return []
        try:
            data = json.loads(result.stdout)
        except ValueError:
            self.ctx.console.debug(f"Unparseable output from ip {' '.join(args)}")
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    def exists(self, name: str) -> bool:
        result = self.executor.run(
            ["ip", "link", "show", "dev", name],
            check=False,
            read_only=True,
        )
        return result.success

    def get(self, name: str) -> Optional[NetworkInterface]:
        entries = self._ip_json("addr", "show", "dev", name)
        return _interface_from_json(entries[0]) if entries else None

    def addresses(self, name: str) -> list[IPInterface]:
        iface = self.get(name)
        return iface.addresses if iface else []

    def has_address_in(self, name: str, subnet: str) -> bool:
        return address_in_subnet(self.addresses(name), subnet)

    def all_interfaces(self) -> list[NetworkInterface]:
        return [_interface_from_json(entry) for entry in self._ip_json("addr", "show")]

    def overlay_interfaces(self) -> list[NetworkInterface]:
        return [i for i in self.all_interfaces() if i.name.startswith(OVERLAY_PREFIX)]

    def default_route_interface(self) -> Optional[str]:
        for route in self._ip_json("route", "show", "default"):
            if route.get("dev"):
                return str(route["dev"])
        return None

    def primary_subnet(self, name: str) -> Optional[str]:
        """Network of the first IPv4 address on an interface."""
        iface = self.get(name)
        if iface is None or not iface.ipv4:
            return None
        return str(iface.ipv4[0].network)

    def routes(self) -> list[str]:
        result = self.executor.run(["ip", "route", "show"], check=False, read_only=True)
        return [line for line in result.stdout.splitlines() if line.strip()]
