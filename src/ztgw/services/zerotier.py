"""ZeroTier client capability.

Wraps ``zerotier-cli``. Queries use the client's JSON mode (``-j``); the
columnar text output is parsed only when JSON is unavailable (old
clients).
"""

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from ztgw.core.context import ExecutionContext
from ztgw.core.exceptions import ExecutionError, PrerequisiteError
from ztgw.core.executor import CommandExecutor, RunResult


ZT_CLI = "zerotier-cli"
STATUS_OK = "OK"


@dataclass(frozen=True)
class Membership:
    """One joined network as reported by ``listnetworks``."""
    network_id: str
    status: str
    name: str = ""
    type: str = ""
    interface: Optional[str] = None
    assigned_addresses: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK


@dataclass(frozen=True)
class Peer:
    address: str
    role: str = ""
    latency: Optional[int] = None
    version: str = ""


@dataclass(frozen=True)
class NodeInfo:
    address: str
    version: str
    online: bool


def _parse_json(output: str) -> Any:
    return json.loads(output)


def membership_from_json(entry: dict[str, Any]) -> Membership:
    network_id = str(entry.get("nwid") or entry.get("id") or "").lower()
    return Membership(
        network_id=network_id,
        status=str(entry.get("status", "")),
        name=str(entry.get("name") or ""),
        type=str(entry.get("type") or ""),
        interface=entry.get("portDeviceName") or None,
        assigned_addresses=tuple(entry.get("assignedAddresses") or ()),
    )


def parse_listnetworks_text(output: str) -> list[Membership]:
    """Parse columnar ``listnetworks`` output.

    Format: ``200 listnetworks <nwid> <name> <mac> <status> <type> <dev> <ips>``
    """
    memberships = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 8 or parts[1] != "listnetworks" or parts[2] == "<nwid>":
            continue
        addresses = tuple(a for a in parts[8].split(",") if a and a != "-") if len(parts) > 8 else ()
        memberships.append(Membership(
            network_id=parts[2].lower(),
            name=parts[3],
            status=parts[5],
            type=parts[6],
            interface=parts[7] if parts[7] != "-" else None,
            assigned_addresses=addresses,
        ))
    return memberships


def parse_listpeers_text(output: str) -> list[Peer]:
    """Parse columnar ``listpeers`` output.

    Format: ``200 listpeers <ztaddr> <path> <latency> <version> <role>``
    """
    peers = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 3 or parts[1] != "listpeers" or parts[2] == "<ztaddr>":
            continue
        latency = None
        if len(parts) > 4 and parts[4].lstrip("-").isdigit():
            latency = int(parts[4])
        peers.append(Peer(
            address=parts[2],
            latency=latency,
            version=parts[5] if len(parts) > 5 else "",
            role=parts[6] if len(parts) > 6 else "",
        ))
    return peers


def parse_info_text(output: str) -> Optional[NodeInfo]:
    """Parse ``200 info <address> <version> <ONLINE|OFFLINE|TUNNELED>``."""
    parts = output.split()
    if len(parts) < 5 or parts[1] != "info":
        return None
    return NodeInfo(address=parts[2], version=parts[3], online=parts[4] == "ONLINE")


class ZeroTierClient:
    """Typed queries and membership changes through ``zerotier-cli``."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    def is_installed(self) -> bool:
        return self.executor.which(ZT_CLI)

    def require_installed(self) -> None:
        if not self.is_installed():
            raise PrerequisiteError(
                "ZeroTier client is not installed",
                hint="Install it with: ztgw install",
            )

    def _query(self, *args: str) -> RunResult:
        return self.executor.run([ZT_CLI, *args], check=False, read_only=True)

    def version(self) -> Optional[str]:
        result = self._query("-v")
        if not result.success:
            return None
        return result.stdout.strip() or None

    def info(self) -> Optional[NodeInfo]:
        """Node address, version and online flag; None if the service is down."""
        result = self._query("-j", "info")
        if not result.success:
            return None
        try:
            data = _parse_json(result.stdout)
        except ValueError:
            text = self._query("info")
            return parse_info_text(text.stdout) if text.success else None
        return NodeInfo(
            address=str(data.get("address", "")),
            version=str(data.get("version", "")),
            online=bool(data.get("online", False)),
        )

    def is_running(self) -> bool:
        return self.info() is not None

    def list_memberships(self) -> list[Membership]:
        """All joined networks.

        Raises:
            ExecutionError: If the client cannot be queried
        """
        result = self._query("-j", "listnetworks")
        if not result.success:
            raise ExecutionError(
                "Cannot list ZeroTier networks",
                command=f"{ZT_CLI} -j listnetworks",
                return_code=result.return_code,
                stderr=result.stderr or result.stdout,
                hint="Is the zerotier-one service running?",
            )
        try:
            data = _parse_json(result.stdout)
        except ValueError:
            text = self._query("listnetworks")
            return parse_listnetworks_text(text.stdout)
        return [membership_from_json(entry) for entry in data if isinstance(entry, dict)]

    def membership(self, network_id: str) -> Optional[Membership]:
        network_id = network_id.lower()
        for membership in self.list_memberships():
            if membership.network_id == network_id:
                return membership
        return None

    def is_member(self, network_id: str) -> bool:
        return self.membership(network_id) is not None

    def list_peers(self) -> list[Peer]:
        result = self._query("-j", "listpeers")
        if not result.success:
            return []
        try:
            data = _parse_json(result.stdout)
        except ValueError:
            text = self._query("listpeers")
            return parse_listpeers_text(text.stdout)
        peers = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            latency = entry.get("latency")
            peers.append(Peer(
                address=str(entry.get("address", "")),
                role=str(entry.get("role", "")),
                latency=int(latency) if isinstance(latency, (int, float)) else None,
                version=str(entry.get("version", "")),
            ))
        return peers

    # Mutations

    def join(self, network_id: str) -> RunResult:
        return self.executor.run(
            [ZT_CLI, "join", network_id],
            description=f"Join ZeroTier network {network_id}",
        )

    def leave(self, network_id: str) -> RunResult:
        return self.executor.run(
            [ZT_CLI, "leave", network_id],
            description=f"Leave ZeroTier network {network_id}",
        )
