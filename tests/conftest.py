"""Shared fixtures: an in-memory host behind the command executor.

FakeHost replaces process spawning with a small model of the host:
iptables tables, ZeroTier memberships and peers, interfaces, sysctl
flags (backed by a temporary /proc/sys tree) and systemd units. Every
call goes through the real CommandExecutor.run, so dry-run interception
and run logging behave exactly as in production.
"""

import json
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pytest

from ztgw.core.config import AppConfig, FirewallConfig, PathsConfig, RunnerConfig, ToolConfig
from ztgw.core.context import ExecutionContext
from ztgw.core.executor import CommandExecutor, RunResult
from ztgw.core.runlog import RunLog
from ztgw.services.sysctl import IPV4_FORWARD, IPV6_FORWARD, ForwardingService


NETWORK_ID = "8056c2e21c000001"
NODE_ADDRESS = "a1b2c3d4e5"


@dataclass
class Call:
    command: list[str]
    read_only: bool

    @property
    def text(self) -> str:
        return shlex.join(self.command)


@dataclass
class FakeMembership:
    network_id: str
    status: str = "OK"
    interface: Optional[str] = "ztabcdef12"
    addresses: list[str] = field(default_factory=lambda: ["10.147.17.5/24"])
    name: str = "office"

    def to_json(self) -> dict:
        return {
            "nwid": self.network_id,
            "id": self.network_id,
            "name": self.name,
            "status": self.status,
            "type": "PRIVATE",
            "portDeviceName": self.interface or "",
            "assignedAddresses": list(self.addresses),
        }


class FakeHost(CommandExecutor):
    """CommandExecutor whose processes are simulated."""

    def __init__(self, ctx: ExecutionContext, proc_root: Path) -> None:
        super().__init__(ctx)
        self.proc_root = proc_root
        self.binaries = {
            "zerotier-cli", "iptables", "iptables-save", "iptables-restore",
            "ip", "sysctl", "systemctl", "curl", "gpg", "mail", "ping",
        }
        self.calls: list[Call] = []
        self.spawned: list[list[str]] = []
        self.writes: list[Path] = []
        self.failures: dict[str, tuple[int, str]] = {}

        # ZeroTier
        self.zt_running = True
        self.memberships: dict[str, FakeMembership] = {}
        self.peers = ["61d294b9cb", "778cde7190"]
        self.join_status = "OK"
        self.join_interface: Optional[str] = "ztabcdef12"

        # Interfaces: name -> (state, [cidr])
        self.interfaces: dict[str, tuple[str, list[str]]] = {
            "lo": ("UNKNOWN", ["127.0.0.1/8"]),
            "eth0": ("UP", ["192.168.1.10/24"]),
        }
        self.default_iface: Optional[str] = "eth0"

        # iptables
        self.nat_rules: list[tuple[str, ...]] = []
        self.forward_rules: list[tuple[str, ...]] = []

        # systemd units that are active
        self.active_units = {"zerotier-one"}

        self.set_proc(IPV4_FORWARD, "0")
        self.set_proc(IPV6_FORWARD, "0")

    # Test helpers

    def set_proc(self, key: str, value: str) -> None:
        path = self.proc_root.joinpath(*key.split("."))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"{value}\n")

    def proc(self, key: str) -> str:
        return self.proc_root.joinpath(*key.split(".")).read_text().strip()

    def join_network(self, network_id: str, **kwargs) -> FakeMembership:
        membership = FakeMembership(network_id, **kwargs)
        self.memberships[network_id] = membership
        self.interfaces.setdefault(
            membership.interface or "zt0",
            ("UNKNOWN", list(membership.addresses)),
        )
        return membership

    def fail(self, prefix: str, return_code: int = 1, stderr: str = "simulated failure") -> None:
        """Make every command starting with prefix fail."""
        self.failures[prefix] = (return_code, stderr)

    @property
    def mutations(self) -> list[Call]:
        return [c for c in self.calls if not c.read_only]

    def commands(self, prefix: str) -> list[Call]:
        return [c for c in self.calls if c.text.startswith(prefix)]

    def iptables_save(self) -> str:
        lines = ["*nat", ":POSTROUTING ACCEPT [0:0]"]
        lines += ["-A POSTROUTING " + " ".join(rule) for rule in self.nat_rules]
        lines += ["COMMIT", "*filter", ":FORWARD ACCEPT [0:0]"]
        lines += ["-A FORWARD " + " ".join(rule) for rule in self.forward_rules]
        lines += ["COMMIT"]
        return "\n".join(lines) + "\n"

    # CommandExecutor overrides

    def which(self, binary: str) -> bool:
        return binary in self.binaries

    def run(self, command: list[str], **kwargs) -> RunResult:
        self.calls.append(Call(list(command), kwargs.get("read_only", False)))
        return super().run(command, **kwargs)

    def write_file(self, path: Path, content: str, **kwargs) -> None:
        if not self.ctx.dry_run:
            self.writes.append(path)
        super().write_file(path, content, **kwargs)

    def remove_file(self, path: Path, **kwargs) -> None:
        if not self.ctx.dry_run:
            self.writes.append(path)
        super().remove_file(path, **kwargs)

    def _spawn(self, command, timeout, input_text, env):
        if command[:2] == ["sudo", "-n"]:
            command = command[2:]
        self.spawned.append(list(command))

        text = shlex.join(command)
        for prefix, (code, stderr) in self.failures.items():
            if text.startswith(prefix):
                return code, "", stderr

        if command[0] not in self.binaries:
            raise FileNotFoundError(command[0])

        handler = getattr(self, "_cmd_" + command[0].replace("-", "_"), None)
        if handler is None:
            return 0, "", ""
        return handler(command[1:], input_text)

    # Simulated binaries

    def _cmd_iptables(self, args, input_text):
        if args and args[0] == "-w":
            args = args[1:]
        table = self.forward_rules
        if args[:2] == ["-t", "nat"]:
            table = self.nat_rules
            args = args[2:]
        action, _chain, spec = args[0], args[1], tuple(args[2:])
        if action == "-C":
            return (0, "", "") if spec in table else (1, "", "Bad rule (does a matching rule exist in that chain?)")
        if action == "-A":
            table.append(spec)
            return 0, "", ""
        return 2, "", f"unsupported: {action}"

    def _cmd_iptables_save(self, args, input_text):
        return 0, self.iptables_save(), ""

    def _cmd_zerotier_cli(self, args, input_text):
        if args == ["-v"]:
            return 0, "1.14.0\n", ""
        if not self.zt_running:
            return 1, "", "zerotier-cli: missing port and zerotier-one.port not found"
        if args == ["-j", "info"]:
            return 0, json.dumps({"address": NODE_ADDRESS, "version": "1.14.0", "online": True}), ""
        if args == ["-j", "listnetworks"]:
            return 0, json.dumps([m.to_json() for m in self.memberships.values()]), ""
        if args == ["-j", "listpeers"]:
            return 0, json.dumps([
                {"address": p, "role": "LEAF", "latency": 12, "version": "1.14.0"} for p in self.peers
            ]), ""
        if args[0] == "join":
            self.join_network(args[1], status=self.join_status, interface=self.join_interface)
            return 0, "200 join OK\n", ""
        if args[0] == "leave":
            self.memberships.pop(args[1], None)
            return 0, "200 leave OK\n", ""
        return 0, "", ""

    def _interface_json(self, name: str) -> dict:
        state, addresses = self.interfaces[name]
        addr_info = []
        for cidr in addresses:
            local, prefix = cidr.split("/")
            addr_info.append({"local": local, "prefixlen": int(prefix)})
        return {"ifname": name, "operstate": state, "addr_info": addr_info}

    def _cmd_ip(self, args, input_text):
        if args[:3] == ["link", "show", "dev"]:
            return (0, f"2: {args[3]}: <UP>\n", "") if args[3] in self.interfaces else (1, "", "Device does not exist.")
        if args[:4] == ["-j", "addr", "show", "dev"]:
            if args[4] not in self.interfaces:
                return 1, "", "Device does not exist."
            return 0, json.dumps([self._interface_json(args[4])]), ""
        if args[:3] == ["-j", "addr", "show"]:
            return 0, json.dumps([self._interface_json(n) for n in self.interfaces]), ""
        if args[:4] == ["-j", "route", "show", "default"]:
            routes = [{"dst": "default", "dev": self.default_iface}] if self.default_iface else []
            return 0, json.dumps(routes), ""
        if args[:2] == ["route", "show"]:
            lines = [f"default via 192.168.1.1 dev {self.default_iface}"] if self.default_iface else []
            for m in self.memberships.values():
                if m.interface:
                    lines.append(f"10.147.17.0/24 dev {m.interface} proto kernel scope link")
            return 0, "\n".join(lines) + "\n", ""
        return 0, "[]", ""

    def _cmd_sysctl(self, args, input_text):
        if args[0] == "-w":
            key, value = args[1].split("=", 1)
            self.set_proc(key, value)
            return 0, f"{key} = {value}\n", ""
        return 0, "", ""

    def _cmd_systemctl(self, args, input_text):
        if args[0] in ("is-active", "is-enabled"):
            return (0, "", "") if args[-1] in self.active_units else (3, "", "")
        return 0, "", ""

    def _cmd_ping(self, args, input_text):
        return 0, "rtt min/avg/max/mdev = 1.0/1.5/2.0/0.1 ms\n", ""


@pytest.fixture
def tool_config(tmp_path: Path) -> ToolConfig:
    return ToolConfig(
        paths=PathsConfig(
            backup_root=tmp_path / "backups",
            sysctl_conf=tmp_path / "etc" / "sysctl.conf",
        ),
        runner=RunnerConfig(timeout=5, join_wait=0),
        firewall=FirewallConfig(
            backend="iptables",
            iptables_rules_file=tmp_path / "etc" / "iptables" / "rules.v4",
            nftables_file=tmp_path / "etc" / "nftables.conf",
            ufw_before_rules=tmp_path / "etc" / "ufw" / "before.rules",
        ),
    )


def make_context(tmp_path: Path, tool_config: ToolConfig, dry_run: bool = False, yes: bool = True) -> ExecutionContext:
    ctx = ExecutionContext(dry_run=dry_run, yes=yes, verbosity=0)
    ctx._config = AppConfig(config_path=tmp_path / "missing.yaml", config=tool_config)
    ctx._run_log = RunLog(tmp_path / "run.log")
    return ctx


@pytest.fixture
def ctx(tmp_path: Path, tool_config: ToolConfig) -> ExecutionContext:
    return make_context(tmp_path, tool_config)


@pytest.fixture
def dry_ctx(tmp_path: Path, tool_config: ToolConfig) -> ExecutionContext:
    return make_context(tmp_path, tool_config, dry_run=True)


@pytest.fixture
def proc_root(tmp_path: Path) -> Path:
    root = tmp_path / "proc" / "sys"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def host(ctx: ExecutionContext, proc_root: Path) -> FakeHost:
    return FakeHost(ctx, proc_root)


@pytest.fixture
def forwarding(ctx: ExecutionContext, host: FakeHost, proc_root: Path) -> ForwardingService:
    return ForwardingService(ctx, host, proc_root=proc_root)


@pytest.fixture
def dry_host(dry_ctx: ExecutionContext, proc_root: Path) -> FakeHost:
    return FakeHost(dry_ctx, proc_root)
