"""IP forwarding via sysctl.

The runtime flag is read from /proc/sys and set with ``sysctl -w``; the
boot-time value lives in /etc/sysctl.conf, where an existing assignment
is rewritten in place instead of appending a duplicate.
"""

import re
from pathlib import Path
from typing import Optional

from ztgw.core.context import ExecutionContext
from ztgw.core.executor import CommandExecutor
from ztgw.core.steps import OperationStep


PROC_SYS = Path("/proc/sys")
IPV4_FORWARD = "net.ipv4.ip_forward"
IPV6_FORWARD = "net.ipv6.conf.all.forwarding"


def _assignment_pattern(key: str, commented: bool) -> re.Pattern[str]:
    prefix = r"^[ \t]*#[ \t]*" if commented else r"^[ \t]*"
    return re.compile(
        prefix + re.escape(key) + r"[ \t]*=[ \t]*([^\s#]*)[ \t]*(?:#.*)?$",
        re.MULTILINE,
    )


def read_sysctl_value(content: str, key: str) -> Optional[str]:
    """The effective (last active) value of key in sysctl.conf content."""
    matches = _assignment_pattern(key, commented=False).findall(content)
    return matches[-1] if matches else None


def set_sysctl_value(content: str, key: str, value: str) -> str:
    """Return content with key set to value.

    Active assignments are rewritten in place; failing that, the first
    commented-out assignment is uncommented; otherwise a line is appended.
    """
    line = f"{key} = {value}"

    active = _assignment_pattern(key, commented=False)
    if active.search(content):
        return active.sub(line, content)

    commented = _assignment_pattern(key, commented=True)
    if commented.search(content):
        return commented.sub(line, content, count=1)

    if content and not content.endswith("\n"):
        content += "\n"
    return f"{content}{line}\n"


class ForwardingService:
    """Runtime and persisted IP forwarding flags."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        sysctl_conf: Optional[Path] = None,
        proc_root: Path = PROC_SYS,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.sysctl_conf = sysctl_conf or ctx.config.sysctl_conf
        self.proc_root = proc_root

    def _proc_path(self, key: str) -> Path:
        return self.proc_root.joinpath(*key.split("."))

    def runtime_available(self, key: str) -> bool:
        return self._proc_path(key).exists()

    def runtime_enabled(self, key: str) -> bool:
        try:
            return self._proc_path(key).read_text().strip() == "1"
        except OSError:
            return False

    def persisted_enabled(self, key: str) -> bool:
        content = self.executor.read_file(self.sysctl_conf)
        return content is not None and read_sysctl_value(content, key) == "1"

    def enable_runtime(self, key: str) -> None:
        self.executor.run(["sysctl", "-w", f"{key}=1"])

    def persist(self, key: str) -> None:
        content = self.executor.read_file(self.sysctl_conf) or ""
        self.executor.write_file(
            self.sysctl_conf,
            set_sysctl_value(content, key, "1"),
            description=f"Persist {key} = 1 in {self.sysctl_conf}",
        )

    def keys(self, ipv6: bool) -> list[str]:
        return [IPV4_FORWARD, IPV6_FORWARD] if ipv6 else [IPV4_FORWARD]

    def steps(self, ipv6: bool = False) -> list[OperationStep]:
        """Idempotent steps enabling forwarding now and at boot."""
        steps = []
        for key in self.keys(ipv6):
            steps.append(OperationStep(
                f"Enable {key} at runtime",
                lambda key=key: self.runtime_enabled(key),
                lambda key=key: self.enable_runtime(key),
            ))
            steps.append(OperationStep(
                f"Persist {key} in {self.sysctl_conf}",
                lambda key=key: self.persisted_enabled(key),
                lambda key=key: self.persist(key),
            ))
        return steps

    def runtime_state(self) -> dict[str, Optional[str]]:
        """Raw runtime values for reporting and snapshots (None: unavailable)."""
        state: dict[str, Optional[str]] = {}
        for key in (IPV4_FORWARD, IPV6_FORWARD):
            try:
                state[key] = self._proc_path(key).read_text().strip()
            except OSError:
                state[key] = None
        return state

    def set_runtime(self, key: str, value: str) -> None:
        self.executor.run(["sysctl", "-w", f"{key}={value}"])
