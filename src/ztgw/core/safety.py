"""Safety framework.

Provides:
- Privilege check (root or passwordless sudo) before any mutation
- Confirmation policies that gate mutation without prompting inside services
- A small host-check framework shared by diagnostics and topology validation
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, TYPE_CHECKING

from ztgw.core.context import ExecutionContext
from ztgw.core.exceptions import PrivilegeError, ZTError
from ztgw.core.output import console

if TYPE_CHECKING:
    from ztgw.core.executor import CommandExecutor


OS_RELEASE_PATH = Path("/etc/os-release")


def check_privileges(ctx: ExecutionContext, executor: "CommandExecutor") -> None:
    """Ensure mutations can run: root, or passwordless sudo.

    Skipped in dry-run mode. When sudo is usable, ``ctx.use_sudo`` is set
    so the executor prefixes commands with ``sudo -n``.

    Raises:
        PrivilegeError: Neither root nor passwordless sudo is available
    """
    if ctx.dry_run:
        console.verbose("Skipping privilege check in dry-run mode")
        return

    if os.geteuid() == 0:
        return

    if executor.which("sudo"):
        result = executor.run(["sudo", "-n", "true"], read_only=True, check=False)
        if result.success:
            console.verbose("Not root; using passwordless sudo")
            ctx.use_sudo = True
            return

    raise PrivilegeError(
        "This operation requires root privileges",
        hint="Run with: sudo ztgw <command> (or use --dry-run to preview)",
    )


@dataclass(frozen=True)
class ConfirmationPolicy:
    """Decides whether a pending mutation may proceed.

    Usage:
        ConfirmationPolicy.auto_approve()
        ConfirmationPolicy.auto_deny()
        ConfirmationPolicy.callback(lambda message: console.confirm(message))
    """
    decide: Callable[[str], bool]

    @classmethod
    def auto_approve(cls) -> "ConfirmationPolicy":
        return cls(lambda _message: True)

    @classmethod
    def auto_deny(cls) -> "ConfirmationPolicy":
        return cls(lambda _message: False)

    @classmethod
    def callback(cls, func: Callable[[str], bool]) -> "ConfirmationPolicy":
        return cls(func)

    @classmethod
    def for_context(cls, ctx: ExecutionContext) -> "ConfirmationPolicy":
        """Prompt on the console unless --yes or --dry-run was given."""
        if not ctx.should_confirm:
            return cls.auto_approve()
        return cls(lambda message: ctx.console.confirm(message))

    def confirm(self, message: str) -> bool:
        return self.decide(message)


class CheckResult(Enum):
    """Result of a host check."""
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
    SKIP = "skip"


@dataclass(frozen=True)
class CheckOutcome:
    """Immutable result of a host check."""
    check_name: str
    result: CheckResult
    message: str
    details: Optional[dict[str, Any]] = None
    remediation: Optional[str] = None


class HostCheck(ABC):
    """Base class for host checks."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of the check."""
        ...

    @property
    @abstractmethod
    def critical(self) -> bool:
        """If True, failure means the gateway cannot work."""
        ...

    @abstractmethod
    def run(self) -> CheckOutcome:
        """Execute the check and return result."""
        ...

    def outcome(
        self,
        result: CheckResult,
        message: str,
        *,
        details: Optional[dict[str, Any]] = None,
        remediation: Optional[str] = None,
    ) -> CheckOutcome:
        return CheckOutcome(
            check_name=self.name,
            result=result,
            message=message,
            details=details,
            remediation=remediation,
        )


class CheckRunner:
    """Runs a list of host checks and reports on them."""

    def __init__(self, checks: list[HostCheck], title: str = "Checks") -> None:
        self.checks = checks
        self.title = title

    def run_all(self, fail_fast: bool = False) -> list[CheckOutcome]:
        """Run all checks.

        Args:
            fail_fast: If True, stop on first critical failure
        """
        results = []

        for check in self.checks:
            try:
                result = check.run()
            except ZTError as e:
                result = check.outcome(CheckResult.FAIL, e.message, remediation=e.hint)
            results.append(result)

            if fail_fast and check.critical and result.result == CheckResult.FAIL:
                break

        return results

    def critical_failures(self, results: list[CheckOutcome]) -> list[CheckOutcome]:
        critical = {c.name for c in self.checks if c.critical}
        return [
            r for r in results
            if r.result == CheckResult.FAIL and r.check_name in critical
        ]

    def display_results(self, results: list[CheckOutcome], verbose: bool = False) -> None:
        console.print()
        console.rule(self.title)

        for result in results:
            needs_fix = result.result in (CheckResult.FAIL, CheckResult.WARN)
            console.check_line(
                result.result.value,
                result.check_name,
                result.message,
                details=result.details if verbose else None,
                fix=result.remediation if needs_fix else None,
            )

        console.print()


def parse_os_release(path: Path = OS_RELEASE_PATH) -> Optional[dict[str, str]]:
    """Parse /etc/os-release into a dict, or None if missing."""
    try:
        with open(path) as f:
            result = {}
            for line in f:
                line = line.strip()
                if "=" in line and not line.startswith("#"):
                    key, _, value = line.partition("=")
                    result[key] = value.strip('"').strip("'")
            return result
    except FileNotFoundError:
        return None
