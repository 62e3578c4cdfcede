"""Shared CLI plumbing: option aliases, context creation, error handling
and service wiring."""

import sys
from functools import cached_property
from pathlib import Path
from typing import Annotated, Optional

import typer

from ztgw.core.config import DEFAULT_CONFIG_PATH
from ztgw.core.context import ExecutionContext, create_context
from ztgw.core.exceptions import PrivilegeError, ZTError
from ztgw.core.executor import CommandExecutor
from ztgw.core.output import console as app_console
from ztgw.core.safety import check_privileges
from ztgw.services.backup import BackupManager
from ztgw.services.firewall import FirewallBackend, select_backend
from ztgw.services.network import InterfaceService
from ztgw.services.sysctl import ForwardingService
from ztgw.services.systemd import SystemdService
from ztgw.services.zerotier import ZeroTierClient


# Type aliases for common options
DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        "-d",
        help="Preview changes without executing. Read-only checks still run.",
        is_flag=True,
    ),
]

YesOption = Annotated[
    bool,
    typer.Option(
        "--yes",
        "-y",
        help="Skip confirmation prompts.",
        is_flag=True,
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase output verbosity. Can be repeated (-v, -vv).",
    ),
]

QuietOption = Annotated[
    bool,
    typer.Option(
        "--quiet",
        "-q",
        help="Suppress non-essential output. Only show errors.",
        is_flag=True,
    ),
]

NoColorOption = Annotated[
    bool,
    typer.Option(
        "--no-color",
        help="Disable colored output.",
        is_flag=True,
    ),
]

GatewayConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help="Gateway config file with KEY=VALUE lines (ZT_NETWORK_ID, PHY_IFACE, ...).",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]

SettingsOption = Annotated[
    Optional[Path],
    typer.Option(
        "--settings",
        help=f"Tool settings file. Default: {DEFAULT_CONFIG_PATH}",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]

NetworkOption = Annotated[
    Optional[str],
    typer.Option(
        "--network",
        "-n",
        help="ZeroTier network ID (16 hex digits).",
    ),
]

LogFileOption = Annotated[
    Optional[Path],
    typer.Option(
        "--log",
        "-l",
        help="Write the run log here instead of a timestamped temp file.",
        dir_okay=False,
    ),
]


def get_context(
    dry_run: bool = False,
    yes: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    settings: Optional[Path] = None,
    log_file: Optional[Path] = None,
) -> ExecutionContext:
    """Create execution context from CLI options."""
    return create_context(
        dry_run=dry_run,
        yes=yes,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=settings,
        log_file=log_file,
    )


def start_session(ctx: ExecutionContext, command: str) -> None:
    ctx.run_log.session_start(command, sys.argv[1:])
    ctx.console.debug(f"Run log: {ctx.run_log.log_path}")


def end_session(ctx: ExecutionContext, exit_code: int = 0) -> None:
    ctx.run_log.session_end(exit_code)


def handle_error(error: ZTError, ctx: Optional[ExecutionContext] = None) -> None:
    """Print a formatted error, record it in the run log and exit with its code."""
    app_console.error(error.message)

    if error.details:
        for detail in error.details:
            app_console.print(f"  [dim]{detail}[/dim]")

    if error.hint:
        app_console.hint(error.hint)

    if ctx is not None:
        ctx.run_log.error(error.message, details=error.details, exit_code=error.exit_code)
        end_session(ctx, error.exit_code)
        app_console.print(f"[dim]Run log: {ctx.run_log.log_path}[/dim]")

    raise typer.Exit(error.exit_code)


def require_privileges(ctx: ExecutionContext, services: "Services") -> None:
    """Root or passwordless sudo, unless this is a dry run."""
    check_privileges(ctx, services.executor)


def try_privileges(ctx: ExecutionContext, services: "Services") -> None:
    """Escalate when possible for read-only commands; warn otherwise."""
    try:
        check_privileges(ctx, services.executor)
    except PrivilegeError:
        ctx.console.warn("Not running as root; ZeroTier queries may be refused")


class Services:
    """Service objects for one command, built around a shared executor."""

    def __init__(self, ctx: ExecutionContext, executor: Optional[CommandExecutor] = None) -> None:
        self.ctx = ctx
        self.executor = executor or CommandExecutor(ctx)

    @cached_property
    def zerotier(self) -> ZeroTierClient:
        return ZeroTierClient(self.ctx, self.executor)

    @cached_property
    def forwarding(self) -> ForwardingService:
        return ForwardingService(self.ctx, self.executor)

    @cached_property
    def interfaces(self) -> InterfaceService:
        return InterfaceService(self.ctx, self.executor)

    @cached_property
    def systemd(self) -> SystemdService:
        return SystemdService(self.ctx, self.executor)

    @cached_property
    def backups(self) -> BackupManager:
        return BackupManager(self.ctx, self.executor)

    @cached_property
    def backend(self) -> FirewallBackend:
        """Detected once per command."""
        return select_backend(self.ctx, self.executor, self.ctx.config.firewall)


def build_services(ctx: ExecutionContext) -> Services:
    return Services(ctx)
