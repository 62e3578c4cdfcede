"""Topology commands: deploy, validate, status and cleanup."""

from pathlib import Path
from typing import Annotated, Optional

import typer

from ztgw.commands.common import (
    DryRunOption,
    LogFileOption,
    NoColorOption,
    Services,
    SettingsOption,
    VerboseOption,
    YesOption,
    build_services,
    end_session,
    get_context,
    handle_error,
    require_privileges,
    start_session,
    try_privileges,
)
from ztgw.core import desired_state
from ztgw.core.context import ExecutionContext
from ztgw.core.exceptions import ZTError
from ztgw.services.topology import TopologyManager


app = typer.Typer(
    name="topology",
    help="Deploy and inspect multi-network topologies (hub-spoke, mesh, multi-site).",
    no_args_is_help=True,
)

TopologyFileOption = Annotated[
    Path,
    typer.Option(
        "--config",
        "-c",
        help="Topology file: TYPE=hub-spoke|mesh|multi-site|custom and NETWORK=<id> lines.",
        dir_okay=False,
    ),
]

OptionalTopologyFileOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Topology file.", dir_okay=False),
]


def _manager(ctx: ExecutionContext) -> tuple[TopologyManager, Services]:
    services = build_services(ctx)
    manager = TopologyManager(
        ctx,
        services.executor,
        zerotier=services.zerotier,
        forwarding=services.forwarding,
        interfaces=services.interfaces,
    )
    return manager, services


@app.command("validate")
def topology_validate(
    config: TopologyFileOption,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    settings: SettingsOption = None,
) -> None:
    """Check a topology file and the tools it needs.

    [bold]Examples:[/bold]

        ztgw topology validate -c hub.conf
    """
    ctx = get_context(verbose=verbose, no_color=no_color, settings=settings)

    try:
        topology = desired_state.load_topology(config)
        manager, _ = _manager(ctx)
        manager.validate(topology)
        ctx.console.success("Topology is valid")
    except ZTError as e:
        handle_error(e, ctx)


@app.command("deploy")
def topology_deploy(
    config: TopologyFileOption,
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    log_file: LogFileOption = None,
    settings: SettingsOption = None,
) -> None:
    """Join the topology's networks and set up routing on this node.

    [bold]Examples:[/bold]

        sudo ztgw topology deploy -c hub.conf

        ztgw topology deploy -c mesh.conf --dry-run
    """
    ctx = get_context(
        dry_run=dry_run,
        yes=yes,
        verbose=verbose,
        no_color=no_color,
        settings=settings,
        log_file=log_file,
    )

    try:
        start_session(ctx, "topology deploy")
        topology = desired_state.load_topology(config)
        manager, services = _manager(ctx)
        require_privileges(ctx, services)

        applied = manager.deploy(topology)
        ctx.console.verbose(f"{len(applied)} steps applied")
        end_session(ctx, 0)
    except ZTError as e:
        handle_error(e, ctx)


@app.command("status")
def topology_status(
    config: OptionalTopologyFileOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    settings: SettingsOption = None,
) -> None:
    """Show joined networks, forwarding and ZeroTier interfaces.

    [bold]Examples:[/bold]

        ztgw topology status -c hub.conf
    """
    ctx = get_context(verbose=verbose, no_color=no_color, settings=settings)

    try:
        topology = desired_state.load_topology(config) if config else None
        manager, services = _manager(ctx)
        try_privileges(ctx, services)
        status = manager.status(topology)

        ctx.console.print()
        ctx.console.print(
            f"[bold]Topology:[/bold] {status.type.value if status.type else 'not configured'}"
        )
        ctx.console.table(
            "Joined networks",
            ["Network", "Name", "Status", "Interface", "Addresses"],
            [
                [
                    m.network_id,
                    m.name or "-",
                    m.status,
                    m.interface or "-",
                    ", ".join(m.assigned_addresses) or "-",
                ]
                for m in status.memberships
            ],
        )
        forwarding = "[green]enabled[/green]" if status.forwarding else "disabled"
        ctx.console.print(f"[bold]IPv4 forwarding:[/bold] {forwarding}")

        ctx.console.print("[bold]ZeroTier interfaces:[/bold]")
        for iface in status.overlay_interfaces:
            addresses = ", ".join(str(a) for a in iface.addresses) or "-"
            ctx.console.print(f"  {iface.name} {iface.state} {addresses}")
        if not status.overlay_interfaces:
            ctx.console.print("  none")

        if topology:
            missing = status.missing(topology)
            if missing:
                ctx.console.warn(f"Not joined: {', '.join(missing)}")
                ctx.console.hint("Join them with: ztgw topology deploy")
    except ZTError as e:
        handle_error(e, ctx)


@app.command("cleanup")
def topology_cleanup(
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    log_file: LogFileOption = None,
    settings: SettingsOption = None,
) -> None:
    """Leave every joined ZeroTier network.

    [bold]Examples:[/bold]

        sudo ztgw topology cleanup
    """
    ctx = get_context(
        dry_run=dry_run,
        yes=yes,
        verbose=verbose,
        no_color=no_color,
        settings=settings,
        log_file=log_file,
    )

    try:
        start_session(ctx, "topology cleanup")
        manager, services = _manager(ctx)
        require_privileges(ctx, services)
        services.zerotier.require_installed()
        manager.cleanup()
        end_session(ctx, 0)
    except ZTError as e:
        handle_error(e, ctx)
