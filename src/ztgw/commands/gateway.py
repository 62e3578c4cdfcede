"""Gateway commands: configure, check, restore and snapshots.

Examples:
    ztgw configure -n 8056c2e21c000001 -p eth0 -s 192.168.1.0/24
    ztgw configure -c /etc/ztgw/gateway.conf --dry-run
    ztgw check -c /etc/ztgw/gateway.conf
    ztgw snapshot list
    ztgw restore 20240101-120000
"""

from pathlib import Path
from typing import Annotated, Optional

import typer

from ztgw.commands.common import (
    DryRunOption,
    GatewayConfigOption,
    LogFileOption,
    NetworkOption,
    NoColorOption,
    QuietOption,
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
from ztgw.core.exceptions import BackupError, ZTError
from ztgw.core.safety import ConfirmationPolicy
from ztgw.services.reconciler import Reconciler


PhyIfaceOption = Annotated[
    Optional[str],
    typer.Option("--phy-iface", "-p", help="Physical (LAN) interface. Default: default-route interface."),
]

SubnetOption = Annotated[
    Optional[str],
    typer.Option("--subnet", "-s", help="Physical subnet in CIDR form, e.g. 192.168.1.0/24."),
]

Ipv6Option = Annotated[
    Optional[bool],
    typer.Option("--ipv6/--no-ipv6", help="Also enable IPv6 forwarding."),
]


snapshot_app = typer.Typer(
    name="snapshot",
    help="Inspect and create snapshots of forwarding and firewall state.",
    no_args_is_help=True,
)


def _reconciler(ctx: ExecutionContext, services: Services, take_backup: bool = True) -> Reconciler:
    return Reconciler(
        ctx,
        services.executor,
        zerotier=services.zerotier,
        forwarding=services.forwarding,
        backend=services.backend,
        backups=services.backups,
        interfaces=services.interfaces,
        take_backup=take_backup,
    )


def configure(
    config: GatewayConfigOption = None,
    network: NetworkOption = None,
    phy_iface: PhyIfaceOption = None,
    subnet: SubnetOption = None,
    ipv6: Ipv6Option = None,
    no_backup: Annotated[
        bool,
        typer.Option("--no-backup", help="Do not snapshot state before changing it."),
    ] = False,
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    log_file: LogFileOption = None,
    settings: SettingsOption = None,
) -> None:
    """Configure this host as a ZeroTier gateway.

    Joins the network, enables IP forwarding now and at boot, and adds
    NAT plus forward rules between the physical and ZeroTier interfaces
    on the detected firewall. Running it again changes nothing.

    [bold]Examples:[/bold]

        sudo ztgw configure -n 8056c2e21c000001 -p eth0 -s 192.168.1.0/24

        ztgw configure -c gateway.conf --dry-run
    """
    ctx = get_context(
        dry_run=dry_run,
        yes=yes,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        settings=settings,
        log_file=log_file,
    )

    try:
        start_session(ctx, "configure")
        desired = desired_state.load(
            config,
            network_id=network,
            phy_iface=phy_iface,
            phy_subnet=subnet,
            ipv6=ipv6,
        )

        services = build_services(ctx)
        require_privileges(ctx, services)

        result = _reconciler(ctx, services, take_backup=not no_backup).run(desired)
        if result.cancelled:
            end_session(ctx, 0)
            raise typer.Exit(0)

        if not result.changed:
            ctx.console.info("No changes were needed")
        end_session(ctx, 0)

    except ZTError as e:
        handle_error(e, ctx)


def check(
    config: GatewayConfigOption = None,
    network: NetworkOption = None,
    phy_iface: PhyIfaceOption = None,
    subnet: SubnetOption = None,
    ipv6: Ipv6Option = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    settings: SettingsOption = None,
) -> None:
    """Report whether the host matches the gateway config, without changing it.

    Exits 1 when any step is out of place.

    [bold]Examples:[/bold]

        ztgw check -c gateway.conf
    """
    ctx = get_context(verbose=verbose, no_color=no_color, settings=settings)

    try:
        desired = desired_state.load(
            config,
            network_id=network,
            phy_iface=phy_iface,
            phy_subnet=subnet,
            ipv6=ipv6,
        )
        services = build_services(ctx)
        try_privileges(ctx, services)

        report = _reconciler(ctx, services).check(desired)
        rows = [
            ["[green]ok[/green]" if satisfied else "[red]missing[/red]", description]
            for description, satisfied in report
        ]
        ctx.console.table(
            f"Gateway state ({services.backend.kind.value})",
            ["State", "Step"],
            rows,
        )

        drift = [description for description, satisfied in report if not satisfied]
        if drift:
            ctx.console.warn(f"{len(drift)} of {len(report)} steps need applying")
            ctx.console.hint("Apply them with: ztgw configure")
            raise typer.Exit(1)
        ctx.console.success("Host matches the gateway config")

    except ZTError as e:
        handle_error(e, ctx)


def restore(
    snapshot: Annotated[
        Optional[str],
        typer.Argument(help="Snapshot name or directory. Default: newest."),
    ] = None,
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    log_file: LogFileOption = None,
    settings: SettingsOption = None,
) -> None:
    """Restore forwarding and firewall state from a snapshot.

    [bold]Examples:[/bold]

        sudo ztgw restore

        sudo ztgw restore 20240101-120000
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
        start_session(ctx, "restore")
        services = build_services(ctx)
        require_privileges(ctx, services)

        if snapshot:
            target = services.backups.load(snapshot)
        else:
            snapshots = services.backups.list_snapshots()
            if not snapshots:
                raise BackupError(
                    f"No snapshots in {services.backups.backup_root}",
                    hint="Snapshots are taken by: ztgw configure",
                )
            target = snapshots[0]

        ctx.console.summary(f"Snapshot {target.name}", {
            "Created": target.created_at.isoformat(timespec="seconds"),
            "Backend": target.backend.value,
            "Files": ", ".join(str(f.source) for f in target.files) or "none",
        })
        if not ConfirmationPolicy.for_context(ctx).confirm(f"Restore {target.name}?"):
            ctx.console.info("Cancelled")
            end_session(ctx, 0)
            raise typer.Exit(0)

        services.backups.restore(target, services.forwarding)
        ctx.console.success(f"Restored {target.path}")
        end_session(ctx, 0)

    except ZTError as e:
        handle_error(e, ctx)


@snapshot_app.command("list")
def snapshot_list(
    no_color: NoColorOption = False,
    settings: SettingsOption = None,
) -> None:
    """List snapshots, newest first."""
    ctx = get_context(no_color=no_color, settings=settings)

    try:
        services = build_services(ctx)
        snapshots = services.backups.list_snapshots()
        if not snapshots:
            ctx.console.info(f"No snapshots in {services.backups.backup_root}")
            return

        ctx.console.table(
            f"Snapshots in {services.backups.backup_root}",
            ["Name", "Created", "Backend", "Files"],
            [
                [
                    s.name,
                    s.created_at.isoformat(timespec="seconds"),
                    s.backend.value,
                    str(sum(1 for f in s.files if f.existed)),
                ]
                for s in snapshots
            ],
        )
    except ZTError as e:
        handle_error(e, ctx)


@snapshot_app.command("create")
def snapshot_create(
    backup_root: Annotated[
        Optional[Path],
        typer.Option("--backup-root", help="Directory for the snapshot. Default: from settings."),
    ] = None,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    settings: SettingsOption = None,
) -> None:
    """Snapshot current forwarding and firewall state."""
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, settings=settings)

    try:
        start_session(ctx, "snapshot create")
        services = build_services(ctx)
        require_privileges(ctx, services)
        if backup_root:
            services.backups.backup_root = backup_root

        snapshot = services.backups.snapshot(services.backend, services.forwarding)
        ctx.console.success(f"Snapshot written to {snapshot.path}")
        end_session(ctx, 0)

    except ZTError as e:
        handle_error(e, ctx)
