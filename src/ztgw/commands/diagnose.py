"""Diagnostics command."""

from pathlib import Path
from typing import Annotated, Optional

import typer

from ztgw.commands.common import (
    NetworkOption,
    NoColorOption,
    SettingsOption,
    VerboseOption,
    build_services,
    end_session,
    get_context,
    handle_error,
    start_session,
    try_privileges,
)
from ztgw.core.exceptions import ZTError
from ztgw.core.validation import validate_network_id
from ztgw.services.diagnostics import Diagnostics


def diagnose(
    network: NetworkOption = None,
    peer: Annotated[
        Optional[str],
        typer.Option("--peer", "-p", help="Ping this peer address."),
    ] = None,
    full: Annotated[
        bool,
        typer.Option("--full", help="Include system information."),
    ] = False,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", dir_okay=False, help="Also save the report as YAML."),
    ] = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    settings: SettingsOption = None,
) -> None:
    """Troubleshoot ZeroTier connectivity on this host.

    Checks the client, service, memberships, peers, forwarding, firewall,
    routes, DNS and reachability of the ZeroTier root servers. Nothing
    is changed. Exits 1 when a critical check fails.

    [bold]Examples:[/bold]

        ztgw diagnose

        ztgw diagnose -n 8056c2e21c000001 -p 10.147.17.1 --full -o report.yaml
    """
    ctx = get_context(verbose=verbose, no_color=no_color, settings=settings)

    try:
        start_session(ctx, "diagnose")
        network_id = validate_network_id(network) if network else None

        services = build_services(ctx)
        try_privileges(ctx, services)
        diagnostics = Diagnostics(
            ctx,
            services.executor,
            zerotier=services.zerotier,
            forwarding=services.forwarding,
            backend=services.backend,
            interfaces=services.interfaces,
            systemd=services.systemd,
        )
        report = diagnostics.run(network_id=network_id, peer=peer, full=full)

        if output:
            output.write_text(report.to_yaml())
            ctx.console.success(f"Report saved to {output}")

        if report.critical_failures:
            ctx.console.error(
                f"{len(report.critical_failures)} critical, {len(report.issues)} total issues"
            )
            end_session(ctx, 1)
            raise typer.Exit(1)
        if report.issues:
            ctx.console.warn(f"{len(report.issues)} issues need attention")
        else:
            ctx.console.success("No issues detected")
        end_session(ctx, 0)

    except ZTError as e:
        handle_error(e, ctx)
