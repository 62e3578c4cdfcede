"""Main CLI entry point using Typer.

This module defines the root CLI application and registers the commands
and command groups from submodules.
"""

from typing import Annotated

import typer
from rich.console import Console

from ztgw import __version__
from ztgw.commands import diagnose, gateway, install, monitor, settings, topology


# Create the main Typer app
app = typer.Typer(
    name="ztgw",
    help="ZeroTier gateway CLI - configure, check and monitor overlay gateways.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

# Top-level commands
app.command("configure")(gateway.configure)
app.command("check")(gateway.check)
app.command("restore")(gateway.restore)
app.command("monitor")(monitor.monitor)
app.command("diagnose")(diagnose.diagnose)
app.command("install")(install.install)

# Register command groups
app.add_typer(gateway.snapshot_app, name="snapshot")
app.add_typer(topology.app, name="topology")
app.add_typer(settings.app, name="config")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console = Console()
        console.print(f"ztgw version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """ZeroTier gateway CLI.

    Turns a Linux host into a gateway between its LAN and a ZeroTier
    network, idempotently and with a dry-run preview of every change.

    [bold]Features:[/bold]
    - Re-running a configuration changes nothing once applied
    - Dry-run mode that still reads real host state
    - Snapshots before changes, restorable with one command
    - iptables, firewalld, ufw and nftables backends

    [bold]Examples:[/bold]
        ztgw configure -n 8056c2e21c000001 -p eth0 --dry-run
        ztgw check -c /etc/ztgw/gateway.conf
        ztgw monitor --once
        ztgw diagnose --full
        ztgw topology deploy -c hub.conf
    """
    pass


if __name__ == "__main__":
    app()
