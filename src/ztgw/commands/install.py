"""ZeroTier installation command."""

from ztgw.commands.common import (
    DryRunOption,
    LogFileOption,
    NetworkOption,
    NoColorOption,
    SettingsOption,
    VerboseOption,
    YesOption,
    build_services,
    end_session,
    get_context,
    handle_error,
    require_privileges,
    start_session,
)
from ztgw.core.exceptions import ZTError
from ztgw.core.validation import validate_network_id
from ztgw.services.installer import Installer


def install(
    network: NetworkOption = None,
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    log_file: LogFileOption = None,
    settings: SettingsOption = None,
) -> None:
    """Install the ZeroTier client from its signed installer.

    Installs curl and gpg when missing, verifies the installer signature
    against the ZeroTier key, runs it, and optionally joins a network.

    [bold]Examples:[/bold]

        sudo ztgw install

        sudo ztgw install -n 8056c2e21c000001 -y
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
        start_session(ctx, "install")
        network_id = validate_network_id(network) if network else None

        services = build_services(ctx)
        require_privileges(ctx, services)

        result = Installer(ctx, services.executor, services.zerotier).install(network_id)
        if result.installed:
            ctx.console.success("Installation complete")
            ctx.console.hint("Configure a gateway with: ztgw configure -n NETWORK_ID")
        end_session(ctx, 0)

    except ZTError as e:
        handle_error(e, ctx)
