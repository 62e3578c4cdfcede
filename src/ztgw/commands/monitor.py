"""Health monitoring command."""

from typing import Annotated, Optional

import typer

from ztgw.commands.common import (
    GatewayConfigOption,
    LogFileOption,
    NetworkOption,
    NoColorOption,
    QuietOption,
    SettingsOption,
    VerboseOption,
    build_services,
    end_session,
    get_context,
    handle_error,
    start_session,
    try_privileges,
)
from ztgw.core import desired_state
from ztgw.core.context import ExecutionContext
from ztgw.core.exceptions import ZTError
from ztgw.core.validation import validate_email, validate_url
from ztgw.services.alerts import Alert, AlertDispatcher
from ztgw.services.health import HealthChecker, HealthReport, Monitor


def _print_report(ctx: ExecutionContext, report: HealthReport, alerts: list[Alert]) -> None:
    stamp = report.timestamp.strftime("%H:%M:%S")
    if report.healthy:
        ctx.console.success(f"{stamp} {report.metrics_line()}")
    else:
        ctx.console.warn(f"{stamp} {report.metrics_line()}")
        for issue in report.issues:
            ctx.console.print(f"    [dim]{issue}[/dim]")


def monitor(
    once: Annotated[
        bool,
        typer.Option("--once", help="Run a single health check and exit."),
    ] = False,
    interval: Annotated[
        Optional[int],
        typer.Option("--interval", "-i", min=1, help="Seconds between checks. Default: from settings."),
    ] = None,
    network: NetworkOption = None,
    config: GatewayConfigOption = None,
    alert_email: Annotated[
        Optional[str],
        typer.Option("--alert-email", help="Mail alerts to this address."),
    ] = None,
    alert_webhook: Annotated[
        Optional[str],
        typer.Option("--alert-webhook", help="POST alerts as JSON to this URL."),
    ] = None,
    max_polls: Annotated[
        Optional[int],
        typer.Option("--count", min=1, help="Stop after this many checks."),
    ] = None,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    log_file: LogFileOption = None,
    settings: SettingsOption = None,
) -> None:
    """Watch ZeroTier health and alert when it changes.

    Alerts fire on transitions only: when the service goes down, a
    network leaves OK, or the last peer disconnects, and again when the
    condition clears.

    [bold]Examples:[/bold]

        ztgw monitor --once

        ztgw monitor -n 8056c2e21c000001 -i 30 --alert-email ops@example.com
    """
    ctx = get_context(
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        settings=settings,
        log_file=log_file,
    )

    try:
        start_session(ctx, "monitor")
        desired = None
        if network or config:
            desired = desired_state.load(config, network_id=network)

        email = alert_email or ctx.config.alert_email
        webhook = alert_webhook or ctx.config.alert_webhook
        if email:
            validate_email(email)
        if webhook:
            validate_url(webhook)

        services = build_services(ctx)
        try_privileges(ctx, services)
        services.zerotier.require_installed()

        checker = HealthChecker(ctx, services.zerotier, services.forwarding, services.interfaces)
        dispatcher = AlertDispatcher(ctx, services.executor, email=email, webhook=webhook)
        watcher = Monitor(ctx, checker, dispatcher)

        if once:
            report, alerts = watcher.poll(desired)
            _print_report(ctx, report, alerts)
            end_session(ctx, 0 if report.healthy else 1)
            if not report.healthy:
                raise typer.Exit(1)
            return

        period = interval or ctx.config.monitor.interval
        target = desired.network_id if desired else "all joined networks"
        ctx.console.info(f"Monitoring {target} every {period}s (Ctrl+C to stop)")
        watcher.install_signal_handlers()
        polls = watcher.watch(
            desired,
            interval=period,
            on_report=lambda report, alerts: _print_report(ctx, report, alerts),
            max_polls=max_polls,
        )
        ctx.console.info(f"Stopped after {polls} checks")
        end_session(ctx, 0)

    except ZTError as e:
        handle_error(e, ctx)
