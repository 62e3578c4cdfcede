"""Tool settings commands: show, init, validate and example."""

from typing import Annotated

import typer

from ztgw.commands.common import (
    NoColorOption,
    SettingsOption,
    VerboseOption,
    get_context,
    handle_error,
)
from ztgw.core.config import ToolConfig, get_example_config, init_config
from ztgw.core.exceptions import ZTError


app = typer.Typer(
    name="config",
    help="Tool settings (timeouts, paths, alert channels, firewall backend).",
    no_args_is_help=True,
)


@app.command("show")
def config_show(
    settings: SettingsOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Show the effective settings.

    Environment overrides are listed as set or not set; their values are
    not shown.
    """
    ctx = get_context(no_color=no_color, settings=settings)

    try:
        app_config = ctx.config

        ctx.console.print()
        ctx.console.print(f"[bold]Settings file:[/bold] {ctx.config_path}")
        ctx.console.print(f"[bold]File exists:[/bold] {ctx.config_path.exists()}")
        ctx.console.print()

        ctx.console.yaml(app_config.config.to_yaml(), title="Settings")

        ctx.console.summary("Environment overrides", {
            "ZTGW_ALERT_EMAIL": "Set" if app_config.env.ztgw_alert_email else "Not set",
            "ZTGW_ALERT_WEBHOOK": "Set" if app_config.env.ztgw_alert_webhook else "Not set",
            "ZTGW_BACKUP_ROOT": "Set" if app_config.env.ztgw_backup_root else "Not set",
        })

    except ZTError as e:
        handle_error(e)


@app.command("init")
def config_init(
    settings: SettingsOption = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing settings file."),
    ] = False,
    no_color: NoColorOption = False,
) -> None:
    """Write a commented settings file with the defaults."""
    ctx = get_context(no_color=no_color, settings=settings)

    try:
        init_config(ctx.config_path, force=force)
        ctx.console.success(f"Settings file created: {ctx.config_path}")
        ctx.console.hint("Alert channels can also come from ZTGW_ALERT_EMAIL and ZTGW_ALERT_WEBHOOK")
    except ZTError as e:
        handle_error(e)


@app.command("validate")
def config_validate(
    settings: SettingsOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Check that the settings file parses and every value is valid."""
    ctx = get_context(verbose=verbose, no_color=no_color, settings=settings)

    try:
        tool_config = ToolConfig.load(ctx.config_path)
        ctx.console.success(f"Settings are valid: {ctx.config_path}")
        if ctx.is_verbose:
            ctx.console.yaml(tool_config.to_yaml())
    except ZTError as e:
        handle_error(e)


@app.command("example")
def config_example(no_color: NoColorOption = False) -> None:
    """Print an example settings file."""
    ctx = get_context(no_color=no_color)
    ctx.console.print(get_example_config(), markup=False, highlight=False)
