"""Console output using Rich.

Every message a command prints goes through the shared ``console`` so
verbosity, dry-run markers and colour settings apply uniformly. Warnings
and errors go to stderr; everything else to stdout.
"""

from enum import IntEnum
from typing import Any, Iterable, Optional

from rich import box
from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table


class Verbosity(IntEnum):
    """Output verbosity levels."""
    QUIET = 0    # Errors only
    NORMAL = 1
    VERBOSE = 2  # -v
    DEBUG = 3    # -vv


# Check status -> markup, shared by diagnostics and topology validation
STATUS_MARKUP = {
    "pass": "[green]PASS[/green]",
    "warn": "[yellow]WARN[/yellow]",
    "fail": "[red]FAIL[/red]",
    "skip": "[dim]SKIP[/dim]",
}


class Console:
    """Rich-backed console with verbosity and dry-run awareness."""

    def __init__(self) -> None:
        self.verbosity = Verbosity.NORMAL
        self.dry_run = False
        self.no_color = False
        self._out = RichConsole(highlight=False)
        self._err = RichConsole(stderr=True, highlight=False)

    def configure(self, verbosity: int = 1, dry_run: bool = False, no_color: bool = False) -> None:
        """Apply CLI flags. Called once per command by the execution context."""
        self.verbosity = Verbosity(max(Verbosity.QUIET, min(verbosity, Verbosity.DEBUG)))
        self.dry_run = dry_run
        if no_color != self.no_color:
            self.no_color = no_color
            self._out = RichConsole(highlight=False, no_color=no_color)
            self._err = RichConsole(stderr=True, highlight=False, no_color=no_color)

    def _shown(self, level: Verbosity) -> bool:
        return self.verbosity >= level

    # Messages

    def info(self, message: str) -> None:
        if self._shown(Verbosity.NORMAL):
            self._out.print(f"[green][INFO][/green] {message}")

    def success(self, message: str) -> None:
        if self._shown(Verbosity.NORMAL):
            self._out.print(f"[green][OK][/green] {message}")

    def warn(self, message: str) -> None:
        self._err.print(f"[yellow][WARN][/yellow] {message}")

    def error(self, message: str) -> None:
        self._err.print(f"[red][ERROR][/red] {message}")

    def debug(self, message: str) -> None:
        if self._shown(Verbosity.DEBUG):
            self._out.print(f"[cyan][DEBUG][/cyan] {message}")

    def verbose(self, message: str) -> None:
        if self._shown(Verbosity.VERBOSE):
            self._out.print(f"[dim]{message}[/dim]")

    def step(self, message: str) -> None:
        """A host change about to be made (or previewed)."""
        if self._shown(Verbosity.NORMAL):
            self._out.print(f"[blue]->[/blue] {message}")

    def dry_run_msg(self, message: str) -> None:
        if self.dry_run:
            self._out.print(f"[blue][DRY-RUN][/blue] Would: {message}")

    def hint(self, message: str) -> None:
        self._out.print(f"[cyan]Hint:[/cyan] {message}")

    def print(self, message: Any = "", **kwargs: Any) -> None:
        """Print raw text or a Rich renderable."""
        self._out.print(message, **kwargs)

    def rule(self, title: str = "") -> None:
        self._out.rule(title)

    # Structured output

    def plan(self, steps: Iterable[str], title: str = "Planned changes") -> None:
        """Bulleted list of pending steps, shown before confirmation."""
        self._out.print()
        self._out.print(f"[bold]{title}:[/bold]")
        for description in steps:
            self._out.print(f"  - {description}")
        self._out.print()

    def check_line(
        self,
        status: str,
        name: str,
        message: str,
        details: Optional[dict[str, Any]] = None,
        fix: Optional[str] = None,
    ) -> None:
        """One diagnostic result with optional details and remediation."""
        label = STATUS_MARKUP.get(status, status.upper())
        self._out.print(f"  {label} {name}: {message}")
        for key, value in (details or {}).items():
            self._out.print(f"        [dim]{key}: {value}[/dim]")
        if fix:
            self._out.print(f"        [dim]Fix: {fix}[/dim]")

    def table(
        self,
        title: str,
        columns: list[str],
        rows: list[list[str]],
        box_style: box.Box = box.ROUNDED,
    ) -> None:
        table = Table(title=title, box=box_style)
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*row)
        self._out.print(table)

    def yaml(self, yaml_text: str, title: str = "Settings") -> None:
        syntax = Syntax(yaml_text, "yaml", theme="monokai", line_numbers=False)
        self._out.print(Panel(syntax, title=title, border_style="cyan"))

    def summary(self, title: str, items: dict[str, Any], ok: Optional[bool] = None) -> None:
        """Key/value panel. With ``ok`` the title carries a SUCCESS/FAILED badge."""
        lines = []
        for key, value in items.items():
            if isinstance(value, bool):
                value = "[green]Yes[/green]" if value else "[red]No[/red]"
            lines.append(f"[bold]{key}:[/bold] {value}")

        border = "blue"
        if ok is not None:
            title = f"{title} - {'[green]SUCCESS[/green]' if ok else '[red]FAILED[/red]'}"
            border = "green" if ok else "red"
        self._out.print(Panel("\n".join(lines), title=title, border_style=border))

    # Prompts

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask a yes/no question. EOF or Ctrl+C counts as no."""
        suffix = "[Y/n]" if default else "[y/N]"
        try:
            answer = self._out.input(f"{message} {suffix}: ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            return False
        if not answer:
            return default
        return answer in ("y", "yes")


# Global console instance
console = Console()
