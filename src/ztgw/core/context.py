"""Execution context for commands.

The ExecutionContext holds the flags that affect how a run behaves. It is
threaded explicitly through the executor, the services and the reconciler.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ztgw.core.config import AppConfig, DEFAULT_CONFIG_PATH
from ztgw.core.output import Console, console, Verbosity
from ztgw.core.runlog import RunLog, default_log_path


@dataclass
class ExecutionContext:
    """Execution context passed to all commands.

    Attributes:
        dry_run: If True, show what would happen without mutating the host
        yes: If True, skip confirmation prompts
        verbosity: Output verbosity level (0-3)
        no_color: If True, disable colored output
        config_path: Path to the tool settings file
        log_path: Run log location (timestamped temp file when None)
        use_sudo: Prefix commands with ``sudo -n`` (set by the privilege check)
    """

    # Runtime flags
    dry_run: bool = False
    yes: bool = False
    verbosity: int = 1
    no_color: bool = False

    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)
    log_path: Optional[Path] = None
    use_sudo: bool = False

    # Internal state (initialized lazily)
    _config: Optional[AppConfig] = field(default=None, repr=False)
    _run_log: Optional[RunLog] = field(default=None, repr=False)
    _console: Console = field(default_factory=lambda: console, repr=False)

    def __post_init__(self) -> None:
        """Configure console after initialization."""
        self._console.configure(
            verbosity=self.verbosity,
            dry_run=self.dry_run,
            no_color=self.no_color,
        )

    @property
    def config(self) -> AppConfig:
        """Get tool settings (lazy loaded)."""
        if self._config is None:
            self._config = AppConfig(config_path=self.config_path)
        return self._config

    @property
    def run_log(self) -> RunLog:
        """Get the structured run log (created on first use)."""
        if self._run_log is None:
            path = self.log_path
            if path is None and self.config.log_dir is not None:
                path = self.config.log_dir / default_log_path().name
            self._run_log = RunLog(path)
        return self._run_log

    @property
    def console(self) -> Console:
        return self._console

    @property
    def command_timeout(self) -> int:
        return self.config.runner.timeout

    @property
    def is_verbose(self) -> bool:
        return self.verbosity >= Verbosity.VERBOSE

    @property
    def should_confirm(self) -> bool:
        """Check if confirmations should be shown."""
        return not self.yes and not self.dry_run


def create_context(
    dry_run: bool = False,
    yes: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
    log_file: Optional[Path] = None,
) -> ExecutionContext:
    """Create an execution context from CLI options.

    Args:
        dry_run: Preview changes without executing
        yes: Skip confirmation prompts
        verbose: Increase verbosity (can be repeated)
        quiet: Suppress non-essential output
        no_color: Disable colored output
        config: Path to the tool settings file
        log_file: Explicit run log path

    Returns:
        Configured execution context
    """
    if quiet:
        verbosity = Verbosity.QUIET
    else:
        verbosity = min(Verbosity.NORMAL + verbose, Verbosity.DEBUG)

    return ExecutionContext(
        dry_run=dry_run,
        yes=yes,
        verbosity=verbosity,
        no_color=no_color,
        config_path=config or DEFAULT_CONFIG_PATH,
        log_path=log_file,
    )
