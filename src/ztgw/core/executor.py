"""Command execution with dry-run interception.

Provides:
- Command execution with output capture and a per-call deadline
- Dry-run simulation of mutating commands (read-only probes still run)
- Atomic, dry-run aware file writes
- A run-log record for every invocation, real or simulated
"""

import os
import shlex
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ztgw.core.context import ExecutionContext
from ztgw.core.exceptions import CommandTimeoutError, ExecutionError
from ztgw.core.runlog import EventType


@dataclass
class RunResult:
    """Result of one command invocation."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str
    duration: float = 0.0
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return self.return_code == 0


class CommandExecutor:
    """Safe command execution with dry-run support and output capture.

    Commands are either read-only probes (``read_only=True``), which run
    in every mode, or mutations, which are only described in dry-run mode.
    """

    def __init__(self, ctx: ExecutionContext) -> None:
        self.ctx = ctx

    def which(self, binary: str) -> bool:
        """Check whether a binary is on PATH."""
        return shutil.which(binary) is not None

    def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = True,
        read_only: bool = False,
        sensitive: bool = False,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
    ) -> RunResult:
        """Execute a command.

        Args:
            command: Command as list of strings
            description: Human-readable description for output
            check: Raise ExecutionError on non-zero exit
            read_only: Command only inspects state, so it runs in dry-run too
            sensitive: Don't show or log the actual command
            timeout: Deadline in seconds (defaults to the configured timeout)
            input_text: Data written to the command's stdin
            env: Additional environment variables

        Returns:
            RunResult with output

        Raises:
            ExecutionError: If the binary is missing, or on failure with check=True
            CommandTimeoutError: If the deadline is exceeded
        """
        if self.ctx.use_sudo and command[0] != "sudo":
            command = ["sudo", "-n"] + command

        if description:
            self.ctx.console.step(description)

        cmd_display = "<sensitive command>" if sensitive else shlex.join(command)
        self.ctx.console.debug(f"Running: {cmd_display}")

        if self.ctx.dry_run and not read_only:
            self.ctx.console.dry_run_msg(f"Run: {cmd_display}")
            result = RunResult(
                command=command,
                return_code=0,
                stdout=f"[dry-run] would run: {cmd_display}",
                stderr="",
                dry_run=True,
            )
            self._log(cmd_display, result, read_only)
            return result

        deadline = timeout if timeout is not None else self.ctx.command_timeout
        started = time.monotonic()
        try:
            return_code, stdout, stderr = self._spawn(command, deadline, input_text, env)
        except FileNotFoundError as e:
            self.ctx.run_log.error(f"Command not found: {command[0]}", command=cmd_display)
            raise ExecutionError(
                f"Command not found: {command[0]}",
                command=cmd_display,
                hint=f"Install the package that provides '{command[0]}'",
            ) from e
        except subprocess.TimeoutExpired as e:
            self.ctx.run_log.error(
                f"Command timed out after {deadline}s",
                command=cmd_display,
                timeout=deadline,
            )
            raise CommandTimeoutError(
                f"Command timed out after {deadline}s: {description or cmd_display}",
                command=cmd_display,
                timeout=deadline,
                hint="Raise runner.timeout in the settings file if the host is slow",
            ) from e

        result = RunResult(
            command=command,
            return_code=return_code,
            stdout=stdout,
            stderr=stderr,
            duration=time.monotonic() - started,
        )
        self._log(cmd_display, result, read_only)

        if check and not result.success:
            raise ExecutionError(
                f"Command failed: {description or cmd_display}",
                command=cmd_display,
                return_code=result.return_code,
                stderr=result.stderr,
            )

        return result

    def _spawn(
        self,
        command: list[str],
        timeout: float,
        input_text: Optional[str],
        env: Optional[dict[str, str]],
    ) -> tuple[int, str, str]:
        """Run the process and return (return code, stdout, stderr)."""
        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input_text,
            env=run_env,
        )
        return completed.returncode, completed.stdout, completed.stderr

    def _log(self, cmd_display: str, result: RunResult, read_only: bool) -> None:
        self.ctx.run_log.command(
            cmd_display,
            result.return_code,
            result.duration,
            dry_run=result.dry_run,
            read_only=read_only,
            stderr=result.stderr,
        )

    # File operations

    def read_file(self, path: Path) -> Optional[str]:
        """Read a file, or None if it does not exist.

        Falls back to ``cat`` through sudo when the file is not readable by
        the current user.

        Raises:
            ExecutionError: If the file exists but cannot be read
        """
        try:
            return path.read_text()
        except FileNotFoundError:
            return None
        except PermissionError as e:
            if not self.ctx.use_sudo:
                raise ExecutionError(
                    f"Cannot read {path}: permission denied",
                    hint="Run as root or with sudo",
                ) from e
        except OSError as e:
            raise ExecutionError(f"Cannot read {path}: {e.strerror or e}") from e
        result = self.run(["cat", str(path)], read_only=True, check=False)
        return result.stdout if result.success else None

    def write_file(
        self,
        path: Path,
        content: str,
        *,
        description: Optional[str] = None,
        permissions: int = 0o644,
    ) -> None:
        """Write content to a file atomically.

        Args:
            path: Destination path
            content: File content
            description: Human-readable description
            permissions: File permissions
        """
        if description:
            self.ctx.console.step(description)

        self.ctx.run_log.info(
            EventType.FILE_WRITE,
            str(path),
            dry_run=self.ctx.dry_run,
            size=len(content),
        )

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Write {len(content)} bytes to {path}")
            if self.ctx.is_verbose:
                preview = content[:500] + "..." if len(content) > 500 else content
                self.ctx.console.print(f"[dim]{preview}[/dim]")
            return

        if self.ctx.use_sudo:
            self.run(["mkdir", "-p", str(path.parent)])
            self.run(["tee", str(path)], input_text=content)
            self.run(["chmod", format(permissions, "o"), str(path)])
            return

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        except OSError as e:
            raise ExecutionError(
                f"Cannot write {path}: {e.strerror or e}",
                hint="Run as root or with sudo",
            ) from e
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, permissions)
            os.replace(tmp_name, path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise ExecutionError(
                f"Cannot write {path}: {e.strerror or e}",
                hint="Run as root or with sudo",
            ) from e

    def remove_file(self, path: Path, *, description: Optional[str] = None) -> None:
        """Remove a file if it exists."""
        if description:
            self.ctx.console.step(description)

        self.ctx.run_log.info(EventType.FILE_REMOVE, str(path), dry_run=self.ctx.dry_run)

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Remove {path}")
            return

        if self.ctx.use_sudo:
            self.run(["rm", "-f", str(path)])
            return

        path.unlink(missing_ok=True)
