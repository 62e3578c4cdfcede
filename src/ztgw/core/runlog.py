"""Structured run log.

Every command invocation, state transition, snapshot, alert and error of
one run is appended to a JSON-lines file. Writes are serialized with an
exclusive file lock so a monitor and a one-shot run can share a file.
"""

import fcntl
import json
import os
import tempfile
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Generator, Optional

from ztgw.core.output import console


class EventType(Enum):
    """Types of logged events."""
    SESSION_START = "session.start"
    SESSION_END = "session.end"

    COMMAND = "command.run"
    FILE_WRITE = "file.write"
    FILE_REMOVE = "file.remove"

    TRANSITION = "reconcile.transition"
    STEP = "reconcile.step"

    SNAPSHOT_CREATE = "snapshot.create"
    SNAPSHOT_RESTORE = "snapshot.restore"

    HEALTH = "health.report"
    ALERT = "alert.sent"

    ERROR = "error"


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# Keys that contain sensitive data
SENSITIVE_KEYS = frozenset({
    "password", "secret", "token", "credential", "api_key", "webhook",
})


def _sanitize_value(key: str, value: Any) -> Any:
    """Redact values whose key suggests a secret."""
    key_lower = key.lower()

    if any(s in key_lower for s in SENSITIVE_KEYS):
        return "***REDACTED***"

    if isinstance(value, dict):
        return {k: _sanitize_value(k, v) for k, v in value.items()}

    if isinstance(value, list):
        return [_sanitize_value(key, v) for v in value]

    return value


def default_log_path(now: Optional[datetime] = None) -> Path:
    """Timestamped log file under the system temp directory."""
    now = now or datetime.now()
    return Path(tempfile.gettempdir()) / f"ztgw-{now:%Y%m%d-%H%M%S}.log"


@dataclass
class LogEvent:
    """A single run-log record."""
    event_type: EventType
    level: LogLevel = LogLevel.INFO
    message: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    dry_run: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    session_id: Optional[str] = None
    correlation_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "event_type": self.event_type.value,
            "message": self.message,
            "data": {k: _sanitize_value(k, v) for k, v in self.data.items()},
            "dry_run": self.dry_run,
            "session_id": self.session_id,
            "correlation_id": self.correlation_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class RunLog:
    """Append-only JSON-lines log for one run.

    Features:
    - Atomic appends with file locking
    - Session and correlation tracking
    - Never raises on write failure (a broken log must not break a run)
    """

    def __init__(self, log_path: Optional[Path] = None, enabled: bool = True) -> None:
        self.log_path = log_path or default_log_path()
        self.enabled = enabled

        self.session_id = str(uuid.uuid4())
        self._correlation_stack: list[str] = []

    def _ensure_log_file(self) -> bool:
        try:
            self.log_path.parent.mkdir(mode=0o750, parents=True, exist_ok=True)
            if not self.log_path.exists():
                self.log_path.touch(mode=0o640)
            return True
        except OSError as e:
            console.debug(f"Cannot create run log {self.log_path}: {e}")
            return False

    def log(self, event: LogEvent) -> None:
        """Append an event to the log."""
        if not self.enabled:
            return

        event.session_id = self.session_id
        if self._correlation_stack:
            event.correlation_id = self._correlation_stack[-1]

        log_line = event.to_json() + "\n"

        if not self._ensure_log_file():
            return

        try:
            with self._atomic_append() as f:
                f.write(log_line)
        except OSError as e:
            console.debug(f"Failed to write run log: {e}")

    @contextmanager
    def _atomic_append(self) -> Generator:
        """Context manager for atomic append with file locking."""
        fd = os.open(
            self.log_path,
            os.O_WRONLY | os.O_APPEND | os.O_CREAT,
            0o640,
        )
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            with os.fdopen(fd, "a") as f:
                yield f
                f.flush()
                os.fsync(fd)
        except Exception:
            try:
                os.close(fd)
            except OSError:
                # fdopen already closed it
                pass
            raise

    @contextmanager
    def correlation(self, operation: str) -> Generator[str, None, None]:
        """Tag every event logged inside the block with one correlation id.

        Usage:
            with run_log.correlation("reconcile") as corr_id:
                run_log.info(EventType.STEP, "join network")
        """
        correlation_id = f"{operation}_{uuid.uuid4().hex[:8]}"
        self._correlation_stack.append(correlation_id)
        try:
            yield correlation_id
        finally:
            self._correlation_stack.pop()

    # Convenience methods
    def info(
        self,
        event_type: EventType,
        message: str,
        *,
        dry_run: bool = False,
        **data: Any,
    ) -> None:
        self.log(LogEvent(event_type=event_type, message=message, data=data, dry_run=dry_run))

    def warning(self, event_type: EventType, message: str, **data: Any) -> None:
        self.log(LogEvent(
            event_type=event_type,
            level=LogLevel.WARNING,
            message=message,
            data=data,
        ))

    def error(self, message: str, **data: Any) -> None:
        """Log an error at ERROR level."""
        self.log(LogEvent(
            event_type=EventType.ERROR,
            level=LogLevel.ERROR,
            message=message,
            data=data,
        ))

    def command(
        self,
        command: str,
        return_code: int,
        duration: float,
        *,
        dry_run: bool,
        read_only: bool,
        stderr: str = "",
    ) -> None:
        """Log one command invocation."""
        level = LogLevel.INFO if return_code == 0 else LogLevel.WARNING
        self.log(LogEvent(
            event_type=EventType.COMMAND,
            level=level,
            message=command,
            data={
                "return_code": return_code,
                "duration": round(duration, 3),
                "read_only": read_only,
                "stderr": stderr[:500],
            },
            dry_run=dry_run,
        ))

    def transition(self, previous: str, current: str) -> None:
        self.log(LogEvent(
            event_type=EventType.TRANSITION,
            message=f"{previous} -> {current}",
            data={"from": previous, "to": current},
        ))

    def session_start(self, command: str, args: list[str]) -> None:
        self.log(LogEvent(
            event_type=EventType.SESSION_START,
            message=command,
            data={"args": args, "uid": os.getuid()},
        ))

    def session_end(self, exit_code: int) -> None:
        self.log(LogEvent(
            event_type=EventType.SESSION_END,
            level=LogLevel.INFO if exit_code == 0 else LogLevel.ERROR,
            data={"exit_code": exit_code},
        ))
