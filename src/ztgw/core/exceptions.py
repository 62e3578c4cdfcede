"""Custom exceptions for the ZeroTier gateway CLI.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration
"""

from typing import Optional


class ZTError(Exception):
    """Base exception for all ztgw errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigError(ZTError):
    """Configuration file or settings errors.

    Raised when:
    - Desired-state file not found or unreadable
    - ZT_NETWORK_ID missing or malformed
    - Malformed CIDR subnet
    - Invalid YAML in the tool settings file
    """
    exit_code = 2


class ValidationError(ZTError):
    """Host state does not satisfy the desired configuration.

    Raised when:
    - Physical interface does not exist
    - Physical interface holds no address inside the subnet
    - Invalid interface names, URLs or email addresses
    """
    exit_code = 3


class SafetyError(ZTError):
    """Operation refused for safety reasons.

    Raised when:
    - A destructive operation is attempted without confirmation
    - A restore would target a snapshot taken on another backend
    """
    exit_code = 4


class ExecutionError(ZTError):
    """Command execution failures.

    Raised when:
    - External binary is missing
    - Command returns non-zero exit code under checked execution
    - Service operation fails
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr.strip()}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class CommandTimeoutError(ExecutionError):
    """External command exceeded its deadline."""
    exit_code = 9

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        timeout: Optional[float] = None,
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(message, command=command, hint=hint)
        self.timeout = timeout


class PrivilegeError(ZTError):
    """Insufficient privileges.

    Raised when:
    - Not running as root and passwordless sudo is unavailable
    """
    exit_code = 6


class RollbackError(ZTError):
    """Restoring a snapshot failed.

    Raised when:
    - A captured file cannot be rewritten
    - The firewall backend fails to reload the restored rules
    """
    exit_code = 7


class PrerequisiteError(ZTError):
    """Missing prerequisites.

    Raised when:
    - ZeroTier client not installed
    - Unsupported distribution for package installation
    - Required tool missing
    """
    exit_code = 8


# Domain-specific exceptions

class FirewallError(ZTError):
    """Firewall backend errors.

    Raised when:
    - No supported firewall backend is present
    - A rule cannot be added or persisted
    """
    exit_code = 10

    def __init__(
        self,
        message: str,
        *,
        rule: Optional[str] = None,
        backend: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.rule = rule
        self.backend = backend


class BackupError(ZTError):
    """Snapshot creation or lookup errors."""
    exit_code = 11


class ReconcileError(ZTError):
    """A reconciliation step failed.

    Carries the failing step, the snapshot and log locations, and takes
    its exit code from the underlying error.
    """

    def __init__(
        self,
        message: str,
        *,
        step: str,
        cause: ZTError,
        snapshot_path: Optional[str] = None,
        log_path: Optional[str] = None,
    ) -> None:
        details = [f"Failed step: {step}"]
        details.extend(cause.details)
        if snapshot_path:
            details.append(f"Snapshot: {snapshot_path}")
        if log_path:
            details.append(f"Run log: {log_path}")
        hint = cause.hint
        if snapshot_path and not hint:
            hint = f"Roll back with: ztgw restore {snapshot_path}"
        super().__init__(message, hint=hint, details=details)
        self.step = step
        self.cause = cause
        self.snapshot_path = snapshot_path
        self.log_path = log_path
        self.exit_code = cause.exit_code
