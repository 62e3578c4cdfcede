"""Core framework components for the ZeroTier gateway CLI."""

from ztgw.core.exceptions import (
    ZTError,
    ConfigError,
    ValidationError,
    SafetyError,
    ExecutionError,
    CommandTimeoutError,
    PrivilegeError,
    PrerequisiteError,
    RollbackError,
    FirewallError,
    BackupError,
    ReconcileError,
)

from ztgw.core.context import ExecutionContext, create_context
from ztgw.core.output import console, Console, Verbosity
from ztgw.core.config import AppConfig, ToolConfig
from ztgw.core.runlog import RunLog, EventType
from ztgw.core.executor import CommandExecutor, RunResult
from ztgw.core.steps import OperationStep, StepOutcome
from ztgw.core.safety import ConfirmationPolicy, check_privileges

__all__ = [
    # Exceptions
    "ZTError",
    "ConfigError",
    "ValidationError",
    "SafetyError",
    "ExecutionError",
    "CommandTimeoutError",
    "PrivilegeError",
    "PrerequisiteError",
    "RollbackError",
    "FirewallError",
    "BackupError",
    "ReconcileError",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "ToolConfig",
    # Run log
    "RunLog",
    "EventType",
    # Execution
    "CommandExecutor",
    "RunResult",
    "OperationStep",
    "StepOutcome",
    # Safety
    "ConfirmationPolicy",
    "check_privileges",
]
