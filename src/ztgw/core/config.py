"""Tool settings using Pydantic.

Provides:
- Typed settings models with validation
- YAML file loading with defaults
- Environment variable overrides for alert destinations and backup root
- Settings initialization and display

The desired gateway state (KEY=VALUE files) is handled separately by
``ztgw.core.desired_state``.
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ztgw.core.exceptions import ConfigError, ValidationError
from ztgw.core.validation import validate_email, validate_url


# Default paths
DEFAULT_CONFIG_PATH = Path("/etc/ztgw/config.yaml")
DEFAULT_BACKUP_ROOT = Path("/var/backups/ztgw")
DEFAULT_SYSCTL_CONF = Path("/etc/sysctl.conf")
DEFAULT_COMMAND_TIMEOUT = 60
DEFAULT_MONITOR_INTERVAL = 60

BACKEND_CHOICES = ("auto", "iptables", "firewalld", "ufw", "nftables")


class PathsConfig(BaseModel):
    """Filesystem locations."""

    backup_root: Path = DEFAULT_BACKUP_ROOT
    sysctl_conf: Path = DEFAULT_SYSCTL_CONF
    log_dir: Optional[Path] = None  # None: system temp directory


class RunnerConfig(BaseModel):
    """External command execution."""

    timeout: int = DEFAULT_COMMAND_TIMEOUT
    join_wait: int = 15  # seconds to wait for the overlay interface after join

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Timeout must be a positive number of seconds")
        return v

    @field_validator("join_wait")
    @classmethod
    def validate_join_wait(cls, v: int) -> int:
        if v < 0:
            raise ValueError("join_wait cannot be negative")
        return v


class MonitorConfig(BaseModel):
    """Monitor loop and alerting."""

    interval: int = DEFAULT_MONITOR_INTERVAL
    alert_email: Optional[str] = None
    alert_webhook: Optional[str] = None
    webhook_timeout: int = 10

    @field_validator("interval")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Monitor interval must be at least 1 second")
        return v

    @field_validator("alert_email")
    @classmethod
    def validate_alert_email(cls, v: Optional[str]) -> Optional[str]:
        if v:
            try:
                return validate_email(v)
            except ValidationError as e:
                raise ValueError(e.message) from e
        return v

    @field_validator("alert_webhook")
    @classmethod
    def validate_alert_webhook(cls, v: Optional[str]) -> Optional[str]:
        if v:
            try:
                return validate_url(v)
            except ValidationError as e:
                raise ValueError(e.message) from e
        return v


class FirewallConfig(BaseModel):
    """Firewall backend settings."""

    backend: str = "auto"
    iptables_rules_file: Path = Path("/etc/iptables/rules.v4")
    nftables_file: Path = Path("/etc/nftables.conf")
    ufw_before_rules: Path = Path("/etc/ufw/before.rules")
    firewalld_zone: Optional[str] = None

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in BACKEND_CHOICES:
            raise ValueError(f"Backend must be one of: {list(BACKEND_CHOICES)}")
        return v


class ToolConfig(BaseModel):
    """Root settings model, loaded from /etc/ztgw/config.yaml."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    firewall: FirewallConfig = Field(default_factory=FirewallConfig)

    @classmethod
    def load(cls, path: Path) -> "ToolConfig":
        """Load settings from a YAML file.

        Raises:
            ConfigError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigError(
                f"Settings file not found: {path}",
                hint="Create it with: ztgw config init",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(
                f"Invalid YAML in settings file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigError(
                f"Cannot read settings file: {path}",
                hint="Check file permissions or run with sudo",
            )

        if not isinstance(data, dict):
            raise ConfigError(
                f"Settings file must contain a mapping: {path}",
            )

        try:
            return cls(**data)
        except PydanticValidationError as e:
            raise ConfigError(
                f"Invalid settings in {path}",
                details=[err["msg"] for err in e.errors()],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "ToolConfig":
        """Load settings, falling back to defaults if the file doesn't exist."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Convert settings to YAML string."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class EnvSettings(BaseSettings):
    """Overrides read from the environment (or a .env file)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    ztgw_alert_webhook: Optional[str] = Field(None, alias="ZTGW_ALERT_WEBHOOK")
    ztgw_alert_email: Optional[str] = Field(None, alias="ZTGW_ALERT_EMAIL")
    ztgw_backup_root: Optional[Path] = Field(None, alias="ZTGW_BACKUP_ROOT")


class AppConfig:
    """Settings file combined with environment overrides.

    This is the main interface for accessing settings throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[ToolConfig] = None,
        env: Optional[EnvSettings] = None,
    ) -> None:
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = config or ToolConfig.load_or_default(self.config_path)
        self._env = env or EnvSettings()

    @property
    def config(self) -> ToolConfig:
        return self._config

    @property
    def env(self) -> EnvSettings:
        return self._env

    @property
    def runner(self) -> RunnerConfig:
        return self._config.runner

    @property
    def monitor(self) -> MonitorConfig:
        return self._config.monitor

    @property
    def firewall(self) -> FirewallConfig:
        return self._config.firewall

    @property
    def backup_root(self) -> Path:
        """Backup root, environment first."""
        return self._env.ztgw_backup_root or self._config.paths.backup_root

    @property
    def sysctl_conf(self) -> Path:
        return self._config.paths.sysctl_conf

    @property
    def log_dir(self) -> Optional[Path]:
        return self._config.paths.log_dir

    @property
    def alert_webhook(self) -> Optional[str]:
        return self._env.ztgw_alert_webhook or self._config.monitor.alert_webhook

    @property
    def alert_email(self) -> Optional[str]:
        return self._env.ztgw_alert_email or self._config.monitor.alert_email


def get_example_config() -> str:
    """Generate example settings file content."""
    return """# ztgw settings
# Gateway state (network ID, interfaces) lives in a separate KEY=VALUE file
# passed with -c; this file only tunes the tool itself.

paths:
  backup_root: /var/backups/ztgw
  sysctl_conf: /etc/sysctl.conf
  # log_dir: /var/log/ztgw   # default: system temp directory

runner:
  timeout: 60      # seconds per external command
  join_wait: 15    # seconds to wait for the overlay interface after joining

monitor:
  interval: 60
  # alert_email: ops@example.com
  # alert_webhook: https://hooks.example.com/zerotier
  # Environment overrides: ZTGW_ALERT_EMAIL, ZTGW_ALERT_WEBHOOK, ZTGW_BACKUP_ROOT

firewall:
  backend: auto    # auto, iptables, firewalld, ufw, nftables
  iptables_rules_file: /etc/iptables/rules.v4
  nftables_file: /etc/nftables.conf
  ufw_before_rules: /etc/ufw/before.rules
  # firewalld_zone: public
"""


def init_config(path: Path, force: bool = False) -> None:
    """Write the example settings file.

    Raises:
        ConfigError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigError(
            f"Settings file already exists: {path}",
            hint="Use --force to overwrite",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_example_config())
    os.chmod(path, 0o644)
