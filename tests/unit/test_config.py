"""Unit tests for tool settings."""

from pathlib import Path

import pytest

from ztgw.core.config import (
    AppConfig,
    EnvSettings,
    ToolConfig,
    get_example_config,
    init_config,
)
from ztgw.core.exceptions import ConfigError


class TestToolConfig:
    def test_defaults(self):
        config = ToolConfig()
        assert config.runner.timeout == 60
        assert config.monitor.interval == 60
        assert config.firewall.backend == "auto"
        assert config.paths.backup_root == Path("/var/backups/ztgw")

    def test_example_config_loads(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text(get_example_config())
        assert ToolConfig.load(path) == ToolConfig()

    def test_invalid_values(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("runner:\n  timeout: 0\nfirewall:\n  backend: pf\n")
        with pytest.raises(ConfigError) as exc:
            ToolConfig.load(path)
        assert exc.value.exit_code == 2
        assert len(exc.value.details) == 2

    def test_invalid_alert_email(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("monitor:\n  alert_email: not-an-address\n")
        with pytest.raises(ConfigError):
            ToolConfig.load(path)

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("runner: [unclosed\n")
        with pytest.raises(ConfigError) as exc:
            ToolConfig.load(path)
        assert "Invalid YAML" in str(exc.value)

    def test_not_a_mapping(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            ToolConfig.load(path)

    def test_missing_file_falls_back(self, tmp_path: Path):
        assert ToolConfig.load_or_default(tmp_path / "absent.yaml") == ToolConfig()
        with pytest.raises(ConfigError):
            ToolConfig.load(tmp_path / "absent.yaml")


class TestAppConfig:
    def test_environment_overrides(self, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("ZTGW_ALERT_EMAIL", "env@example.com")
        monkeypatch.setenv("ZTGW_BACKUP_ROOT", str(tmp_path / "env-backups"))

        config = AppConfig(config_path=tmp_path / "absent.yaml")

        assert config.alert_email == "env@example.com"
        assert config.backup_root == tmp_path / "env-backups"

    def test_settings_file_without_environment(self, monkeypatch, tmp_path: Path):
        monkeypatch.delenv("ZTGW_ALERT_WEBHOOK", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text("monitor:\n  alert_webhook: https://hooks.example.com/zt\n")

        config = AppConfig(config_path=path, env=EnvSettings(_env_file=None))

        assert config.alert_webhook == "https://hooks.example.com/zt"


class TestInitConfig:
    def test_writes_example(self, tmp_path: Path):
        path = tmp_path / "etc" / "config.yaml"
        init_config(path)
        assert path.read_text() == get_example_config()

    def test_refuses_overwrite(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("runner: {}\n")
        with pytest.raises(ConfigError):
            init_config(path)
        init_config(path, force=True)
        assert path.read_text() == get_example_config()
