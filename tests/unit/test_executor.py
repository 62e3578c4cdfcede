"""Unit tests for the command executor."""

import json
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from ztgw.core.exceptions import CommandTimeoutError, ExecutionError
from ztgw.core.executor import CommandExecutor


def read_log(ctx) -> list[dict]:
    return [json.loads(line) for line in ctx.run_log.log_path.read_text().splitlines()]


class TestDryRun:
    """Dry-run interception."""

    def test_mutation_is_simulated(self, dry_ctx, dry_host):
        host = dry_host
        result = host.run(["sysctl", "-w", "net.ipv4.ip_forward=1"])

        assert result.dry_run
        assert result.success
        assert result.stdout == "[dry-run] would run: sysctl -w net.ipv4.ip_forward=1"
        assert host.spawned == []
        assert host.proc("net.ipv4.ip_forward") == "0"

    def test_read_only_probe_still_runs(self, dry_ctx, dry_host):
        host = dry_host
        result = host.run(["zerotier-cli", "-v"], read_only=True)

        assert not result.dry_run
        assert result.stdout.strip() == "1.14.0"
        assert host.spawned == [["zerotier-cli", "-v"]]

    def test_dry_run_write_leaves_disk_untouched(self, dry_ctx, tmp_path):
        executor = CommandExecutor(dry_ctx)
        target = tmp_path / "etc" / "sysctl.conf"

        executor.write_file(target, "net.ipv4.ip_forward = 1\n")

        assert not target.exists()

    def test_simulated_commands_are_logged(self, dry_ctx, dry_host):
        host = dry_host
        host.run(["zerotier-cli", "join", "8056c2e21c000001"])

        events = [e for e in read_log(dry_ctx) if e["event_type"] == "command.run"]
        assert events[-1]["dry_run"] is True
        assert events[-1]["message"] == "zerotier-cli join 8056c2e21c000001"


class TestRun:
    """Real execution paths."""

    def test_failure_raises_execution_error(self, host):
        host.fail("iptables -w -A", return_code=2, stderr="iptables: No chain/target/match by that name.")

        with pytest.raises(ExecutionError) as exc:
            host.run(["iptables", "-w", "-A", "FORWARD", "-j", "ACCEPT"])

        assert exc.value.exit_code == 5
        assert exc.value.return_code == 2
        assert any("No chain" in d for d in exc.value.details)

    def test_failure_without_check(self, host):
        host.fail("iptables")
        result = host.run(["iptables", "-L"], check=False)
        assert not result.success
        assert result.stderr == "simulated failure"

    def test_missing_binary(self, host):
        with pytest.raises(ExecutionError) as exc:
            host.run(["firewall-cmd", "--state"], read_only=True)
        assert "Command not found: firewall-cmd" in str(exc.value)
        assert exc.value.hint

    def test_timeout(self, ctx):
        executor = CommandExecutor(ctx)
        with patch.object(
            CommandExecutor,
            "_spawn",
            side_effect=subprocess.TimeoutExpired(["sleep", "10"], 5),
        ):
            with pytest.raises(CommandTimeoutError) as exc:
                executor.run(["sleep", "10"])

        assert exc.value.exit_code == 9
        assert exc.value.timeout == 5
        assert "timed out after 5s" in str(exc.value)

    def test_timeout_is_execution_error(self):
        assert issubclass(CommandTimeoutError, ExecutionError)

    def test_sudo_prefix(self, host):
        host.ctx.use_sudo = True
        result = host.run(["zerotier-cli", "-v"], read_only=True)
        assert result.command[:2] == ["sudo", "-n"]
        assert host.spawned[-1] == ["zerotier-cli", "-v"]

    def test_sensitive_command_hidden_in_log(self, ctx, host):
        host.run(["zerotier-cli", "-v"], read_only=True, sensitive=True)
        events = [e for e in read_log(ctx) if e["event_type"] == "command.run"]
        assert events[-1]["message"] == "<sensitive command>"


class TestFiles:
    def test_write_is_atomic_and_sets_mode(self, ctx, tmp_path):
        executor = CommandExecutor(ctx)
        target = tmp_path / "nested" / "rules.v4"

        executor.write_file(target, "*filter\nCOMMIT\n", permissions=0o640)

        assert target.read_text() == "*filter\nCOMMIT\n"
        assert oct(target.stat().st_mode & 0o777) == "0o640"
        assert [p.name for p in target.parent.iterdir()] == ["rules.v4"]

    def test_read_missing_file(self, ctx, tmp_path):
        assert CommandExecutor(ctx).read_file(tmp_path / "absent") is None

    def test_remove_file(self, ctx, tmp_path):
        target = tmp_path / "file"
        target.write_text("x")
        CommandExecutor(ctx).remove_file(target)
        assert not target.exists()

    def test_unreadable_file_raises_execution_error(self, ctx, tmp_path):
        target = tmp_path / "sysctl.conf"
        target.write_text("net.ipv4.ip_forward = 1\n")

        with patch.object(Path, "read_text", side_effect=PermissionError(13, "Permission denied")):
            with pytest.raises(ExecutionError) as exc:
                CommandExecutor(ctx).read_file(target)

        assert exc.value.exit_code == 5
        assert str(target) in exc.value.message
        assert exc.value.hint

    def test_unwritable_directory_raises_execution_error(self, ctx, tmp_path):
        target = tmp_path / "etc" / "rules.v4"

        with patch("ztgw.core.executor.tempfile.mkstemp", side_effect=PermissionError(13, "Permission denied")):
            with pytest.raises(ExecutionError) as exc:
                CommandExecutor(ctx).write_file(target, "*filter\nCOMMIT\n")

        assert exc.value.exit_code == 5
        assert not target.exists()
