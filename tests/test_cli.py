# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.23
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_cli.py

"""Test suite for CLI functionality."""

import signal
from unittest.mock import patch, MagicMock

import pytest
from rich.console import Console
from typer.testing import CliRunner

from lvmrestic.cli import app
from lvmrestic.cli.handlers import (
    build_telemetry, is_help_request, parse_command, report_batch, run_command, warn_without_multiplexer
)
from lvmrestic.config.repositories import RepositoryContext
from lvmrestic.core.backup import BatchResult, ItemResult
from lvmrestic.core.strategies import Command, Direction
from lvmrestic.system.exceptions import ConfigError, TransferFailure
from lvmrestic.system.telemetry import NullTelemetry, ZabbixTelemetry

runner = CliRunner()

HANDLERS = "lvmrestic.cli.handlers"


class TestEntryPoint:

    def test_no_arguments_prints_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code == 0
        assert "block-level-gz-backup" in result.output

    @pytest.mark.parametrize("args", [["help"], ["offsite", "help"]])
    def test_help_word(self, args):
        result = runner.invoke(app, args)
        assert result.exit_code == 0
        assert "Usage:" in result.output

    def test_missing_command(self):
        result = runner.invoke(app, ["offsite"])
        assert result.exit_code == 1
        assert "Please specify a command" in result.output

    def test_unknown_command(self):
        result = runner.invoke(app, ["offsite", "incremental-backup", "data"])
        assert result.exit_code == 1
        assert "Unknown Command: incremental-backup" in result.output

    @patch("lvmrestic.cli.main.run_command")
    def test_exit_code_is_passed_through(self, mock_run):
        mock_run.return_value = 130

        result = runner.invoke(app, ["offsite", "block-level-backup", "data", "--no-telemetry"])

        assert result.exit_code == 130
        kwargs = mock_run.call_args.kwargs
        assert kwargs["telemetry"] is False
        assert kwargs["vg"] is None

    @patch("lvmrestic.cli.main.run_command")
    def test_restore_options(self, mock_run):
        mock_run.return_value = 0

        result = runner.invoke(app, ["offsite", "file-level-restore", "data", "--vg", "vg1", "--pv", "/dev/sdb1",
                                     "--conflict-policy", "prompt"])

        assert result.exit_code == 0
        kwargs = mock_run.call_args.kwargs
        assert (kwargs["vg"], kwargs["pv"], kwargs["conflict_policy"]) == ("vg1", "/dev/sdb1", "prompt")

    @patch("lvmrestic.cli.main.run_command")
    def test_config_error(self, mock_run):
        mock_run.side_effect = ConfigError("Please install restic")

        result = runner.invoke(app, ["offsite", "block-level-backup", "data"])

        assert result.exit_code == 1
        assert "Please install restic" in result.output

    @patch("lvmrestic.cli.main.run_command")
    def test_unexpected_error_fails_batch(self, mock_run):
        mock_run.side_effect = TransferFailure("Transfer failed")

        result = runner.invoke(app, ["offsite", "block-level-backup", "data"])

        assert result.exit_code == 1
        assert "FAILED" in result.output

    @patch("lvmrestic.cli.main.run_command")
    def test_keyboard_interrupt(self, mock_run):
        mock_run.side_effect = KeyboardInterrupt()

        result = runner.invoke(app, ["offsite", "block-level-backup", "data"])

        assert result.exit_code == 130

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "lvm-rescript version" in result.output


class TestParseCommand:

    def test_every_command(self):
        for command in Command:
            assert parse_command(command.value).command is command

    def test_missing(self):
        with pytest.raises(ConfigError, match="Please specify a command"):
            parse_command(None)

    def test_is_help_request(self):
        assert is_help_request(None, None)
        assert is_help_request("help", None)
        assert is_help_request("offsite", "help")
        assert not is_help_request("offsite", "block-level-backup")


class TestReporting:

    def console(self):
        return Console(record=True, width=160)

    def test_all_done(self):
        console = self.console()
        report_batch(console, BatchResult(items=[ItemResult("data", ok=True)]))
        assert "ALL DONE" in console.export_text()

    def test_failed_and_skipped(self):
        console = self.console()
        report_batch(console, BatchResult(items=[ItemResult("data", ok=False)], skipped=["ghost"],
                                          sweep_failures=["/dev/vg0/old_snapshot"]))
        text = console.export_text()
        assert "FAILED: data" in text
        assert "Not found and skipped: ghost" in text
        assert "/dev/vg0/old_snapshot" in text

    def test_interrupted(self):
        console = self.console()
        report_batch(console, BatchResult(interrupted=True))
        assert "Interrupted" in console.export_text()

    @pytest.mark.parametrize("env,expected", [
        ({"STY": "1234.backup"}, "screen session named '1234.backup'"),
        ({"TMUX": "/tmp/tmux-0/default,1,0"}, "tmux session"),
    ])
    def test_multiplexer_detected(self, env, expected, monkeypatch):
        monkeypatch.delenv("STY", raising=False)
        monkeypatch.delenv("TMUX", raising=False)
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        console = self.console()
        warn_without_multiplexer(console)
        assert expected in console.export_text()

    def test_no_multiplexer(self, monkeypatch):
        monkeypatch.delenv("STY", raising=False)
        monkeypatch.delenv("TMUX", raising=False)
        console = self.console()
        warn_without_multiplexer(console)
        assert "NOT a screen or tmux session" in console.export_text()


class TestBuildTelemetry:

    def test_disabled_by_flag(self, settings):
        assert isinstance(build_telemetry(settings, "offsite", False, Console()), NullTelemetry)

    @patch.object(ZabbixTelemetry, "available", return_value=(False, "zabbix-agent is not running"))
    def test_unavailable_agent(self, mock_available, settings):
        console = Console(record=True)
        assert isinstance(build_telemetry(settings, "offsite", True, console), NullTelemetry)
        assert "Will skip zabbix logging" in console.export_text()

    @patch.object(ZabbixTelemetry, "available", return_value=(True, "ok"))
    def test_available_agent(self, mock_available, settings):
        assert isinstance(build_telemetry(settings, "offsite", True, Console()), ZabbixTelemetry)


class TestRunCommand:

    @pytest.fixture
    def wiring(self, settings):
        context = RepositoryContext(name="offsite", repository="/srv/restic", env={})
        with patch(f"{HANDLERS}.Settings.load", return_value=settings), \
             patch(f"{HANDLERS}.setup_logging"), \
             patch(f"{HANDLERS}.ce.require_tools") as require_tools, \
             patch(f"{HANDLERS}.RescriptResolver.resolve", return_value=context), \
             patch(f"{HANDLERS}.BackupOrchestrator") as backup, \
             patch(f"{HANDLERS}.RestoreOrchestrator") as restore:
            yield MagicMock(require_tools=require_tools, backup=backup, restore=restore)

    def test_backup_wiring(self, wiring):
        wiring.backup.return_value.run.return_value = BatchResult(items=[ItemResult("data", ok=True)])
        previous = signal.getsignal(signal.SIGINT)

        code = run_command(Console(record=True), "offsite", "block-level-gz-backup", "data", telemetry=False)

        assert code == 0
        profile = wiring.backup.call_args.args[0]
        assert profile.direction is Direction.BACKUP
        assert "gzip" in wiring.require_tools.call_args.args
        wiring.backup.return_value.run.assert_called_once_with("data")
        assert signal.getsignal(signal.SIGINT) is previous

    def test_restore_wiring(self, wiring):
        wiring.restore.return_value.run.return_value = BatchResult(items=[ItemResult("data", ok=False)])

        code = run_command(Console(record=True), "offsite", "file-level-restore", "data", vg="vg0",
                           conflict_policy="prompt")

        assert code == 1
        kwargs = wiring.restore.call_args.kwargs
        assert kwargs["group"] == "vg0"
        assert kwargs["conflict_policy"] == "prompt"

    def test_missing_target(self, wiring):
        with pytest.raises(ConfigError, match="LV\\(s\\) to backup missing"):
            run_command(Console(), "offsite", "block-level-backup", None)
        wiring.backup.assert_not_called()

    def test_unknown_conflict_policy(self, wiring):
        with pytest.raises(ConfigError, match="Unknown conflict policy"):
            run_command(Console(), "offsite", "file-level-restore", "data", vg="vg0", conflict_policy="merge")
