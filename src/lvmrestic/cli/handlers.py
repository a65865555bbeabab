# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.23
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/cli/handlers.py

"""
Command handlers: wire settings, credentials and adapters into an orchestrator.

Everything that can fail before the first mutation (settings, tools,
credentials, target) is checked here and reported as a ConfigError.
"""

import os
import shutil
import signal
from pathlib import Path
from typing import Optional

from loguru import logger
from rich.console import Console

from lvmrestic.cli.prompts import InteractiveRestorePrompts
from lvmrestic.config.manager import Settings
from lvmrestic.config.repositories import RescriptResolver
from lvmrestic.core.backup import BackupOrchestrator, BatchResult
from lvmrestic.core.cancellation import CancellationToken, install_interrupt_handler
from lvmrestic.core.restore import RestoreOrchestrator
from lvmrestic.core.strategies import Command, Direction, StrategyProfile, profile_for
from lvmrestic.storage.mounts import SystemMountManager
from lvmrestic.storage.repository import ResticRepository
from lvmrestic.storage.volumes import LVMVolumeManager
from lvmrestic.system import display
from lvmrestic.system.exceptions import ConfigError
from lvmrestic.system.execution import CommandExecutor as ce
from lvmrestic.system.logging_setup import setup_logging
from lvmrestic.system.telemetry import NullTelemetry, ZabbixTelemetry

HELP_WORD = "help"


def parse_command(command: Optional[str]) -> StrategyProfile:
    """Map the command argument onto its strategy profile.

    Raises:
        ConfigError: If the command is missing or unknown
    """
    if not command:
        raise ConfigError("Please specify a command. Run [lvm-rescript help] for usage.")
    try:
        return profile_for(Command(command))
    except ValueError:
        raise ConfigError(f"Unknown Command: {command}. Run [lvm-rescript help] for usage.") from None


def build_telemetry(settings: Settings, repository: str, enabled: bool, console: Console):
    if not enabled or not settings.telemetry.enabled:
        logger.debug("Zabbix telemetry disabled")
        return NullTelemetry()
    telemetry = ZabbixTelemetry(settings.telemetry, repository)
    ok, reason = telemetry.available()
    if not ok:
        display.print_warning(console, f"{reason}. Will skip zabbix logging.")
        return NullTelemetry()
    return telemetry


def warn_without_multiplexer(console: Console) -> None:
    """Restores run for hours; losing the terminal must not kill them."""
    if os.environ.get("STY"):
        console.print(f"This is a screen session named '{os.environ['STY']}'")
        return
    if os.environ.get("TMUX"):
        console.print("This is a tmux session")
        return
    display.print_warning(console, "This is NOT a screen or tmux session.")
    display.print_warning(console, "It is highly recommended to run the restore in a screen or tmux session!")
    if shutil.which("screen") is None and shutil.which("tmux") is None:
        display.print_warning(console, "Consider installing and using screen or tmux")


def report_batch(console: Console, result: BatchResult) -> None:
    if result.skipped:
        display.print_warning(console, f"Not found and skipped: {', '.join(result.skipped)}")
    for path in result.sweep_failures:
        display.print_item_failed(console, path, "stale snapshot could not be removed",
                                  "Please remove it manually with lvremove")
    if result.interrupted:
        display.print_interrupted(console)
    elif result.ok:
        display.print_all_done(console)
    else:
        display.print_failed(console, result.failed)


def run_command(
    console: Console,
    repository: str,
    command: Optional[str],
    target: Optional[str],
    vg: Optional[str] = None,
    pv: Optional[str] = None,
    config_path: Optional[Path] = None,
    conflict_policy: Optional[str] = None,
    telemetry: bool = True,
    debug: bool = False,
) -> int:
    """Run one backup or restore command; returns the process exit code.

    Raises:
        ConfigError: For anything that prevents the run from starting
    """
    profile = parse_command(command)
    settings = Settings.load(config_path)
    setup_logging(settings.log_dir, repository, debug)

    if conflict_policy is not None and conflict_policy not in ("abort", "prompt"):
        raise ConfigError(f"Unknown conflict policy {conflict_policy!r}, use 'abort' or 'prompt'")

    ce.require_tools(*profile.required_tools(settings))
    if not target:
        action = "backup" if profile.direction is Direction.BACKUP else "restore"
        raise ConfigError(f"LV(s) to {action} missing. Please specify [lv-name] or [path-to-list]. "
                          "Run [lvm-rescript help] for usage.")

    context = RescriptResolver(settings.rescript_dir).resolve(repository)
    client = ResticRepository(context, workdir=settings.workdir)
    volumes = LVMVolumeManager()
    mounts = SystemMountManager()

    token = CancellationToken()
    previous_handler = install_interrupt_handler(token)
    try:
        if profile.direction is Direction.BACKUP:
            orchestrator = BackupOrchestrator(
                profile, volumes, mounts, client, settings, token,
                telemetry=build_telemetry(settings, repository, telemetry, console),
                console=console,
            )
        else:
            warn_without_multiplexer(console)
            orchestrator = RestoreOrchestrator(
                profile, volumes, mounts, client, InteractiveRestorePrompts(console, token), settings, token,
                group=vg, physical_volume=pv, conflict_policy=conflict_policy, console=console,
            )
        result = orchestrator.run(target)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    report_batch(console, result)
    return result.exit_code


def is_help_request(repository: Optional[str], command: Optional[str]) -> bool:
    return repository in (None, HELP_WORD) or command == HELP_WORD
