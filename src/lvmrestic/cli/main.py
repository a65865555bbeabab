# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.23
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/cli/main.py

"""
lvm-rescript command line.

    lvm-rescript REPOSITORY COMMAND [TARGET] [--vg NAME] [--pv PATH] ...

Exit codes: 0 success, 1 failure or usage error, 130 interrupted.
"""

# Standard library imports
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path
from typing import Optional

# Third-party imports
import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape

# Local imports
from lvmrestic.cli.handlers import is_help_request, run_command
from lvmrestic.system import display
from lvmrestic.system.exceptions import (
    LvmResticError, ConfigError, EXIT_OK, EXIT_FAILURE, EXIT_INTERRUPTED
)

DIST_NAME = "lvm-restic-backup"

app = typer.Typer(
    help="lvm-rescript - LVM snapshot backups to restic repositories",
    rich_markup_mode="rich",
    add_completion=False,
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        try:
            pkg_version = version(DIST_NAME)
        except PackageNotFoundError:
            pkg_version = "unknown"
        console.print(f"lvm-rescript version {pkg_version}")
        raise typer.Exit()


@app.command()
def rescript(
    repository: Optional[str] = typer.Argument(None, help="Repository name as configured in ~/.rescript/config"),
    command: Optional[str] = typer.Argument(None, help="Backup or restore command, or 'help'"),
    target: Optional[str] = typer.Argument(None, help="LV name, or path to a list of LV names"),
    vg: Optional[str] = typer.Option(None, "--vg", help="Volume group to restore to"),
    pv: Optional[str] = typer.Option(None, "--pv", help="Physical volume to restore to"),
    config: Optional[Path] = typer.Option(None, "--config", help="Settings file (lvm-restic.yml)"),
    conflict_policy: Optional[str] = typer.Option(
        None, "--conflict-policy", help="File-level restore onto an existing LV: abort or prompt"
    ),
    no_telemetry: bool = typer.Option(False, "--no-telemetry", help="Do not send anything to Zabbix"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    version: Optional[bool] = typer.Option(
        None, "--version", callback=version_callback, is_eager=True,
        help="Show version and exit"
    ),
) -> None:
    """Back up or restore logical volumes through LVM snapshots and restic."""
    if is_help_request(repository, command):
        display.print_help(console)
        raise typer.Exit(EXIT_OK)

    try:
        code = run_command(
            console, repository, command, target,
            vg=vg, pv=pv, config_path=config, conflict_policy=conflict_policy,
            telemetry=not no_telemetry, debug=debug,
        )
    except ConfigError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_FAILURE)
    except KeyboardInterrupt:
        console.print("[red]Interrupted[/red]")
        raise typer.Exit(EXIT_INTERRUPTED)
    except LvmResticError as e:
        logger.debug(f"Unhandled {type(e).__name__}: {e}")
        console.print(f"[red]✗[/red] {escape(str(e))}")
        display.print_failed(console, [])
        raise typer.Exit(EXIT_FAILURE)
    raise typer.Exit(code)


def main() -> None:  # pragma: no cover - entry point
    """Entry point for the lvm-rescript CLI application."""
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
