# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.23
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/system/display.py

# Standard library imports
from typing import Optional, Sequence

# Third-party imports
import humanize
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    Progress, TextColumn, BarColumn, DownloadColumn, TransferSpeedColumn, TimeRemainingColumn
)
from rich.table import Table

# Local imports
from lvmrestic.storage.protocols import SnapshotRef

COMMAND_HELP = [
    ("block-level-backup", "Creates an LVM snapshot and streams the raw volume to restic"),
    ("block-level-gz-backup", "Creates an LVM snapshot and streams the volume through pigz to restic"),
    ("file-level-backup", "Creates an LVM snapshot and backs up its mounted filesystem with restic"),
    ("block-level-restore", "Recreates a volume from a raw block-level backup"),
    ("block-level-gz-restore", "Recreates a volume from a compressed block-level backup"),
    ("file-level-restore", "Recreates and formats a volume, then restores a file-level backup into it"),
    ("help", "Shows this help"),
]


def print_help(console: Console) -> None:
    """Print usage, commands and target conventions."""
    console.print()
    console.print("[bold blue]LVM SNAPSHOT & RESTIC BACKUP[/bold blue]")
    console.print("[blue]----------------------------[/blue]")
    console.print()
    console.print("[bold blue]Usage:[/bold blue]")
    console.print(escape("  lvm-rescript [repo_name] [command] [lv_name|path-to-list] [OPTIONS]"))
    console.print()

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Command", style="cyan")
    table.add_column("Description")
    for command, description in COMMAND_HELP:
        table.add_row(command, description)
    console.print("[bold blue]Commands:[/bold blue]")
    console.print(table)
    console.print()

    console.print("[bold blue]Logical Volume:[/bold blue]")
    console.print("  Provide the LV name without VG.")
    console.print("  Provide the path to a list of LV names. LVs listed as #comment won't be processed.")
    console.print()
    console.print("[bold blue]Restore options:[/bold blue]")
    console.print("  --vg NAME    volume group receiving the restored volume (required)")
    console.print("  --pv PATH    physical volume to allocate the restored volume on")
    console.print()


def print_banner(console: Console, action: str, volume_name: str) -> None:
    console.print()
    console.print(f"[bold]Starting {action} of LV {escape(volume_name)}[/bold]")


def print_warning(console: Console, message: str) -> None:
    console.print(f"[yellow]{escape(message)}[/yellow]")


def print_item_failed(console: Console, volume_name: str, reason: str, hint: Optional[str] = None) -> None:
    console.print(f"[red]✗ {escape(volume_name)}: {escape(reason)}[/red]")
    if hint:
        console.print(f"  [dim]{escape(hint)}[/dim]")


def print_item_done(console: Console, volume_name: str, detail: str = "") -> None:
    suffix = f" ({detail})" if detail else ""
    console.print(f"[green]✓ {escape(volume_name + suffix)}[/green]")


def print_all_done(console: Console) -> None:
    console.print(Panel("[bold green]ALL DONE[/bold green]", expand=False, border_style="green"))


def print_failed(console: Console, failed: Sequence[str]) -> None:
    names = escape(", ".join(failed)) if failed else "batch"
    console.print(Panel(f"[bold red]FAILED[/bold red]: {names}", expand=False, border_style="red"))


def print_interrupted(console: Console) -> None:
    console.print("[bold red]Interrupted. Stale snapshots have been removed.[/bold red]")


def snapshots_to_table(snapshots: Sequence[SnapshotRef], title: Optional[str] = None) -> Table:
    """Candidate snapshots numbered for selection, newest last."""
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Time")
    table.add_column("Host")
    table.add_column("Tags")
    for index, snap in enumerate(snapshots, start=1):
        table.add_row(
            str(index),
            snap.id,
            snap.time.replace("T", " ")[:19],
            snap.hostname,
            ", ".join(snap.tags),
        )
    return table


def format_bytes(size: Optional[int]) -> str:
    if size is None:
        return "unknown"
    return humanize.naturalsize(size, binary=True)


class TransferProgress:
    """Byte progress bar for a restore stream."""

    def __init__(self, console: Console, description: str, total: Optional[int]) -> None:
        self.progress = Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(binary_units=True),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=console,
        )
        self.description = description
        self.total = total
        self.task = None

    def __enter__(self) -> "TransferProgress":
        self.progress.start()
        self.task = self.progress.add_task(self.description, total=self.total)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.progress.stop()

    def advance(self, size: int) -> None:
        self.progress.update(self.task, advance=size)
