# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.23
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/cli/prompts.py

"""Interactive operator decisions during restore."""

from contextlib import contextmanager
from typing import Iterator, Optional, Sequence

import typer
from rich.console import Console
from rich.markup import escape

from lvmrestic.core.cancellation import CancellationToken, default_interrupts
from lvmrestic.core.sizes import parse_size
from lvmrestic.storage.protocols import SnapshotRef, Volume
from lvmrestic.system import display
from lvmrestic.system.exceptions import InterruptSignal, SizeParseError


class InteractiveRestorePrompts:
    """RestorePrompts backed by the terminal.

    CTRL-C at a prompt cancels the token and raises InterruptSignal instead
    of waiting for an answer.
    """

    def __init__(self, console: Console, token: Optional[CancellationToken] = None) -> None:
        self.console = console
        self.token = token or CancellationToken()

    @contextmanager
    def _interruptible(self) -> Iterator[None]:
        self.token.raise_if_cancelled()
        with default_interrupts():
            try:
                yield
            except (typer.Abort, KeyboardInterrupt):
                self.token.cancel()
                raise InterruptSignal() from None

    def select_snapshot(self, candidates: Sequence[SnapshotRef]) -> SnapshotRef:
        self.console.print(display.snapshots_to_table(candidates, title="Which snapshot should be restored?"))
        with self._interruptible():
            while True:
                choice = typer.prompt("Snapshot number", default=str(len(candidates)))
                if choice.isdigit() and 1 <= int(choice) <= len(candidates):
                    return candidates[int(choice) - 1]
                for candidate in candidates:
                    if candidate.id == choice:
                        return candidate
                self.console.print(f"[red]Please enter a number between 1 and {len(candidates)}[/red]")

    def choose_size(self, name: str, recorded: str, required_bytes: Optional[int]) -> str:
        with self._interruptible():
            while True:
                answer = typer.prompt(f"What size do you want the new LV {name}?", default=recorded)
                try:
                    size = parse_size(answer)
                except SizeParseError as e:
                    self.console.print(f"[red]{escape(str(e))}[/red]")
                    continue
                if required_bytes and size < required_bytes:
                    self.console.print(
                        f"[yellow]{escape(answer)} is smaller than the restored data "
                        f"({display.format_bytes(required_bytes)})[/yellow]"
                    )
                    if not typer.confirm("Use it anyway?", default=False):
                        continue
                return answer

    def confirm_reuse(self, volume: Volume, size_bytes: int) -> bool:
        self.console.print(
            f"[yellow]There is already an LV {escape(volume.name)} ({display.format_bytes(size_bytes)}) "
            f"at {escape(volume.path)}.[/yellow]"
        )
        with self._interruptible():
            return typer.confirm("Restore into the existing LV? Its content will be merged", default=False)
