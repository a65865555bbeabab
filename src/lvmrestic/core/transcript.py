# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.22
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/core/transcript.py

"""
Transfer transcripts.

Every transfer writes its tool output to an append-only per-strategy log and
to the running log of the current item. Monitoring reads the running log back
with the patterns below, so the restic line formats they match are part of
the contract:

    Added to the repo: 1.234 MiB
    processed 12 files, 5.000 GiB in 1:02:03
    snapshot 1a2b3c4d saved
"""

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, TextIO

from loguru import logger

from lvmrestic.core.sizes import parse_size, parse_duration
from lvmrestic.system.exceptions import SizeParseError, TransferFailure

RUNNING_LOG_NAME = "lvm-rescript-running.log"

_ADDED_RE = re.compile(r"Added to the repo(?:sitory)?:\s+(\d+(?:\.\d+)?\s*[A-Za-z]+)")
_SNAPSHOT_RE = re.compile(r"^snapshot (\S+) saved$")
_PROCESSED_RE = re.compile(r"^processed (\d+) files?, (\d+(?:\.\d+)?\s*[A-Za-z]+) in (\S+)$")


@dataclass
class TranscriptStats:
    """Figures extracted from one transcript."""
    bytes_added: Optional[int] = None
    snapshot_id: Optional[str] = None
    processed_files: Optional[int] = None
    processed_bytes: Optional[int] = None
    processed_seconds: Optional[float] = None


def parse_transcript(lines: list[str]) -> TranscriptStats:
    """Extract byte counts, snapshot id and duration from restic output."""
    stats = TranscriptStats()
    for line in lines:
        line = line.strip()
        try:
            match = _ADDED_RE.search(line)
            if match:
                stats.bytes_added = parse_size(match.group(1))
                continue
            match = _SNAPSHOT_RE.match(line)
            if match:
                stats.snapshot_id = match.group(1)
                continue
            match = _PROCESSED_RE.match(line)
            if match:
                stats.processed_files = int(match.group(1))
                stats.processed_bytes = parse_size(match.group(2))
                stats.processed_seconds = parse_duration(match.group(3))
        except SizeParseError as e:
            logger.warning(f"Could not parse transcript line {line!r}: {e}")
    return stats


class Transcript:
    """Per-strategy log plus the running log of the current item"""

    def __init__(self, log_dir: Path, log_name: str,
                 echo: Optional[Callable[[str], None]] = None,
                 clock: Callable[[], datetime] = datetime.now) -> None:
        self.log_dir = Path(log_dir)
        self.strategy_log = self.log_dir / f"lvm-restic-{log_name}.log"
        self.running_log = self.log_dir / RUNNING_LOG_NAME
        self.echo = echo
        self.clock = clock
        self._handles: list[TextIO] = []

    def begin(self, volume_name: str, label: str = "BACKUP_LV") -> "Transcript":
        """Start a new item: append a header and restart the running log.

        Raises:
            TransferFailure: If the log directory or the logs cannot be written
        """
        self.close()
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._handles.append(self.strategy_log.open("a", encoding="utf-8"))
            self._handles.append(self.running_log.open("w", encoding="utf-8"))
        except OSError as e:
            self.close()
            raise TransferFailure(f"Could not open the transcript in {self.log_dir}", [str(e)]) from e
        stamp = self.clock().astimezone().strftime("%a %b %d %H:%M:%S %Z %Y")
        for line in ["", "======", stamp, f"{label}: {volume_name}", ""]:
            self.write_line(line)
        return self

    def write_line(self, line: str) -> None:
        for handle in self._handles:
            handle.write(line + "\n")
            handle.flush()
        if self.echo:
            self.echo(line)

    def close(self) -> None:
        for handle in self._handles:
            handle.close()
        self._handles = []

    def __enter__(self) -> "Transcript":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def stats(self) -> TranscriptStats:
        if not self.running_log.exists():
            return TranscriptStats()
        return parse_transcript(self.running_log.read_text(encoding="utf-8").splitlines())

    def timestamp(self) -> int:
        """Modification time of the running log, used as the sample clock."""
        return int(self.running_log.stat().st_mtime)

    def remove_running(self) -> None:
        self.close()
        self.running_log.unlink(missing_ok=True)
