# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.07
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/system/locking.py

"""
Advisory mutual exclusion with other restic backups on this host.

This is process-name based, not a real lock: two runs starting in the same
instant can both pass. Operators run backups at human cadence, so a poll loop
is enough.
"""

import os

import loguru

from lvmrestic.core.cancellation import CancellationToken
from lvmrestic.system.execution import CommandExecutor as ce

logger = loguru.logger

BACKUP_PROCESS_PATTERN = r"^([^ ]*/)?restic( .*)? backup( |$)"
DEFAULT_POLL_SECONDS = 60


def find_other_backups(pattern: str = BACKUP_PROCESS_PATTERN) -> list[str]:
    """Return 'pid cmdline' entries of running restic backups, excluding ours."""
    result = ce.run_local(["pgrep", "-a", "-f", pattern], check=False)
    if result.returncode not in (0, 1):
        logger.warning(f"pgrep failed ({result.returncode}): {result.stderr.strip()}")
        return []
    own_pid = str(os.getpid())
    entries = []
    for line in result.stdout.splitlines():
        line = line.strip()
        if line and line.split(maxsplit=1)[0] != own_pid:
            entries.append(line)
    return entries


def wait_for_other_backups(token: CancellationToken,
                           poll_seconds: float = DEFAULT_POLL_SECONDS,
                           pattern: str = BACKUP_PROCESS_PATTERN) -> int:
    """Block until no other restic backup runs.

    Returns:
        Number of polls that found another backup

    Raises:
        InterruptSignal: If cancelled while waiting
    """
    waits = 0
    while True:
        token.raise_if_cancelled()
        running = find_other_backups(pattern)
        if not running:
            return waits
        waits += 1
        for entry in running:
            logger.warning(f"Running: {entry}")
        logger.warning("Waiting for the listed restic processes to finish")
        token.wait(poll_seconds)
