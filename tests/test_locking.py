# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.07
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_locking.py

import os
import re
from unittest.mock import patch

import pytest

from lvmrestic.core.cancellation import CancellationToken
from lvmrestic.system.exceptions import InterruptSignal
from lvmrestic.system.execution import CommandResult
from lvmrestic.system.locking import (
    BACKUP_PROCESS_PATTERN, find_other_backups, wait_for_other_backups
)

RUN_LOCAL = "lvmrestic.system.locking.ce.run_local"


class TestBackupProcessPattern:
    """The pattern matches restic backup command lines only."""

    @pytest.mark.parametrize("cmdline", [
        "restic backup --stdin --stdin-filename data.img",
        "/usr/local/bin/restic -r s3:bucket backup /mnt/data_snapshot",
        "restic --tag LV backup",
    ])
    def test_matches_backups(self, cmdline):
        assert re.search(BACKUP_PROCESS_PATTERN, cmdline)

    @pytest.mark.parametrize("cmdline", [
        "restic restore latest --target /",
        "restic snapshots --json",
        "vim restic-backup.sh",
        "lvm-rescript offsite file-level-backup data",
    ])
    def test_ignores_other_commands(self, cmdline):
        assert not re.search(BACKUP_PROCESS_PATTERN, cmdline)


class TestFindOtherBackups:

    @patch(RUN_LOCAL)
    def test_no_match(self, mock_run):
        mock_run.return_value = CommandResult(returncode=1, stdout="", stderr="")

        assert find_other_backups() == []
        mock_run.assert_called_once_with(["pgrep", "-a", "-f", BACKUP_PROCESS_PATTERN], check=False)

    @patch(RUN_LOCAL)
    def test_excludes_own_process(self, mock_run):
        own = os.getpid()
        mock_run.return_value = CommandResult(
            returncode=0,
            stdout=f"{own} restic backup /x\n4242 restic backup --stdin\n",
            stderr="",
        )

        assert find_other_backups() == ["4242 restic backup --stdin"]

    @patch(RUN_LOCAL)
    def test_pgrep_error_is_not_fatal(self, mock_run):
        mock_run.return_value = CommandResult(returncode=2, stdout="", stderr="bad regex")
        assert find_other_backups() == []


class TestWaitForOtherBackups:

    @patch("lvmrestic.system.locking.find_other_backups")
    def test_waits_until_others_finish(self, mock_find):
        mock_find.side_effect = [["4242 restic backup"], ["4242 restic backup"], []]

        waits = wait_for_other_backups(CancellationToken(), poll_seconds=0)

        assert waits == 2
        assert mock_find.call_count == 3

    @patch("lvmrestic.system.locking.find_other_backups")
    def test_cancel_while_waiting(self, mock_find):
        token = CancellationToken()

        def still_running(pattern):
            token.cancel()
            return ["4242 restic backup"]

        mock_find.side_effect = still_running
        with pytest.raises(InterruptSignal):
            wait_for_other_backups(token, poll_seconds=0)
