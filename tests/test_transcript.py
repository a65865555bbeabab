# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.22
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_transcript.py

from datetime import datetime, timezone

import pytest

from lvmrestic.core.sizes import GIB
from lvmrestic.core.transcript import RUNNING_LOG_NAME, Transcript, parse_transcript
from lvmrestic.system.exceptions import TransferFailure

RESTIC_OUTPUT = [
    "open repository",
    "Files:           1 new,     0 changed,     0 unmodified",
    "Added to the repository: 1.500 MiB (1.234 MiB stored)",
    "",
    "processed 1 files, 5.000 GiB in 1:02:03",
    "snapshot 1a2b3c4d saved",
]


class TestParseTranscript:

    def test_extracts_all_figures(self):
        stats = parse_transcript(RESTIC_OUTPUT)

        assert stats.bytes_added == 1572864
        assert stats.snapshot_id == "1a2b3c4d"
        assert stats.processed_files == 1
        assert stats.processed_bytes == 5 * GIB
        assert stats.processed_seconds == 3723.0

    def test_older_restic_wording(self):
        stats = parse_transcript(["Added to the repo: 12 KiB", "processed 3 files, 1.000 MiB in 0:01"])

        assert stats.bytes_added == 12 * 1024
        assert stats.processed_files == 3
        assert stats.processed_seconds == 1.0
        assert stats.snapshot_id is None

    def test_empty_transcript(self):
        stats = parse_transcript([])
        assert stats.bytes_added is None
        assert stats.snapshot_id is None


class TestTranscript:

    def test_begin_writes_header_to_both_logs(self, tmp_path):
        clock = lambda: datetime(2025, 6, 20, 2, 0, tzinfo=timezone.utc)
        transcript = Transcript(tmp_path, "block-level-backup", clock=clock)

        transcript.begin("data")
        transcript.write_line("snapshot 1a2b3c4d saved")
        transcript.close()

        strategy_log = tmp_path / "lvm-restic-block-level-backup.log"
        running_log = tmp_path / RUNNING_LOG_NAME
        assert "BACKUP_LV: data" in strategy_log.read_text()
        assert "snapshot 1a2b3c4d saved" in running_log.read_text()

    def test_unwritable_log_dir(self, tmp_path):
        blocker = tmp_path / "log"
        blocker.write_text("not a directory")
        transcript = Transcript(blocker, "block-level-backup")

        with pytest.raises(TransferFailure, match="Could not open the transcript"):
            transcript.begin("data")
        assert transcript._handles == []

    def test_running_log_restarts_strategy_log_appends(self, tmp_path):
        transcript = Transcript(tmp_path, "file-level-backup")

        transcript.begin("data")
        transcript.write_line("snapshot aaaa saved")
        transcript.begin("web")
        transcript.write_line("snapshot bbbb saved")
        transcript.close()

        assert transcript.stats().snapshot_id == "bbbb"
        strategy_text = transcript.strategy_log.read_text()
        assert "snapshot aaaa saved" in strategy_text
        assert "snapshot bbbb saved" in strategy_text

    def test_restore_label(self, tmp_path):
        transcript = Transcript(tmp_path, "file-level-restore")
        with transcript.begin("data", label="RESTORE_LV"):
            pass
        assert "RESTORE_LV: data" in transcript.running_log.read_text()

    def test_echo(self, tmp_path):
        echoed = []
        transcript = Transcript(tmp_path, "block-level-backup", echo=echoed.append)
        transcript.begin("data")
        transcript.write_line("hello")
        transcript.close()
        assert "hello" in echoed

    def test_stats_without_running_log(self, tmp_path):
        assert Transcript(tmp_path, "x").stats().snapshot_id is None

    def test_remove_running(self, tmp_path):
        transcript = Transcript(tmp_path, "block-level-backup")
        transcript.begin("data")

        transcript.remove_running()
        transcript.remove_running()

        assert not transcript.running_log.exists()
        assert transcript.strategy_log.exists()

    def test_timestamp_is_running_log_mtime(self, tmp_path):
        transcript = Transcript(tmp_path, "block-level-backup")
        transcript.begin("data")
        transcript.close()
        assert transcript.timestamp() == int(transcript.running_log.stat().st_mtime)
