# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.20
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_volumes.py

"""LVMVolumeManager against canned lvm2 output."""

from unittest.mock import patch

import pytest

from lvmrestic.storage.protocols import Volume
from lvmrestic.storage.volumes import LVMVolumeManager
from lvmrestic.system.exceptions import (
    ResolutionError, VolumeManagerError, InsufficientSpaceError,
    SnapshotExistsError, VolumeNameConflictError, VolumeGroupFullError
)
from lvmrestic.system.execution import CommandResult

RUN_LOCAL = "lvmrestic.storage.volumes.ce.run_local"

LV_PATHS = "  /dev/vg0/data\n  /dev/vg0/web\n  /dev/vg1/archive\n  /dev/vg1/data-old\n"
DATA = Volume(name="data", path="/dev/vg0/data", group="vg0")


def ok(stdout=""):
    return CommandResult(returncode=0, stdout=stdout, stderr="")


def failed(stderr, code=5):
    return CommandResult(returncode=code, stdout="", stderr=stderr)


class TestResolve:

    @patch(RUN_LOCAL)
    def test_whole_segment_match(self, mock_run):
        mock_run.return_value = ok(LV_PATHS)

        assert LVMVolumeManager().resolve("data") == DATA
        mock_run.assert_called_once_with(["lvs", "--noheadings", "-o", "lv_path"], check=True)

    @patch(RUN_LOCAL)
    def test_substring_does_not_match(self, mock_run):
        mock_run.return_value = ok(LV_PATHS)

        with pytest.raises(ResolutionError, match="Cannot find path for dat"):
            LVMVolumeManager().resolve("dat")

    @patch(RUN_LOCAL)
    def test_ambiguous_name(self, mock_run):
        mock_run.return_value = ok("/dev/vg0/data\n/dev/vg1/data\n")

        with pytest.raises(ResolutionError, match="ambiguous"):
            LVMVolumeManager().resolve("data")

    @pytest.mark.parametrize("name", ["", "vg0/data"])
    def test_invalid_names(self, name):
        with pytest.raises(ResolutionError):
            LVMVolumeManager().resolve(name)

    @patch(RUN_LOCAL)
    def test_lvs_failure(self, mock_run):
        mock_run.side_effect = ValueError("Local command failed: permission denied")

        with pytest.raises(VolumeManagerError, match="permission denied"):
            LVMVolumeManager().resolve("data")


class TestSize:

    @patch(RUN_LOCAL)
    def test_size_in_bytes(self, mock_run):
        mock_run.return_value = ok("  5368709120\n")

        assert LVMVolumeManager().size_bytes(DATA) == 5368709120
        mock_run.assert_called_once_with(
            ["lvs", "/dev/vg0/data", "-o", "lv_size", "--noheadings", "--units", "b", "--nosuffix"],
            check=True
        )

    @patch(RUN_LOCAL)
    def test_unexpected_output(self, mock_run):
        mock_run.return_value = ok("5.00g\n")

        with pytest.raises(VolumeManagerError, match="Unexpected size"):
            LVMVolumeManager().size_bytes(DATA)


class TestSnapshots:

    @patch(RUN_LOCAL)
    def test_create(self, mock_run):
        mock_run.return_value = ok()

        snapshot = LVMVolumeManager().create_snapshot(DATA, "10G")

        assert snapshot.name == "data_snapshot"
        assert snapshot.path == "/dev/vg0/data_snapshot"
        assert snapshot.origin == DATA
        mock_run.assert_called_once_with(
            ["lvcreate", "--quiet", "-L10G", "-s", "-n", "data_snapshot", "/dev/vg0/data"], check=False
        )

    @pytest.mark.parametrize("stderr,error", [
        ("Volume group \"vg0\" has insufficient free space (10 extents): 2560 required.", InsufficientSpaceError),
        ("Logical Volume \"data_snapshot\" already exists in volume group \"vg0\"", SnapshotExistsError),
        ("Device or resource busy", VolumeManagerError),
    ])
    @patch(RUN_LOCAL)
    def test_create_failures(self, mock_run, stderr, error):
        mock_run.return_value = failed(stderr)

        with pytest.raises(error):
            LVMVolumeManager().create_snapshot(DATA, "10G")

    @patch(RUN_LOCAL)
    def test_list_active_snapshots(self, mock_run):
        mock_run.return_value = ok(
            "  /dev/vg0/data_snapshot|data_snapshot|data\n"
            "  /dev/vg0/manual-copy|manual-copy|web\n"
            "  /dev/vg1/archive_snapshot|archive_snapshot|archive\n"
        )

        snapshots = LVMVolumeManager().list_active_snapshots()

        assert [snap.path for snap in snapshots] == ["/dev/vg0/data_snapshot", "/dev/vg1/archive_snapshot"]
        assert snapshots[1].origin == Volume(name="archive", path="/dev/vg1/archive", group="vg1")

    @patch(RUN_LOCAL)
    def test_find_snapshot(self, mock_run):
        mock_run.return_value = ok("  /dev/vg0/data_snapshot|data_snapshot|data\n")

        assert LVMVolumeManager().find_snapshot(DATA).path == "/dev/vg0/data_snapshot"
        assert LVMVolumeManager().find_snapshot(Volume("web", "/dev/vg0/web", "vg0")) is None

    @patch(RUN_LOCAL)
    def test_remove(self, mock_run):
        mock_run.return_value = ok()

        LVMVolumeManager().remove_volume("/dev/vg0/data_snapshot")

        mock_run.assert_called_once_with(["lvremove", "-f", "/dev/vg0/data_snapshot"], check=True)

    @patch(RUN_LOCAL)
    def test_remove_busy(self, mock_run):
        mock_run.side_effect = ValueError("Local command failed: Logical volume vg0/data_snapshot in use.")

        with pytest.raises(VolumeManagerError) as exc_info:
            LVMVolumeManager().remove_volume("/dev/vg0/data_snapshot")
        assert exc_info.value.command == "lvremove -f /dev/vg0/data_snapshot"


class TestDestination:

    @patch(RUN_LOCAL)
    def test_volume_in_group(self, mock_run):
        mock_run.return_value = ok("  data /dev/vg0/data\n  web  /dev/vg0/web\n")

        assert LVMVolumeManager().volume_in_group("web", "vg0") == Volume("web", "/dev/vg0/web", "vg0")
        assert LVMVolumeManager().volume_in_group("mail", "vg0") is None

    @patch(RUN_LOCAL)
    def test_create_volume_exact_size_on_pv(self, mock_run):
        mock_run.side_effect = [ok(), ok("  data /dev/vg0/data\n")]

        volume = LVMVolumeManager().create_volume("data", 5368709120, "vg0", "/dev/sdb1")

        assert volume == DATA
        assert mock_run.call_args_list[0].args[0] == \
            ["lvcreate", "-n", "data", "-L", "5368709120b", "vg0", "/dev/sdb1"]

    @pytest.mark.parametrize("stderr,error", [
        ("Logical Volume \"data\" already exists in volume group \"vg0\"", VolumeNameConflictError),
        ("Volume group \"vg0\" has insufficient free space (1 extents): 1280 required.", VolumeGroupFullError),
        ("Invalid argument", VolumeManagerError),
    ])
    @patch(RUN_LOCAL)
    def test_create_volume_failures(self, mock_run, stderr, error):
        mock_run.return_value = failed(stderr)

        with pytest.raises(error):
            LVMVolumeManager().create_volume("data", 1024, "vg0")

    @patch(RUN_LOCAL)
    def test_groups_and_physical_volumes(self, mock_run):
        mock_run.side_effect = [
            ok("  vg0\n  vg1\n"),
            ok("  /dev/sda2 vg0\n  /dev/sdb1 vg1\n  /dev/sdc1 vg0\n  /dev/sdd\n"),
        ]
        manager = LVMVolumeManager()

        assert manager.list_volume_groups() == ["vg0", "vg1"]
        assert manager.list_physical_volumes("vg0") == ["/dev/sda2", "/dev/sdc1"]
