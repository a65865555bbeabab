# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.20
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/storage/volumes.py

"""LVM operations: volume lookup, sizing, snapshots and destination volumes."""

import re
from typing import Optional

from loguru import logger

from lvmrestic.system.execution import CommandExecutor as ce, CommandResult
from lvmrestic.system.exceptions import (
    ResolutionError, VolumeManagerError, InsufficientSpaceError,
    SnapshotExistsError, VolumeNameConflictError, VolumeGroupFullError
)
from .protocols import Volume, Snapshot, SNAPSHOT_NAME_PATTERN

# lv_attr starting with "s" marks a (thick) snapshot volume
ACTIVE_SNAPSHOT_SELECT = "lv_attr=~[^s.*]"


def _lines(result: CommandResult) -> list[str]:
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def _group_from_path(path: str) -> str:
    parts = path.strip("/").split("/")
    return parts[-2] if len(parts) >= 2 else ""


class LVMVolumeManager:
    """Volume manager backed by the lvm2 command line tools"""

    def _run(self, cmd: list[str], check: bool = True) -> CommandResult:
        try:
            return ce.run_local(cmd, check=check)
        except ValueError as e:
            raise VolumeManagerError(str(e), command=" ".join(cmd)) from e

    def list_volume_paths(self) -> list[str]:
        return _lines(self._run(["lvs", "--noheadings", "-o", "lv_path"]))

    def resolve(self, name: str) -> Volume:
        """Find the volume whose path ends with /<name>.

        Raises:
            ResolutionError: If no volume or more than one volume matches
        """
        if not name or "/" in name:
            raise ResolutionError(f"Cannot find path for {name!r}", name=name)
        matches = [path for path in self.list_volume_paths() if path.rsplit("/", 1)[-1] == name]
        if not matches:
            raise ResolutionError(f"Cannot find path for {name}", name=name)
        if len(matches) > 1:
            raise ResolutionError(
                f"{name} is ambiguous, found in several volume groups: {', '.join(matches)}", name=name
            )
        path = matches[0]
        return Volume(name=name, path=path, group=_group_from_path(path))

    def size_bytes(self, volume: Volume) -> int:
        result = self._run(["lvs", volume.path, "-o", "lv_size", "--noheadings",
                            "--units", "b", "--nosuffix"])
        text = result.stdout.strip()
        try:
            return int(text)
        except ValueError as e:
            raise VolumeManagerError(f"Unexpected size for {volume.name}: {text!r}") from e

    def list_active_snapshots(self, pattern: str = SNAPSHOT_NAME_PATTERN) -> list[Snapshot]:
        result = self._run(["lvs", "--noheadings", "--separator", "|",
                            "-o", "lv_path,lv_name,origin", "--select", ACTIVE_SNAPSHOT_SELECT])
        regex = re.compile(pattern)
        snapshots = []
        for line in _lines(result):
            path, _, rest = line.partition("|")
            name, _, origin = rest.partition("|")
            path, name, origin = path.strip(), name.strip(), origin.strip()
            if not regex.search(name):
                continue
            origin_volume = None
            if origin:
                group = _group_from_path(path)
                origin_volume = Volume(name=origin, path=f"/dev/{group}/{origin}", group=group)
            snapshots.append(Snapshot(name=name, path=path, origin=origin_volume))
        return snapshots

    def find_snapshot(self, volume: Volume) -> Optional[Snapshot]:
        for snapshot in self.list_active_snapshots(re.escape(volume.snapshot_name) + "$"):
            if snapshot.path == volume.snapshot_path:
                return snapshot
        return None

    def create_snapshot(self, volume: Volume, buffer_size: str) -> Snapshot:
        """Create <name>_snapshot with a fixed copy-on-write buffer.

        Raises:
            InsufficientSpaceError: If the group cannot hold the buffer
            SnapshotExistsError: If the snapshot name is taken
            VolumeManagerError: For any other lvcreate failure
        """
        cmd = ["lvcreate", "--quiet", f"-L{buffer_size}", "-s", "-n", volume.snapshot_name, volume.path]
        result = self._run(cmd, check=False)
        if not result.success:
            stderr = result.stderr.strip()
            if "insufficient" in stderr.lower():
                raise InsufficientSpaceError(f"Not enough space for snapshot of {volume.name}: {stderr}",
                                             command=" ".join(cmd))
            if "already exists" in stderr.lower():
                raise SnapshotExistsError(f"{volume.snapshot_name} already exists", command=" ".join(cmd))
            raise VolumeManagerError(f"Could not create snapshot of {volume.name}: {stderr}",
                                     command=" ".join(cmd))
        logger.info(f"Created snapshot {volume.snapshot_path} ({buffer_size} buffer)")
        return Snapshot(name=volume.snapshot_name, path=volume.snapshot_path,
                        origin=volume, buffer_size=buffer_size)

    def remove_volume(self, path: str) -> None:
        self._run(["lvremove", "-f", path])
        logger.info(f"Removed {path}")

    def volume_in_group(self, name: str, group: str) -> Optional[Volume]:
        result = self._run(["lvs", "--noheadings", "-o", "lv_name,lv_path", group])
        for line in _lines(result):
            fields = line.split()
            if len(fields) >= 2 and fields[0] == name:
                return Volume(name=name, path=fields[1], group=group)
        return None

    def create_volume(self, name: str, size_bytes: int, group: str,
                      physical_volume: Optional[str] = None) -> Volume:
        """Create a destination volume of exactly size_bytes.

        Raises:
            VolumeNameConflictError: If the name exists in the group
            VolumeGroupFullError: If the group has not enough free extents
        """
        cmd = ["lvcreate", "-n", name, "-L", f"{size_bytes}b", group]
        if physical_volume:
            cmd.append(physical_volume)
        result = self._run(cmd, check=False)
        if not result.success:
            stderr = result.stderr.strip()
            if "already exists" in stderr.lower():
                raise VolumeNameConflictError(f"There is already an LV with the name {name} on {group}.",
                                              command=" ".join(cmd))
            if "insufficient" in stderr.lower():
                raise VolumeGroupFullError(f"{group} has not enough free space for {name}: {stderr}",
                                           command=" ".join(cmd))
            raise VolumeManagerError(f"Could not create {name} on {group}: {stderr}", command=" ".join(cmd))
        volume = self.volume_in_group(name, group)
        if volume is None:
            raise VolumeManagerError(f"Created {name} on {group} but cannot find it")
        logger.info(f"Created volume {volume.path} ({size_bytes} bytes)")
        return volume

    def list_volume_groups(self) -> list[str]:
        return _lines(self._run(["vgs", "--noheadings", "-o", "vg_name"]))

    def list_physical_volumes(self, group: str) -> list[str]:
        result = self._run(["pvs", "--noheadings", "-o", "pv_name,vg_name"])
        volumes = []
        for line in _lines(result):
            fields = line.split()
            if len(fields) >= 2 and fields[1] == group:
                volumes.append(fields[0])
        return volumes
