# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.20
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/storage/mounts.py

"""Mountpoint handling for file-level backup and restore."""

import os
import shutil
from pathlib import Path

from loguru import logger

from lvmrestic.system.execution import CommandExecutor as ce
from lvmrestic.system.exceptions import PreconditionViolation, VolumeManagerError

PRIVATE_MODE = 0o700


class SystemMountManager:
    """Mount operations through mount/umount/mkfs"""

    def prepare_mountpoint(self, path: Path) -> None:
        """Create a mountpoint only its owner can enter.

        Raises:
            PreconditionViolation: If the path exists (a previous run left it behind)
                or cannot be created
        """
        path = Path(path)
        if path.exists():
            raise PreconditionViolation(
                f"The mountpoint {path} exists.",
                path=str(path),
                recovery_hint="Please check and remove it manually!"
            )
        try:
            path.mkdir(mode=PRIVATE_MODE)
            # mkdir honors the umask; enforce go-rwx explicitly
            os.chmod(path, PRIVATE_MODE)
        except OSError as e:
            raise PreconditionViolation(
                f"Could not create the mountpoint {path}: {e.strerror or e}",
                path=str(path),
                recovery_hint=f"Please check that {path.parent} exists and is writable!"
            ) from e

    def mount(self, device: str, path: Path, read_only: bool = False) -> None:
        cmd = ["mount"]
        if read_only:
            cmd += ["-o", "ro"]
        cmd += [device, str(path)]
        try:
            ce.run_local(cmd)
        except ValueError as e:
            raise VolumeManagerError(f"Could not mount {device} at {path}: {e}", command=" ".join(cmd)) from e
        logger.info(f"Mounted {device} at {path}{' (read-only)' if read_only else ''}")

    def unmount(self, path: Path) -> None:
        try:
            ce.run_local(["umount", str(path)])
        except ValueError as e:
            raise VolumeManagerError(f"Could not unmount {path}: {e}", command=f"umount {path}") from e

    def remove_mountpoint(self, path: Path) -> None:
        Path(path).rmdir()

    def format(self, device: str, fstype: str) -> None:
        cmd = [f"mkfs.{fstype}", device]
        try:
            ce.run_streaming(cmd)
        except (ValueError, OSError) as e:
            raise VolumeManagerError(f"Could not format {device} as {fstype}: {e}", command=" ".join(cmd)) from e

    def usage(self, path: Path) -> tuple[int, int]:
        try:
            usage = shutil.disk_usage(path)
        except OSError as e:
            raise VolumeManagerError(f"Could not read the disk usage of {path}: {e}", command=f"df {path}") from e
        return usage.used, usage.total
