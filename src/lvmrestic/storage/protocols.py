# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.20
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/storage/protocols.py

"""
Capability interfaces for the external collaborators.

The orchestrators only talk to these protocols. The LVM, mount, restic and
Zabbix adapters implement them for production; the test suite implements them
in memory.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from lvmrestic.core.pipeline import CommandStage
    from lvmrestic.core.transcript import TranscriptStats

SNAPSHOT_SUFFIX = "_snapshot"
SNAPSHOT_NAME_PATTERN = SNAPSHOT_SUFFIX + "$"


@dataclass(frozen=True)
class Volume:
    """A logical volume, located by name at lookup time."""
    name: str
    path: str
    group: str = ""

    @property
    def snapshot_name(self) -> str:
        return f"{self.name}{SNAPSHOT_SUFFIX}"

    @property
    def snapshot_path(self) -> str:
        return f"{self.path}{SNAPSHOT_SUFFIX}"


@dataclass(frozen=True)
class Snapshot:
    """A copy-on-write snapshot of one volume."""
    name: str
    path: str
    origin: Optional[Volume] = None
    buffer_size: str = ""


@dataclass(frozen=True)
class SnapshotRef:
    """One repository snapshot as listed by the repository."""
    id: str
    tags: tuple[str, ...] = ()
    time: str = ""
    paths: tuple[str, ...] = ()
    hostname: str = ""


@dataclass
class SnapshotMetadata:
    """Tags and totals of one repository snapshot."""
    id: str
    tags: list[str] = field(default_factory=list)
    total_size: Optional[int] = None


class VolumeManager(Protocol):
    """Volume manager operations (LVM in production)."""

    def resolve(self, name: str) -> Volume:
        """Locate a volume by whole path segment; raises ResolutionError."""
        ...

    def size_bytes(self, volume: Volume) -> int:
        """Current size of the volume, queried live."""
        ...

    def find_snapshot(self, volume: Volume) -> Optional[Snapshot]:
        """Return the live snapshot named after volume, if any."""
        ...

    def create_snapshot(self, volume: Volume, buffer_size: str) -> Snapshot:
        ...

    def remove_volume(self, path: str) -> None:
        """Forcibly remove a snapshot or volume by path."""
        ...

    def create_volume(self, name: str, size_bytes: int, group: str,
                      physical_volume: Optional[str] = None) -> Volume:
        ...

    def volume_in_group(self, name: str, group: str) -> Optional[Volume]:
        ...

    def list_active_snapshots(self, pattern: str) -> list[Snapshot]:
        ...

    def list_volume_groups(self) -> list[str]:
        ...

    def list_physical_volumes(self, group: str) -> list[str]:
        ...


class MountManager(Protocol):
    """Mountpoint and filesystem operations."""

    def prepare_mountpoint(self, path: Path) -> None:
        """Create a private mountpoint; raises PreconditionViolation if it exists."""
        ...

    def mount(self, device: str, path: Path, read_only: bool = False) -> None:
        ...

    def unmount(self, path: Path) -> None:
        ...

    def remove_mountpoint(self, path: Path) -> None:
        ...

    def format(self, device: str, fstype: str) -> None:
        ...

    def usage(self, path: Path) -> tuple[int, int]:
        """Return (used, total) bytes of the filesystem mounted at path."""
        ...


class RepositoryClient(Protocol):
    """Backup repository operations (restic in production)."""

    name: str

    def is_reachable(self) -> bool:
        ...

    def list_snapshots(self, tags: Sequence[str] = (), path: Optional[str] = None) -> list[SnapshotRef]:
        ...

    def read_metadata(self, snapshot_id: str) -> SnapshotMetadata:
        ...

    def ingest_stage(self, tags: Sequence[str], item_name: str) -> "CommandStage":
        """Stage that stores its stdin as item_name in one tagged snapshot."""
        ...

    def backup_paths_stage(self, path: Path, tags: Sequence[str], exclude_file: Optional[Path]) -> "CommandStage":
        ...

    def extract_stage(self, snapshot_id: str, item_name: str) -> "CommandStage":
        """Stage that writes item_name of a snapshot to stdout."""
        ...

    def restore_subtree_stage(self, snapshot_id: str, include: str, target: str) -> "CommandStage":
        ...


class TelemetrySink(Protocol):
    """Monitoring collaborator."""

    def discover(self, volume_names: Sequence[str]) -> None:
        ...

    def report(self, volume_name: str, stats: "TranscriptStats", timestamp: int) -> None:
        ...


class RestorePrompts(Protocol):
    """Operator decisions needed during restore."""

    def select_snapshot(self, candidates: Sequence[SnapshotRef]) -> SnapshotRef:
        ...

    def choose_size(self, name: str, recorded: str, required_bytes: Optional[int]) -> str:
        """Return a size spec for the new volume; recorded is the default."""
        ...

    def confirm_reuse(self, volume: Volume, size_bytes: int) -> bool:
        ...
