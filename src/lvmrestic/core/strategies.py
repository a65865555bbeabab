# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.22
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/core/strategies.py

"""
Transfer strategies.

The six commands map onto a closed set of strategy kinds in two directions:

    BLOCK_RAW          read snapshot device            -> restic --stdin  (<lv>.img)
    BLOCK_COMPRESSED   read snapshot device | pigz     -> restic --stdin  (<lv>.img.gz)
    FILE_LEVEL         mount snapshot read-only        -> restic backup <mountpoint>

Restores run the same paths in reverse. Every strategy exposes
run(context) -> TransferOutcome; acquiring and releasing the snapshot is the
lifecycle's job, the mountpoint is recorded on the context so the owner of the
context can release it on every exit path.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol, Union, TYPE_CHECKING

from loguru import logger

from lvmrestic.config.manager import Settings
from lvmrestic.core.cancellation import CancellationToken
from lvmrestic.core.pipeline import (
    TransferPipeline, PipelineResult, FileSource, FileSink, CommandStage
)
from lvmrestic.core.transcript import Transcript
from lvmrestic.storage.protocols import MountManager, RepositoryClient, SNAPSHOT_SUFFIX
from lvmrestic.system.display import format_bytes
from lvmrestic.system.exceptions import VolumeManagerError

if TYPE_CHECKING:
    from lvmrestic.core.lifecycle import OperationContext
    from lvmrestic.core.restore import RestoreContext

LV_TAG = "LV"
BLOCK_LEVEL_TAG = "block-level-backup"
FILE_LEVEL_TAG = "file-level-backup"
COMPRESSED_TAG = "pigz"

VOLUME_MANAGER_TOOLS = ("lvs", "lvcreate", "lvremove")
MOUNT_TOOLS = ("mount", "umount")


class Command(str, Enum):
    BLOCK_LEVEL_BACKUP = "block-level-backup"
    BLOCK_LEVEL_GZ_BACKUP = "block-level-gz-backup"
    FILE_LEVEL_BACKUP = "file-level-backup"
    BLOCK_LEVEL_RESTORE = "block-level-restore"
    BLOCK_LEVEL_GZ_RESTORE = "block-level-gz-restore"
    FILE_LEVEL_RESTORE = "file-level-restore"


class StrategyKind(Enum):
    BLOCK_RAW = "block-raw"
    BLOCK_COMPRESSED = "block-compressed"
    FILE_LEVEL = "file-level"


class Direction(Enum):
    BACKUP = "backup"
    RESTORE = "restore"


_COMMANDS = {
    Command.BLOCK_LEVEL_BACKUP: (StrategyKind.BLOCK_RAW, Direction.BACKUP),
    Command.BLOCK_LEVEL_GZ_BACKUP: (StrategyKind.BLOCK_COMPRESSED, Direction.BACKUP),
    Command.FILE_LEVEL_BACKUP: (StrategyKind.FILE_LEVEL, Direction.BACKUP),
    Command.BLOCK_LEVEL_RESTORE: (StrategyKind.BLOCK_RAW, Direction.RESTORE),
    Command.BLOCK_LEVEL_GZ_RESTORE: (StrategyKind.BLOCK_COMPRESSED, Direction.RESTORE),
    Command.FILE_LEVEL_RESTORE: (StrategyKind.FILE_LEVEL, Direction.RESTORE),
}


@dataclass(frozen=True)
class StrategyProfile:
    """Names, tags and tool requirements of one command."""
    command: Command
    kind: StrategyKind
    direction: Direction

    @property
    def log_name(self) -> str:
        return self.command.value

    @property
    def is_block(self) -> bool:
        return self.kind is not StrategyKind.FILE_LEVEL

    def item_name(self, volume_name: str) -> Optional[str]:
        """Stable file name of the stored stream, None for file-level."""
        if self.kind is StrategyKind.BLOCK_RAW:
            return f"{volume_name}.img"
        if self.kind is StrategyKind.BLOCK_COMPRESSED:
            return f"{volume_name}.img.gz"
        return None

    def backup_tags(self, volume_name: str, size_tag: str) -> list[str]:
        if self.kind is StrategyKind.BLOCK_RAW:
            return [LV_TAG, BLOCK_LEVEL_TAG, size_tag, volume_name]
        if self.kind is StrategyKind.BLOCK_COMPRESSED:
            return [LV_TAG, BLOCK_LEVEL_TAG, COMPRESSED_TAG, volume_name, size_tag]
        return [LV_TAG, FILE_LEVEL_TAG, volume_name, size_tag]

    def snapshot_filter(self, volume_name: str) -> tuple[list[str], Optional[str]]:
        """Tags and stored path selecting restore candidates for volume_name."""
        if self.kind is StrategyKind.BLOCK_RAW:
            return [BLOCK_LEVEL_TAG, volume_name], f"/{self.item_name(volume_name)}"
        if self.kind is StrategyKind.BLOCK_COMPRESSED:
            return [BLOCK_LEVEL_TAG, COMPRESSED_TAG, volume_name], f"/{self.item_name(volume_name)}"
        return [FILE_LEVEL_TAG, volume_name], None

    def required_tools(self, settings: Settings) -> list[str]:
        tools = ["restic", *VOLUME_MANAGER_TOOLS]
        if self.kind is StrategyKind.BLOCK_COMPRESSED:
            if self.direction is Direction.BACKUP:
                tools.append(settings.compressor[0])
            else:
                tools.append(settings.decompressor[0])
        if self.kind is StrategyKind.FILE_LEVEL:
            tools.extend(MOUNT_TOOLS)
            if self.direction is Direction.RESTORE:
                tools.append(f"mkfs.{settings.restore_filesystem}")
        return tools


def profile_for(command: Union[Command, str]) -> StrategyProfile:
    command = Command(command)
    kind, direction = _COMMANDS[command]
    return StrategyProfile(command=command, kind=kind, direction=direction)


def mountpoint_for(settings: Settings, volume_name: str) -> Path:
    """Private mountpoint of one volume: <mount_base>/<lv>_snapshot."""
    return Path(settings.mount_base) / f"{volume_name}{SNAPSHOT_SUFFIX}"


@dataclass
class TransferOutcome:
    """What one strategy run stored or restored."""
    command: Command
    volume_name: str
    item_name: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    result: Optional[PipelineResult] = None


class TransferStrategy(Protocol):
    profile: StrategyProfile

    def run(self, context) -> TransferOutcome:
        ...


def release_mountpoint(mounts: MountManager, context) -> list[str]:
    """Unmount and remove the context's mountpoint; returns warnings.

    A mountpoint that fails to unmount is left in place: removing the
    directory underneath a live mount is never attempted.
    """
    warnings = []
    if context.mountpoint is None:
        return warnings
    if context.mounted:
        try:
            mounts.unmount(context.mountpoint)
            context.mounted = False
        except VolumeManagerError as e:
            warnings.append(str(e))
            logger.error(f"{e}. Please unmount {context.mountpoint} manually")
            return warnings
    try:
        mounts.remove_mountpoint(context.mountpoint)
        context.mountpoint = None
    except OSError as e:
        warnings.append(f"Could not remove {context.mountpoint}: {e}")
        logger.error(warnings[-1])
    return warnings


# ---- Backup ----

class BlockBackupStrategy:
    """Stream the raw snapshot device, optionally compressed, into the repository"""

    def __init__(self, profile: StrategyProfile, repository: RepositoryClient,
                 settings: Settings, transcript: Transcript,
                 token: CancellationToken) -> None:
        self.profile = profile
        self.repository = repository
        self.settings = settings
        self.transcript = transcript
        self.token = token

    def run(self, context: "OperationContext") -> TransferOutcome:
        name = context.volume.name
        item_name = self.profile.item_name(name)
        tags = self.profile.backup_tags(name, context.size_tag)

        stages = [FileSource(context.snapshot.path)]
        if self.profile.kind is StrategyKind.BLOCK_COMPRESSED:
            stages.append(CommandStage(list(self.settings.compressor)))
        stages.append(self.repository.ingest_stage(tags, item_name))

        self.transcript.begin(name)
        try:
            result = TransferPipeline(stages, token=self.token, output=self.transcript.write_line).run()
        finally:
            self.transcript.close()
        return TransferOutcome(self.profile.command, name, item_name, tags, result)


class FileLevelBackupStrategy:
    """Mount the snapshot read-only and back up its filesystem"""

    def __init__(self, profile: StrategyProfile, repository: RepositoryClient,
                 mounts: MountManager, settings: Settings, transcript: Transcript,
                 token: CancellationToken,
                 warn: Optional[Callable[[str], None]] = None) -> None:
        self.profile = profile
        self.repository = repository
        self.mounts = mounts
        self.settings = settings
        self.transcript = transcript
        self.token = token
        self.warn = warn or logger.warning

    def _check_usage(self, device: str, mountpoint: Path) -> None:
        try:
            used, total = self.mounts.usage(mountpoint)
        except VolumeManagerError as e:
            logger.warning(str(e))
            return
        if total and used * 100 > total * self.settings.disk_usage_warn_percent:
            self.warn(f"Volume {device} has only {format_bytes(total - used)} free space left.")

    def _exclude_file(self) -> Optional[Path]:
        exclude = Path(self.settings.exclude_file)
        if exclude.is_file():
            return exclude
        logger.warning(f"Exclude file {exclude} not found, backing up without exclusions")
        return None

    def run(self, context: "OperationContext") -> TransferOutcome:
        name = context.volume.name
        mountpoint = mountpoint_for(self.settings, name)

        self.mounts.prepare_mountpoint(mountpoint)
        context.mountpoint = mountpoint
        self.mounts.mount(context.snapshot.path, mountpoint, read_only=True)
        context.mounted = True
        self.token.raise_if_cancelled()

        self._check_usage(context.volume.path, mountpoint)

        tags = self.profile.backup_tags(name, context.size_tag)
        stage = self.repository.backup_paths_stage(mountpoint, tags, self._exclude_file())
        self.transcript.begin(name)
        try:
            result = TransferPipeline([stage], token=self.token, output=self.transcript.write_line).run()
        finally:
            self.transcript.close()
        return TransferOutcome(self.profile.command, name, None, tags, result)


# ---- Restore ----

class BlockRestoreStrategy:
    """Stream a stored image, optionally decompressed, onto the destination device"""

    def __init__(self, profile: StrategyProfile, repository: RepositoryClient,
                 settings: Settings, token: CancellationToken) -> None:
        self.profile = profile
        self.repository = repository
        self.settings = settings
        self.token = token

    def run(self, context: "RestoreContext") -> TransferOutcome:
        item_name = self.profile.item_name(context.name)
        stages = [self.repository.extract_stage(context.snapshot.id, item_name)]
        if self.profile.kind is StrategyKind.BLOCK_COMPRESSED:
            stages.append(CommandStage(list(self.settings.decompressor)))
        stages.append(FileSink(context.volume.path))

        result = TransferPipeline(stages, token=self.token, progress=context.progress).run()
        logger.info(f"Wrote {result.bytes_written} bytes to {context.volume.path}")
        return TransferOutcome(self.profile.command, context.name, item_name, [], result)


class FileLevelRestoreStrategy:
    """Format the destination, mount it and restore the stored subtree into it"""

    def __init__(self, profile: StrategyProfile, repository: RepositoryClient,
                 mounts: MountManager, settings: Settings, transcript: Transcript,
                 token: CancellationToken) -> None:
        self.profile = profile
        self.repository = repository
        self.mounts = mounts
        self.settings = settings
        self.transcript = transcript
        self.token = token

    def run(self, context: "RestoreContext") -> TransferOutcome:
        mountpoint = mountpoint_for(self.settings, context.name)
        if not context.reused:
            self.mounts.format(context.volume.path, self.settings.restore_filesystem)
        self.token.raise_if_cancelled()

        self.mounts.prepare_mountpoint(mountpoint)
        context.mountpoint = mountpoint
        self.mounts.mount(context.volume.path, mountpoint)
        context.mounted = True

        # backups store the mountpoint path, so restoring it relative to / lands in the mount
        stage = self.repository.restore_subtree_stage(context.snapshot.id, str(mountpoint), "/")
        self.transcript.begin(context.name, label="RESTORE_LV")
        try:
            result = TransferPipeline([stage], token=self.token, output=self.transcript.write_line).run()
        finally:
            self.transcript.close()
        return TransferOutcome(self.profile.command, context.name, None, [], result)


def build_backup_strategy(profile: StrategyProfile, repository: RepositoryClient,
                          mounts: MountManager, settings: Settings, transcript: Transcript,
                          token: CancellationToken,
                          warn: Optional[Callable[[str], None]] = None) -> TransferStrategy:
    if profile.direction is not Direction.BACKUP:
        raise ValueError(f"{profile.command.value} is not a backup command")
    if profile.kind is StrategyKind.FILE_LEVEL:
        return FileLevelBackupStrategy(profile, repository, mounts, settings, transcript, token, warn)
    return BlockBackupStrategy(profile, repository, settings, transcript, token)


def build_restore_strategy(profile: StrategyProfile, repository: RepositoryClient,
                           mounts: MountManager, settings: Settings, transcript: Transcript,
                           token: CancellationToken) -> TransferStrategy:
    if profile.direction is not Direction.RESTORE:
        raise ValueError(f"{profile.command.value} is not a restore command")
    if profile.kind is StrategyKind.FILE_LEVEL:
        return FileLevelRestoreStrategy(profile, repository, mounts, settings, transcript, token)
    return BlockRestoreStrategy(profile, repository, settings, token)
