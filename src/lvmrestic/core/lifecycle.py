# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.22
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/core/lifecycle.py

"""
Snapshot lifecycle of one backup item.

    IDLE -> PREFLIGHT_CLEAN -> SNAPSHOTTING -> TRANSFERRING -> RELEASING -> DONE | FAILED
                          \\_____________ any of these ____________/
                                           |
                                      INTERRUPTED  (release, then the caller sweeps)

The snapshot and the mountpoint are acquired on the OperationContext and
released in RELEASING (or INTERRUPTED) on every exit path.

Known limitation: the snapshot buffer is fixed. If copy-on-write traffic on
the origin exceeds it during a long transfer the snapshot becomes invalid and
nothing here detects it. Size snapshot_buffer for the write rate of the
busiest volume.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger

from lvmrestic.config.manager import Settings
from lvmrestic.core.cancellation import CancellationToken
from lvmrestic.core.retry import RetryConfig, RetryableOperation, SWEEP_RETRY_CONFIG
from lvmrestic.core.sizes import format_size_tag
from lvmrestic.core.strategies import (
    StrategyProfile, TransferOutcome, TransferStrategy, release_mountpoint
)
from lvmrestic.storage.protocols import (
    MountManager, Snapshot, Volume, VolumeManager, SNAPSHOT_NAME_PATTERN
)
from lvmrestic.system.exceptions import (
    LvmResticError, InterruptSignal, SnapshotExistsError, TransferFailure, VolumeManagerError
)


class LifecycleState(Enum):
    IDLE = "idle"
    PREFLIGHT_CLEAN = "preflight-clean"
    SNAPSHOTTING = "snapshotting"
    TRANSFERRING = "transferring"
    RELEASING = "releasing"
    DONE = "done"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


@dataclass
class OperationContext:
    """Everything one backup item acquires, owned by a single lifecycle run."""
    volume: Volume
    profile: StrategyProfile
    state: LifecycleState = LifecycleState.IDLE
    history: list[LifecycleState] = field(default_factory=list)
    size_bytes: Optional[int] = None
    size_tag: Optional[str] = None
    snapshot: Optional[Snapshot] = None
    mountpoint: Optional[Path] = None
    mounted: bool = False
    outcome: Optional[TransferOutcome] = None
    error: Optional[LvmResticError] = None
    release_warnings: list[str] = field(default_factory=list)

    def advance(self, state: LifecycleState) -> None:
        logger.debug(f"{self.volume.name}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    @property
    def succeeded(self) -> bool:
        return self.state is LifecycleState.DONE


class SnapshotLifecycle:
    """Drive one volume through snapshot, transfer and release"""

    def __init__(self, volumes: VolumeManager, mounts: MountManager,
                 strategy: TransferStrategy, settings: Settings,
                 token: CancellationToken,
                 retry_config: Optional[RetryConfig] = None) -> None:
        self.volumes = volumes
        self.mounts = mounts
        self.strategy = strategy
        self.settings = settings
        self.token = token
        self.retry_config = retry_config or SWEEP_RETRY_CONFIG

    def run(self, volume: Volume) -> OperationContext:
        """Back up one volume.

        Item-level failures are recorded on the returned context.

        Raises:
            InterruptSignal: After releasing this item's resources
        """
        ctx = OperationContext(volume=volume, profile=self.strategy.profile)
        interrupted = False
        try:
            self.token.raise_if_cancelled()
            ctx.advance(LifecycleState.PREFLIGHT_CLEAN)
            self._preflight_clean(ctx)

            self.token.raise_if_cancelled()
            ctx.advance(LifecycleState.SNAPSHOTTING)
            self._create_snapshot(ctx)

            self.token.raise_if_cancelled()
            ctx.advance(LifecycleState.TRANSFERRING)
            ctx.outcome = self.strategy.run(ctx)
        except InterruptSignal as e:
            interrupted = True
            ctx.error = e
        except LvmResticError as e:
            ctx.error = e
            logger.error(f"{volume.name}: {e}")
        except OSError as e:
            ctx.error = TransferFailure(f"{volume.name}: {e}")
            logger.exception(f"{volume.name}: unexpected OS error")
        finally:
            ctx.advance(LifecycleState.INTERRUPTED if interrupted or self.token.cancelled
                        else LifecycleState.RELEASING)
            self._release(ctx)

        if ctx.state is LifecycleState.INTERRUPTED:
            raise ctx.error if isinstance(ctx.error, InterruptSignal) else InterruptSignal()
        ctx.advance(LifecycleState.FAILED if ctx.error else LifecycleState.DONE)
        return ctx

    # ---- States ----

    def _preflight_clean(self, ctx: OperationContext) -> None:
        stale = self.volumes.find_snapshot(ctx.volume)
        if stale is None:
            return
        grace = self.settings.snapshot_grace_seconds
        logger.warning(f"{stale.name} already exists. It will be removed in {grace:g} seconds!")
        if self.token.wait(grace):
            raise InterruptSignal()
        self.volumes.remove_volume(stale.path)

    def _create_snapshot(self, ctx: OperationContext) -> None:
        ctx.size_bytes = self.volumes.size_bytes(ctx.volume)
        ctx.size_tag = format_size_tag(ctx.size_bytes)
        buffer = self.settings.snapshot_buffer
        try:
            ctx.snapshot = self.volumes.create_snapshot(ctx.volume, buffer)
        except SnapshotExistsError:
            # appeared after the preflight check
            logger.warning(f"{ctx.volume.snapshot_name} reappeared, removing it again")
            self.volumes.remove_volume(ctx.volume.snapshot_path)
            ctx.snapshot = self.volumes.create_snapshot(ctx.volume, buffer)

    def _release(self, ctx: OperationContext) -> None:
        ctx.release_warnings.extend(release_mountpoint(self.mounts, ctx))
        if ctx.snapshot is None:
            return
        if ctx.mounted:
            ctx.release_warnings.append(f"{ctx.snapshot.path} is still mounted and was not removed")
            return
        try:
            RetryableOperation(f"remove {ctx.snapshot.path}", self.retry_config).execute(
                self.volumes.remove_volume, ctx.snapshot.path
            )
            ctx.snapshot = None
        except VolumeManagerError as e:
            ctx.release_warnings.append(str(e))
            logger.warning(f"Could not remove {ctx.snapshot.path}: {e}")


def sweep_stale_snapshots(volumes: VolumeManager,
                          grace_seconds: float,
                          retry_config: Optional[RetryConfig] = None,
                          sleep: Callable[[float], Any] = time.sleep,
                          pattern: str = SNAPSHOT_NAME_PATTERN) -> list[str]:
    """Remove every active snapshot named *_snapshot on this host.

    The grace delay is not cancellable: this is the cleanup a cancellation
    runs.

    Returns:
        Paths that could not be removed
    """
    retry_config = retry_config or SWEEP_RETRY_CONFIG
    try:
        snapshots = volumes.list_active_snapshots(pattern)
    except VolumeManagerError as e:
        logger.error(f"Could not list active snapshots: {e}")
        return ["<unknown>"]
    if not snapshots:
        logger.info("There are no active snapshots named *_snapshot on this system.")
        return []

    paths = [snapshot.path for snapshot in snapshots]
    logger.warning("Removing the following active snapshots: " + ", ".join(paths))
    if grace_seconds > 0:
        sleep(grace_seconds)

    failed = []
    for path in paths:
        try:
            RetryableOperation(f"remove {path}", retry_config).execute(volumes.remove_volume, path)
        except VolumeManagerError as e:
            logger.error(f"Could not remove stale snapshot {path}: {e}")
            failed.append(path)
    return failed
