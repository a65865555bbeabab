# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.23
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/core/restore.py

"""
Restore of one volume or a list of volumes into a volume group.

For each name: select a snapshot among the candidates of the strategy, read
the size recorded at backup time, create the destination volume (or, for
file-level restore under the 'prompt' conflict policy, reuse an existing one
the operator confirms), then stream the data back. A created destination
volume is kept when the transfer fails; the operator decides what to do with
it.
"""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger
from rich.console import Console

from lvmrestic.config.manager import Settings
from lvmrestic.core.backup import BatchResult, ItemResult
from lvmrestic.core.cancellation import CancellationToken
from lvmrestic.core.lifecycle import sweep_stale_snapshots
from lvmrestic.core.retry import RetryConfig
from lvmrestic.core.sizes import parse_size, size_from_tags
from lvmrestic.core.strategies import (
    Direction, StrategyKind, StrategyProfile, TransferOutcome,
    build_restore_strategy, release_mountpoint
)
from lvmrestic.core.targets import load_target_names
from lvmrestic.core.transcript import Transcript
from lvmrestic.storage.protocols import (
    MountManager, RepositoryClient, RestorePrompts, SnapshotRef, Volume, VolumeManager
)
from lvmrestic.system import display
from lvmrestic.system.exceptions import (
    LvmResticError, ConfigError, InterruptSignal, PreconditionViolation, ResolutionError, TransferFailure
)

CONFLICT_PROMPT = "prompt"


@dataclass
class RestoreContext:
    """Everything one restore item acquires."""
    name: str
    snapshot: Optional[SnapshotRef] = None
    recorded_size: Optional[str] = None
    size_bytes: Optional[int] = None
    volume: Optional[Volume] = None
    created: bool = False
    reused: bool = False
    mountpoint: Optional[Path] = None
    mounted: bool = False
    progress: Optional[Callable[[int], None]] = None
    outcome: Optional[TransferOutcome] = None


class RestoreOrchestrator:
    """Run one restore command over a list of names"""

    def __init__(
        self,
        profile: StrategyProfile,
        volumes: VolumeManager,
        mounts: MountManager,
        repository: RepositoryClient,
        prompts: RestorePrompts,
        settings: Settings,
        token: CancellationToken,
        group: Optional[str] = None,
        physical_volume: Optional[str] = None,
        conflict_policy: Optional[str] = None,
        transcript: Optional[Transcript] = None,
        console: Optional[Console] = None,
        show_progress: bool = True,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        if profile.direction is not Direction.RESTORE:
            raise ValueError(f"{profile.command.value} is not a restore command")
        self.profile = profile
        self.volumes = volumes
        self.mounts = mounts
        self.repository = repository
        self.prompts = prompts
        self.settings = settings
        self.token = token
        self.group = group
        self.physical_volume = physical_volume
        self.conflict_policy = conflict_policy or settings.conflict_policy
        self.transcript = transcript or Transcript(settings.log_dir, profile.log_name)
        self.console = console or Console(stderr=True)
        self.show_progress = show_progress
        self.sleep = sleep
        self.strategy = build_restore_strategy(profile, repository, mounts, settings, self.transcript, token)

    def run(self, target: str) -> BatchResult:
        """Restore every volume named by target.

        Raises:
            ConfigError: If the group, the physical volume hint, the target
                or the repository is unusable
        """
        self._check_destination()
        logger.info(f"Looking for repository {self.repository.name}")
        if not self.repository.is_reachable():
            raise ConfigError(f"Repository {self.repository.name} is not reachable")
        names, _ = load_target_names(target)

        result = BatchResult()
        try:
            for name in names:
                self.token.raise_if_cancelled()
                result.items.append(self._restore_one(name))
        except InterruptSignal:
            result.interrupted = True
            logger.warning("Signal interrupt received, cleaning up")
        finally:
            self.transcript.remove_running()
            result.sweep_failures = sweep_stale_snapshots(
                self.volumes, self.settings.sweep_grace_seconds,
                RetryConfig(self.settings.sweep_retry_attempts,
                            self.settings.sweep_retry_delay_seconds, sleep=self.sleep),
                sleep=self.sleep,
            )
        return result

    def _check_destination(self) -> None:
        groups = self.volumes.list_volume_groups()
        if not self.group:
            raise ConfigError(
                "Please select the volume group to restore to with --vg. "
                f"Available: {', '.join(groups) or 'none'}"
            )
        if self.group not in groups:
            raise ConfigError(f"Volume group {self.group} not found. Available: {', '.join(groups) or 'none'}")
        if self.physical_volume:
            physical = self.volumes.list_physical_volumes(self.group)
            if self.physical_volume not in physical:
                raise ConfigError(
                    f"{self.physical_volume} is not a physical volume of {self.group}. "
                    f"Available: {', '.join(physical) or 'none'}"
                )

    # ---- One item ----

    def _restore_one(self, name: str) -> ItemResult:
        display.print_banner(self.console, "restore", name)
        ctx = RestoreContext(name=name)
        error: Optional[LvmResticError] = None
        try:
            self._select(ctx)
            self.token.raise_if_cancelled()
            self._prepare_destination(ctx)
            self.console.print("[green]STARTING THE RESTORE[/green]")
            if self.token.wait(self.settings.restore_start_delay_seconds):
                raise InterruptSignal()
            ctx.outcome = self._transfer(ctx)
        except InterruptSignal:
            raise
        except LvmResticError as e:
            error = e
        except OSError as e:
            error = TransferFailure(f"{name}: {e}")
            logger.exception(f"{name}: unexpected OS error")
        finally:
            warnings = release_mountpoint(self.mounts, ctx)

        if error is None:
            display.print_item_done(self.console, name, f"from snapshot {ctx.snapshot.id}")
            return ItemResult(name=name, ok=True, snapshot_id=ctx.snapshot.id, warnings=warnings)

        hint = error.recovery_hint if isinstance(error, PreconditionViolation) else None
        if ctx.created:
            warnings.append(f"{ctx.volume.path} was created and is kept for inspection")
        display.print_item_failed(self.console, name, str(error), hint)
        for warning in warnings:
            display.print_warning(self.console, warning)
        return ItemResult(name=name, ok=False, error=str(error), hint=hint, warnings=warnings)

    def _select(self, ctx: RestoreContext) -> None:
        tags, path = self.profile.snapshot_filter(ctx.name)
        logger.info(f"Getting all snapshots of {ctx.name}")
        candidates = self.repository.list_snapshots(tags, path)
        if not candidates:
            raise ResolutionError(f"No snapshots of {ctx.name} found for {self.profile.command.value}",
                                  name=ctx.name)
        ctx.snapshot = self.prompts.select_snapshot(candidates)
        logger.info(f"ID {ctx.snapshot.id} selected. Reading properties")

        metadata = self.repository.read_metadata(ctx.snapshot.id)
        ctx.recorded_size, recorded_bytes = size_from_tags(metadata.tags)
        self.console.print(f"LV name: {ctx.name}")
        self.console.print(f"LV original size: {ctx.recorded_size}, {recorded_bytes} bytes")

        if self.profile.kind is StrategyKind.FILE_LEVEL:
            self.console.print(f"LV total required size: {display.format_bytes(metadata.total_size)}")
            spec = self.prompts.choose_size(ctx.name, ctx.recorded_size, metadata.total_size)
            ctx.size_bytes = parse_size(spec)
        else:
            ctx.size_bytes = recorded_bytes

    def _prepare_destination(self, ctx: RestoreContext) -> None:
        existing = self.volumes.volume_in_group(ctx.name, self.group)
        if existing is not None:
            ctx.volume = self._resolve_conflict(ctx, existing)
            ctx.reused = True
            return
        self.token.raise_if_cancelled()
        logger.info(f"Creating LV {ctx.name}, {ctx.size_bytes} bytes on {self.group}")
        ctx.volume = self.volumes.create_volume(ctx.name, ctx.size_bytes, self.group, self.physical_volume)
        ctx.created = True

    def _resolve_conflict(self, ctx: RestoreContext, existing: Volume) -> Volume:
        conflict = PreconditionViolation(
            f"There is already an LV with the name {ctx.name} on {self.group}.",
            path=existing.path,
            recovery_hint="Please rename or remove the LV manually!",
        )
        # overwriting a block device is never offered
        if self.profile.kind is not StrategyKind.FILE_LEVEL or self.conflict_policy != CONFLICT_PROMPT:
            raise conflict
        existing_size = self.volumes.size_bytes(existing)
        if existing_size < ctx.size_bytes:
            raise PreconditionViolation(
                f"{existing.path} exists and is smaller ({existing_size} bytes) than required "
                f"({ctx.size_bytes} bytes).",
                path=existing.path,
                recovery_hint=conflict.recovery_hint,
            )
        if not self.prompts.confirm_reuse(existing, existing_size):
            raise conflict
        logger.info(f"Reusing {existing.path} for the restore of {ctx.name}")
        return existing

    def _transfer(self, ctx: RestoreContext) -> TransferOutcome:
        if self.profile.is_block and self.show_progress:
            with display.TransferProgress(self.console, f"Restoring {ctx.name}", ctx.size_bytes) as bar:
                ctx.progress = bar.advance
                return self.strategy.run(ctx)
        return self.strategy.run(ctx)
