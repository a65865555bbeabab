# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.22
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/core/backup.py

"""
Backup of one volume or a list of volumes.

Per batch:
1. repository reachability check (fatal when it fails)
2. wait until no other restic backup runs on this host
3. resolve every target; unresolvable names are reported and dropped
4. telemetry discovery
5. sequential SnapshotLifecycle per volume, telemetry report after each
6. once step 3 is done, on every exit: remove the running transcript and
   sweep stale snapshots
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from loguru import logger
from rich.console import Console

from lvmrestic.config.manager import Settings
from lvmrestic.core.cancellation import CancellationToken
from lvmrestic.core.lifecycle import (
    LifecycleState, OperationContext, SnapshotLifecycle, sweep_stale_snapshots
)
from lvmrestic.core.retry import RetryConfig, retry_telemetry_send
from lvmrestic.core.strategies import Direction, StrategyProfile, build_backup_strategy
from lvmrestic.core.targets import resolve_targets
from lvmrestic.core.transcript import Transcript
from lvmrestic.storage.protocols import (
    MountManager, RepositoryClient, TelemetrySink, Volume, VolumeManager
)
from lvmrestic.system import display
from lvmrestic.system.exceptions import (
    ConfigError, InterruptSignal, PreconditionViolation, TelemetryFailure,
    EXIT_OK, EXIT_FAILURE, EXIT_INTERRUPTED
)
from lvmrestic.system.locking import wait_for_other_backups
from lvmrestic.system.telemetry import NullTelemetry


@dataclass
class ItemResult:
    """Outcome of one target in a batch."""
    name: str
    ok: bool
    state: Optional[LifecycleState] = None
    error: Optional[str] = None
    hint: Optional[str] = None
    snapshot_id: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class BatchResult:
    """Outcome of a whole run."""
    items: list[ItemResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    sweep_failures: list[str] = field(default_factory=list)
    interrupted: bool = False

    @property
    def failed(self) -> list[str]:
        return [item.name for item in self.items if not item.ok]

    @property
    def ok(self) -> bool:
        return not self.interrupted and not self.failed and not self.sweep_failures

    @property
    def exit_code(self) -> int:
        if self.interrupted:
            return EXIT_INTERRUPTED
        return EXIT_OK if self.ok else EXIT_FAILURE


def item_from_context(ctx: OperationContext) -> ItemResult:
    error = ctx.error
    hint = error.recovery_hint if isinstance(error, PreconditionViolation) else None
    return ItemResult(
        name=ctx.volume.name,
        ok=ctx.succeeded,
        state=ctx.state,
        error=str(error) if error else None,
        hint=hint,
        warnings=list(ctx.release_warnings),
    )


class BackupOrchestrator:
    """Run one backup command over a target list"""

    def __init__(
        self,
        profile: StrategyProfile,
        volumes: VolumeManager,
        mounts: MountManager,
        repository: RepositoryClient,
        settings: Settings,
        token: CancellationToken,
        telemetry: Optional[TelemetrySink] = None,
        transcript: Optional[Transcript] = None,
        console: Optional[Console] = None,
        wait_for_backups: Callable[..., Any] = wait_for_other_backups,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        if profile.direction is not Direction.BACKUP:
            raise ValueError(f"{profile.command.value} is not a backup command")
        self.profile = profile
        self.volumes = volumes
        self.repository = repository
        self.settings = settings
        self.token = token
        self.telemetry = telemetry or NullTelemetry()
        self.transcript = transcript or Transcript(settings.log_dir, profile.log_name)
        self.console = console or Console(stderr=True)
        self.wait_for_backups = wait_for_backups
        self.sleep = sleep

        strategy = build_backup_strategy(
            profile, repository, mounts, settings, self.transcript, token,
            warn=lambda message: display.print_warning(self.console, message),
        )
        self.lifecycle = SnapshotLifecycle(
            volumes, mounts, strategy, settings, token,
            retry_config=self._sweep_retry_config(),
        )

    def _sweep_retry_config(self) -> RetryConfig:
        return RetryConfig(self.settings.sweep_retry_attempts,
                           self.settings.sweep_retry_delay_seconds, sleep=self.sleep)

    def _telemetry_retry_config(self) -> RetryConfig:
        # the backoff is a checkpoint: an interrupt ends it early
        return RetryConfig(2, self.settings.telemetry.retry_backoff_seconds, sleep=self.token.wait)

    def run(self, target: str) -> BatchResult:
        """Back up every volume named by target.

        Snapshots are only touched, and the stale-snapshot sweep only runs,
        once the repository answered, no other backup runs and the targets
        are resolved.

        Raises:
            ConfigError: If the target is missing or the repository is unreachable
        """
        result = BatchResult()
        try:
            volumes = self._prepare_batch(target, result)
        except InterruptSignal:
            result.interrupted = True
            logger.warning("Signal interrupt received before the first snapshot")
            return result

        try:
            for volume in volumes:
                self.token.raise_if_cancelled()
                result.items.append(self._backup_one(volume))
        except InterruptSignal:
            result.interrupted = True
            logger.warning("Signal interrupt received, cleaning up")
        finally:
            self.transcript.remove_running()
            result.sweep_failures = sweep_stale_snapshots(
                self.volumes, self.settings.sweep_grace_seconds,
                self._sweep_retry_config(), sleep=self.sleep,
            )
        return result

    def _prepare_batch(self, target: str, result: BatchResult) -> list[Volume]:
        logger.info(f"Looking for repository {self.repository.name}")
        if not self.repository.is_reachable():
            raise ConfigError(f"Repository {self.repository.name} is not reachable")

        self.wait_for_backups(self.token, self.settings.backup_poll_seconds)

        resolution = resolve_targets(target, self.volumes)
        if resolution.from_file:
            result.skipped.extend(resolution.missing)
            for name in resolution.missing:
                display.print_warning(self.console, f"Could not find {name!r}. It cannot be included in this backup!")
        else:
            for name in resolution.missing:
                display.print_item_failed(self.console, name, f"Cannot find path for {name}")
                result.items.append(ItemResult(name=name, ok=False, error=f"Cannot find path for {name}"))

        self._discover(resolution.names)
        self.token.raise_if_cancelled()
        return resolution.volumes

    def _backup_one(self, volume: Volume) -> ItemResult:
        display.print_banner(self.console, "backup", volume.name)
        ctx = self.lifecycle.run(volume)
        item = item_from_context(ctx)
        for warning in item.warnings:
            display.print_warning(self.console, warning)
        if not ctx.succeeded:
            display.print_item_failed(self.console, volume.name, item.error or "failed", item.hint)
            return item

        stats = self.transcript.stats()
        item.snapshot_id = stats.snapshot_id
        detail = f"snapshot {stats.snapshot_id}" if stats.snapshot_id else ""
        display.print_item_done(self.console, volume.name, detail)
        self._report(volume.name, stats)
        return item

    # ---- Telemetry ----

    def _discover(self, names: list[str]) -> None:
        if not names:
            return
        try:
            self.telemetry.discover(names)
        except TelemetryFailure as e:
            logger.error(f"{e}. Will skip monitoring for this run")
            self.telemetry = NullTelemetry()

    def _report(self, volume_name: str, stats) -> None:
        try:
            timestamp = self.transcript.timestamp()
        except OSError as e:
            logger.warning(f"No running transcript for {volume_name}: {e}")
            return
        try:
            retry_telemetry_send(self.telemetry.report, volume_name, stats, timestamp,
                                 config=self._telemetry_retry_config())
        except TelemetryFailure as e:
            logger.error(f"Sending to Zabbix failed for {volume_name}: {e}")
        self.token.raise_if_cancelled()
