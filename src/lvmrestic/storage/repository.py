# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.22
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/storage/repository.py

"""
restic repository adapter.

Query operations run to completion through CommandExecutor. Streaming
operations (ingest, dump, restore) are returned as CommandStages so that the
TransferPipeline owns the processes and their failure handling.
"""

from pathlib import Path
from typing import Optional, Sequence

import orjson
from loguru import logger

from lvmrestic.config.repositories import RepositoryContext
from lvmrestic.core.pipeline import CommandStage
from lvmrestic.system.execution import CommandExecutor as ce
from lvmrestic.system.exceptions import RepositoryError
from .protocols import SnapshotRef, SnapshotMetadata

RESTIC = "restic"


def _tag_args(tags: Sequence[str]) -> list[str]:
    args = []
    for tag in tags:
        args += ["--tag", tag]
    return args


class ResticRepository:
    """Repository client running restic with a resolved context"""

    def __init__(self, context: RepositoryContext, workdir: Path = Path("/")) -> None:
        self.context = context
        self.name = context.name
        self.workdir = Path(workdir)
        self._env = context.process_env()

    def _command(self, *args: str) -> list[str]:
        return [RESTIC, *args]

    def _run_json(self, *args: str):
        cmd = self._command(*args)
        try:
            result = ce.run_local(cmd, env=self._env, cwd=str(self.workdir))
        except ValueError as e:
            raise RepositoryError(f"restic {args[0]} failed: {e}") from e
        try:
            return orjson.loads(result.stdout or "null")
        except orjson.JSONDecodeError as e:
            raise RepositoryError(f"restic {args[0]} returned invalid JSON: {e}") from e

    def _stage(self, *args: str) -> CommandStage:
        return CommandStage(argv=self._command(*args), env=self._env, cwd=str(self.workdir))

    # ---- Queries ----

    def is_reachable(self) -> bool:
        """Cheap check of location and credentials."""
        try:
            result = ce.run_local(self._command("cat", "config"), check=False,
                                  env=self._env, cwd=str(self.workdir))
        except OSError as e:
            logger.warning(f"Could not run restic: {e}")
            return False
        if not result.success:
            logger.warning(f"Repository {self.name} is not reachable: {result.stderr.strip()}")
        return result.success

    def list_snapshots(self, tags: Sequence[str] = (), path: Optional[str] = None) -> list[SnapshotRef]:
        args = ["snapshots", "--json"]
        if tags:
            args += ["--tag", ",".join(tags)]
        if path:
            args += ["--path", path]
        data = self._run_json(*args) or []
        snapshots = []
        for item in data:
            snapshots.append(SnapshotRef(
                id=item.get("short_id") or item.get("id", "")[:8],
                tags=tuple(item.get("tags") or ()),
                time=item.get("time", ""),
                paths=tuple(item.get("paths") or ()),
                hostname=item.get("hostname", ""),
            ))
        return snapshots

    def read_metadata(self, snapshot_id: str) -> SnapshotMetadata:
        data = self._run_json("snapshots", "--json", snapshot_id) or []
        if not data:
            raise RepositoryError(f"Snapshot {snapshot_id} not found in {self.name}")
        stats = self._run_json("stats", "--json", snapshot_id) or {}
        return SnapshotMetadata(
            id=snapshot_id,
            tags=list(data[0].get("tags") or []),
            total_size=stats.get("total_size"),
        )

    # ---- Streaming stages ----

    def ingest_stage(self, tags: Sequence[str], item_name: str) -> CommandStage:
        return self._stage("backup", "--verbose", *_tag_args(tags),
                           "--stdin", "--stdin-filename", item_name)

    def backup_paths_stage(self, path: Path, tags: Sequence[str], exclude_file: Optional[Path]) -> CommandStage:
        args = ["--verbose", *_tag_args(tags), "backup", str(path)]
        if exclude_file is not None:
            args.append(f"--exclude-file={exclude_file}")
        return self._stage(*args)

    def extract_stage(self, snapshot_id: str, item_name: str) -> CommandStage:
        return self._stage("dump", snapshot_id, item_name)

    def restore_subtree_stage(self, snapshot_id: str, include: str, target: str) -> CommandStage:
        return self._stage("restore", snapshot_id, "--include", include, "--target", target)
