# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.21
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/core/targets.py

"""
Target lists: a single volume name, or a file of names.

In a list file, lines starting with '#' are comments and are skipped
silently. Every other line is a volume name; blank lines resolve to nothing
and are reported like any other missing name.
"""

from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from lvmrestic.storage.protocols import Volume, VolumeManager
from lvmrestic.system.exceptions import ConfigError, ResolutionError

COMMENT_PREFIX = "#"


@dataclass
class TargetResolution:
    """Resolved volumes in list order plus the names that did not resolve."""
    volumes: list[Volume] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    from_file: bool = False

    @property
    def names(self) -> list[str]:
        return [volume.name for volume in self.volumes]


def read_target_file(path: Path) -> list[str]:
    """Names listed in path, comments removed, order kept."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read target list {path}: {e}") from e
    names = []
    for line in text.splitlines():
        if line.startswith(COMMENT_PREFIX):
            continue
        names.append(line.strip())
    return names


def _is_target_file(target: str) -> bool:
    return Path(target).is_file()


def load_target_names(target: str) -> tuple[list[str], bool]:
    """Names for restore, without any existence check.

    Returns:
        (names, from_file)
    """
    if not target:
        raise ConfigError("LV(s) missing. Please specify [lv-name] or [path-to-list].")
    if _is_target_file(target):
        return [name for name in read_target_file(Path(target)) if name], True
    return [target], False


def resolve_targets(target: str, volumes: VolumeManager) -> TargetResolution:
    """Resolve every listed name before any snapshot is taken.

    Unresolvable names are logged and excluded; they never abort the batch.
    """
    if not target:
        raise ConfigError("LV(s) missing. Please specify [lv-name] or [path-to-list].")

    from_file = _is_target_file(target)
    names = read_target_file(Path(target)) if from_file else [target]
    resolution = TargetResolution(from_file=from_file)
    if from_file:
        logger.info(f"Verifying that all LVs listed in {target} exist")

    for name in names:
        try:
            resolution.volumes.append(volumes.resolve(name))
        except ResolutionError as e:
            logger.warning(f"Could not find {name!r}: {e}. It cannot be included in this run")
            resolution.missing.append(name)
    return resolution
