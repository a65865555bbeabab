# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.05.13
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/config/manager.py

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Literal, Final

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from lvmrestic.system.exceptions import ConfigError


# ---- Constants ----

SETTINGS_CFG: Final = "lvm-restic.yml"

ConflictPolicy = Literal["abort", "prompt"]


def _get_settings_search_paths() -> tuple[Path, ...]:
    """Get settings file search paths (ordered by priority: lowest to highest).

    Evaluated at call time so environment overrides work in tests.
    """
    return (
        Path("/etc/lvm-restic") / SETTINGS_CFG,
        Path.home() / ".config" / "lvm-restic" / SETTINGS_CFG,
        Path(os.getenv("XDG_CONFIG_HOME", "")) / "lvm-restic" / SETTINGS_CFG,
        Path(os.getenv("LVM_RESTIC_CONFIG_HOME", "")) / SETTINGS_CFG,
    )


def _load_merged_settings_data(candidates: tuple[Path, ...]) -> dict:
    """Load and merge settings data from candidate paths.

    Missing files are skipped; later files override earlier ones.

    Raises:
        ConfigError: If a present file cannot be parsed
    """
    merged_data: dict = {}
    found = []

    for candidate in candidates:
        # Skip candidates built from empty env vars
        if candidate.parent == Path("") or candidate == Path("lvm-restic") / SETTINGS_CFG:
            continue
        if not candidate.is_file():
            continue
        try:
            with candidate.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read settings from {candidate}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Settings file {candidate} must contain a mapping")

        telemetry = data.get("telemetry")
        if isinstance(telemetry, dict) and isinstance(merged_data.get("telemetry"), dict):
            data = {**data, "telemetry": {**merged_data["telemetry"], **telemetry}}
        merged_data.update(data)
        found.append(str(candidate))
        logger.debug(f"Loaded settings from {candidate}")

    if found:
        logger.debug(f"Merged settings from: {', '.join(found)}")
    return merged_data


# ---- Settings Models ----

class TelemetrySettings(BaseModel):
    """Zabbix sender settings."""
    enabled: bool = True
    agent_config: Path = Path("/etc/zabbix/zabbix_agentd.conf")
    agent_service: str = "zabbix-agent"
    discovery_key: str = "rescript.lv.discovery"
    retry_backoff_seconds: float = 60.0


class Settings(BaseModel):
    """Operator settings. Every field has a working default."""
    exclude_file: Path = Path("/etc/restic/exclude.txt")
    snapshot_buffer: str = "10G"
    log_dir: Path = Path("/var/log/lvm-restic")
    workdir: Path = Path("/")
    mount_base: Path = Path("/mnt")

    snapshot_grace_seconds: float = 5.0
    sweep_grace_seconds: float = 10.0
    restore_start_delay_seconds: float = 5.0
    backup_poll_seconds: float = 60.0
    sweep_retry_attempts: int = Field(default=3, ge=1)
    sweep_retry_delay_seconds: float = 5.0

    compressor: list[str] = Field(default_factory=lambda: ["pigz", "--fast", "--rsyncable"])
    decompressor: list[str] = Field(default_factory=lambda: ["unpigz"])
    restore_filesystem: str = "ext4"
    conflict_policy: ConflictPolicy = "abort"
    disk_usage_warn_percent: int = Field(default=80, ge=0, le=100)

    rescript_dir: Path = Field(default_factory=lambda: Path.home() / ".rescript")
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)

    @field_validator("snapshot_buffer")
    @classmethod
    def validate_snapshot_buffer(cls, value: str) -> str:
        from lvmrestic.core.sizes import parse_buffer_size
        from lvmrestic.system.exceptions import SizeParseError
        try:
            parse_buffer_size(value)
        except SizeParseError as e:
            raise ValueError(str(e)) from e
        return value

    @field_validator("compressor", "decompressor")
    @classmethod
    def validate_command(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("command must not be empty")
        return value

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        """Load settings from an explicit file or from the merged search path."""
        if config_path is not None:
            if not config_path.is_file():
                raise ConfigError(f"Settings file not found: {config_path}")
            data = _load_merged_settings_data((config_path,))
        else:
            data = _load_merged_settings_data(_get_settings_search_paths())

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings: {e}") from e


# done.
