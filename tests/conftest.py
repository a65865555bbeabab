# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.24
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/conftest.py

"""Shared fixtures for the lvmrestic test suite."""

import pytest

from lvmrestic.config.manager import Settings, TelemetrySettings
from lvmrestic.core.cancellation import CancellationToken
from tests.fakes import FakeVolumeManager, FakeMountManager, FakeRepository, FakeTelemetry


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with every delay at zero and gzip standing in for pigz."""
    mount_base = tmp_path / "mnt"
    mount_base.mkdir()
    exclude_file = tmp_path / "exclude.txt"
    exclude_file.write_text("*.tmp\n")
    return Settings(
        exclude_file=exclude_file,
        log_dir=tmp_path / "log",
        workdir=tmp_path,
        mount_base=mount_base,
        rescript_dir=tmp_path / "rescript",
        snapshot_grace_seconds=0,
        sweep_grace_seconds=0,
        restore_start_delay_seconds=0,
        backup_poll_seconds=0,
        sweep_retry_delay_seconds=0,
        compressor=["gzip", "-c", "-1"],
        decompressor=["gzip", "-dc"],
        telemetry=TelemetrySettings(retry_backoff_seconds=0),
    )


@pytest.fixture
def volumes(tmp_path) -> FakeVolumeManager:
    return FakeVolumeManager(tmp_path / "dev")


@pytest.fixture
def mounts() -> FakeMountManager:
    return FakeMountManager()


@pytest.fixture
def repository(tmp_path) -> FakeRepository:
    return FakeRepository(tmp_path / "repo")


@pytest.fixture
def telemetry() -> FakeTelemetry:
    return FakeTelemetry()


@pytest.fixture
def token() -> CancellationToken:
    return CancellationToken()
