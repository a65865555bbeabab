# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.23
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/system/telemetry.py

"""
Zabbix monitoring for backup runs.

Samples are keyed as <metric>.[<volume>.<repository>] and pushed through
zabbix_sender in its timestamped input-file format. A low level discovery
payload announces the volumes so Zabbix can create the items first.
"""

import shutil
from typing import Optional, Sequence

import orjson
from loguru import logger

from lvmrestic.config.manager import TelemetrySettings
from lvmrestic.core.transcript import TranscriptStats
from lvmrestic.system.execution import CommandExecutor as ce
from lvmrestic.system.exceptions import TelemetryFailure

ZABBIX_SENDER = "zabbix_sender"


def metric_key(metric: str, volume_name: str, repository: str) -> str:
    return f"{metric}.[{volume_name}.{repository}]"


def build_discovery_payload(volume_names: Sequence[str], repository: str) -> bytes:
    """Low level discovery JSON for the given volumes."""
    return orjson.dumps({
        "data": [{"{#LVNAME}": name, "{#REPO}": repository} for name in volume_names]
    })


def build_samples(volume_name: str, repository: str, stats: TranscriptStats, timestamp: int) -> list[str]:
    """Lines in zabbix_sender --with-timestamps input format."""
    values = [
        ("restic.backup.added", stats.bytes_added),
        ("restic.backup.snapshotid", stats.snapshot_id),
        ("restic.backup.processedtime", stats.processed_seconds),
        ("restic.backup.processedbytes", stats.processed_bytes),
    ]
    lines = []
    for metric, value in values:
        if value is None:
            logger.warning(f"No value for {metric} of {volume_name}, not sending it")
            continue
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        lines.append(f"- {metric_key(metric, volume_name, repository)} {timestamp} {value}")
    return lines


class NullTelemetry:
    """Telemetry sink used when monitoring is disabled"""

    def discover(self, volume_names: Sequence[str]) -> None:
        logger.debug("Skipping Zabbix discovery")

    def report(self, volume_name: str, stats: TranscriptStats, timestamp: int) -> None:
        logger.debug(f"Skipping Zabbix report for {volume_name}")


class ZabbixTelemetry:
    """Telemetry sink pushing through zabbix_sender"""

    def __init__(self, settings: TelemetrySettings, repository: str) -> None:
        self.settings = settings
        self.repository = repository

    def available(self) -> tuple[bool, str]:
        """Check that the agent runs and the sender is installed."""
        if shutil.which(ZABBIX_SENDER) is None:
            return False, f"{ZABBIX_SENDER} is not installed"
        try:
            result = ce.run_local(["systemctl", "is-active", "--quiet", self.settings.agent_service], check=False)
        except OSError as e:
            return False, f"Cannot query {self.settings.agent_service}: {e}"
        if not result.success:
            return False, f"{self.settings.agent_service} is not running"
        return True, "ok"

    def _send(self, args: list[str], input_text: Optional[str] = None) -> None:
        cmd = [ZABBIX_SENDER, "--config", str(self.settings.agent_config), *args]
        try:
            result = ce.run_local(cmd, check=False, input=input_text)
        except OSError as e:
            raise TelemetryFailure(f"Could not run {ZABBIX_SENDER}: {e}") from e
        if result.returncode != 0:
            detail = (result.stdout + result.stderr).strip().splitlines()
            raise TelemetryFailure(
                f"Sending to Zabbix failed: {detail[-1] if detail else f'exit code {result.returncode}'}"
            )

    def discover(self, volume_names: Sequence[str]) -> None:
        payload = build_discovery_payload(volume_names, self.repository).decode("utf-8")
        logger.debug(f"Zabbix discovery payload: {payload}")
        self._send(["--key", self.settings.discovery_key, "--value", payload])

    def report(self, volume_name: str, stats: TranscriptStats, timestamp: int) -> None:
        lines = build_samples(volume_name, self.repository, stats, timestamp)
        if not lines:
            raise TelemetryFailure(f"No transcript figures found for {volume_name}")
        self._send(["--with-timestamps", "--input-file", "-"], "\n".join(lines) + "\n")

