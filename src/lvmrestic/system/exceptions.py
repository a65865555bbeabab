# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.08
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/system/exceptions.py

"""
Exception classes for LV backup and restore orchestration.

The hierarchy mirrors how far a failure reaches:
- ConfigError aborts the whole invocation before anything is mutated
- ResolutionError, PreconditionViolation and TransferFailure end one item
- TelemetryFailure is logged and swallowed
- InterruptSignal ends the process with exit code 130
"""

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


class LvmResticError(Exception):
    """Base exception for all lvmrestic errors."""
    pass


class ConfigError(LvmResticError):
    """Raised for missing repository config, missing tools or invalid settings."""
    pass


class ResolutionError(LvmResticError):
    """Raised when a volume or repository snapshot cannot be found."""

    def __init__(self, message: str, name: str = None):
        self.name = name
        super().__init__(message)


class SizeParseError(ResolutionError):
    """Raised when a recorded size tag does not follow the size grammar."""
    pass


class PreconditionViolation(LvmResticError):
    """Raised when leftover state needs manual intervention (mountpoint, name conflict)."""

    def __init__(self, message: str, path: str = None, recovery_hint: str = None):
        self.path = path
        self.recovery_hint = recovery_hint
        super().__init__(message)


class TransferFailure(LvmResticError):
    """Raised when any stage of a transfer pipeline fails."""

    def __init__(self, message: str, stage_errors: list[str] = None):
        self.stage_errors = stage_errors or []
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if not self.stage_errors:
            return base
        return f"{base} ({'; '.join(self.stage_errors)})"


class TelemetryFailure(LvmResticError):
    """Raised when monitoring data could not be delivered."""
    pass


class InterruptSignal(LvmResticError):
    """Raised at a cancellation checkpoint after the operator interrupted the run."""

    def __init__(self, message: str = "Signal interrupt received"):
        super().__init__(message)


# === VOLUME MANAGER ERRORS ===

class VolumeManagerError(LvmResticError):
    """Base class for volume manager command failures."""

    def __init__(self, message: str, command: str = None):
        self.command = command
        super().__init__(message)


class InsufficientSpaceError(VolumeManagerError):
    """Not enough free extents to create the snapshot buffer."""
    pass


class SnapshotExistsError(VolumeManagerError):
    """A snapshot with the derived name is still present."""
    pass


class VolumeNameConflictError(VolumeManagerError):
    """A volume with the requested name already exists in the group."""
    pass


class VolumeGroupFullError(VolumeManagerError):
    """The destination volume group cannot hold the requested size."""
    pass


# === REPOSITORY ERRORS ===

class RepositoryError(LvmResticError):
    """Repository command failed or returned unreadable output."""
    pass
