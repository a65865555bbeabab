# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.07
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/system/execution.py

"""Command execution helpers for the volume manager, mount and repository tools."""

import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from lvmrestic.system.exceptions import ConfigError


@dataclass
class CommandResult:
    """Outcome of one finished command."""
    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandExecutor:
    """Run external commands with consistent logging and error reporting."""

    @staticmethod
    def run_local(
        cmd: list[str],
        timeout: Optional[int] = None,
        check: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
        input: Optional[str] = None,
    ) -> CommandResult:
        """Run a command and capture its text output.

        Args:
            cmd: Command and arguments
            timeout: Seconds before subprocess.TimeoutExpired is raised
            check: Raise ValueError on non-zero exit
            env: Full environment for the child (inherits when None)
            cwd: Working directory for the child
            input: Text fed to the child stdin

        Returns:
            CommandResult with the captured output

        Raises:
            ValueError: If the command fails and check is True
        """
        logger.debug(f"Running: {' '.join(cmd)}")
        kwargs = {"capture_output": True, "text": True, "timeout": timeout}
        if env is not None:
            kwargs["env"] = env
        if cwd is not None:
            kwargs["cwd"] = cwd
        if input is not None:
            kwargs["input"] = input
        result = subprocess.run(cmd, **kwargs)

        command_result = CommandResult(
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )
        if check and not command_result.success:
            stderr = command_result.stderr.strip()
            if stderr:
                raise ValueError(f"Local command failed: {stderr}")
            raise ValueError(f"Command failed with exit code {result.returncode}")
        return command_result

    @staticmethod
    def run_streaming(
        cmd: list[str],
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a command with its output going straight to the terminal."""
        logger.debug(f"Running (streaming): {' '.join(cmd)}")
        result = subprocess.run(cmd, check=False, env=env, cwd=cwd)
        command_result = CommandResult(returncode=result.returncode, stdout="", stderr="")
        if check and not command_result.success:
            raise ValueError(f"Command failed with exit code {result.returncode}: {cmd[0]}")
        return command_result

    @staticmethod
    def require_tools(*names: str) -> None:
        """Fail before any mutation if an external tool is missing.

        Raises:
            ConfigError: Naming the first executable not found on PATH
        """
        for name in names:
            if shutil.which(name) is None:
                raise ConfigError(f"Please install {name}")
