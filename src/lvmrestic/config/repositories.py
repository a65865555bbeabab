# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.20
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/config/repositories.py

"""
Repository credential resolution.

Repository definitions live in rescript config files
(~/.rescript/config/<name>.conf, optionally gpg encrypted). This module turns
such a file into a RepositoryContext: the repository location plus the
environment restic needs. Nothing else in the package reads those files.
"""

import os
import shlex
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field

from lvmrestic.system.exceptions import ConfigError
from lvmrestic.system.execution import CommandExecutor as ce


# rescript variable -> restic environment variable
CREDENTIAL_ENV_MAP: dict[str, str] = {
    "RESTIC_REPO": "RESTIC_REPOSITORY",
    "B2_ID": "B2_ACCOUNT_ID",
    "B2_KEY": "B2_ACCOUNT_KEY",
    "AWS_ID": "AWS_ACCESS_KEY_ID",
    "AWS_KEY": "AWS_SECRET_ACCESS_KEY",
    "AZURE_NAME": "AZURE_ACCOUNT_NAME",
    "AZURE_KEY": "AZURE_ACCOUNT_KEY",
    "GOOGLE_ID": "GOOGLE_PROJECT_ID",
    "GOOGLE_CREDENTIALS": "GOOGLE_APPLICATION_CREDENTIALS",
}


class RepositoryContext(BaseModel):
    """Resolved connection context for one repository."""
    name: str
    repository: str
    env: dict[str, str] = Field(default_factory=dict, repr=False)

    def process_env(self) -> dict[str, str]:
        """Environment for restic child processes."""
        merged = dict(os.environ)
        merged.update(self.env)
        return merged


def parse_shell_assignments(text: str) -> dict[str, str]:
    """Parse KEY="value" lines as written in rescript config files."""
    values: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].strip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key.isidentifier():
            continue
        try:
            tokens = shlex.split(value, comments=True)
        except ValueError:
            logger.warning(f"Ignoring unparseable config line for {key}")
            continue
        values[key] = tokens[0] if tokens else ""
    return values


class RescriptResolver:
    """Resolve repository names through rescript config files."""

    def __init__(self, rescript_dir: Path) -> None:
        self.rescript_dir = Path(rescript_dir)
        self.config_dir = self.rescript_dir / "config"

    def config_paths(self, name: str) -> tuple[Path, Path]:
        return (self.config_dir / f"{name}.conf", self.config_dir / f"{name}.conf.gpg")

    def exists(self, name: str) -> bool:
        plain, encrypted = self.config_paths(name)
        return plain.exists() or encrypted.exists()

    def _read_config(self, name: str) -> str:
        plain, encrypted = self.config_paths(name)
        if plain.exists():
            return plain.read_text(encoding="utf-8")
        if encrypted.exists():
            try:
                result = ce.run_local(["gpg", "--quiet", "--batch", "--decrypt", str(encrypted)])
            except (ValueError, OSError) as e:
                raise ConfigError(f"Could not decrypt {encrypted}: {e}") from e
            return result.stdout
        raise ConfigError(
            f"There is no repo or command for [{name}]. Indicate a valid "
            f"repo name or command to proceed. Run [lvm-rescript help] for usage."
        )

    def resolve(self, name: str) -> RepositoryContext:
        """Resolve a repository name into a connection context.

        Raises:
            ConfigError: If no config exists or it names no repository
        """
        values = parse_shell_assignments(self._read_config(name))

        env: dict[str, str] = {}
        for source_key, env_key in CREDENTIAL_ENV_MAP.items():
            if values.get(source_key):
                env[env_key] = values[source_key]

        password: Optional[str] = values.get("RESCRIPT_PASS") or values.get("RESTIC_PASSWORD")
        if password:
            env["RESTIC_PASSWORD"] = password

        repository = env.get("RESTIC_REPOSITORY")
        if not repository:
            raise ConfigError(f"Repository config for [{name}] does not define RESTIC_REPO")

        logger.debug(f"Resolved repository {name} -> {repository}")
        return RepositoryContext(name=name, repository=repository, env=env)
