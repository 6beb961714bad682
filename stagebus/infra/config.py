"""Configuration dataclass for stagebus.

Provides StageBusConfig for centralized configuration management. Programmatic
users construct it directly; the CLI loads it from the environment via
from_env().

Environment Variables:
    STAGEBUS_RUNS_DIR: Directory for run records (default: ~/.config/stagebus/runs)
    STAGEBUS_KILL_GRACE_SECONDS: Delay between SIGTERM and SIGKILL on stage timeout
    STAGEBUS_DISABLE_DEBUG_LOG: Set to 1 to skip the per-run debug log file
    GITHUB_OUTPUT: File receiving key=value step outputs (set by GitHub Actions)
    GITHUB_STEP_SUMMARY: File receiving the markdown job summary
    GITHUB_REPOSITORY: owner/repo used by the pull-request comment sink
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from stagebus.core.errors import ConfigurationError
from stagebus.infra.command_runner import DEFAULT_KILL_GRACE_SECONDS
from stagebus.infra.env import USER_CONFIG_DIR


def _optional_path(name: str) -> Path | None:
    value = os.environ.get(name)
    return Path(value) if value else None


@dataclass(frozen=True)
class StageBusConfig:
    """Centralized configuration for a stagebus run.

    Attributes:
        runs_dir: Directory where run records are written.
        github_output: GITHUB_OUTPUT file, if running under GitHub Actions.
        step_summary: GITHUB_STEP_SUMMARY file, if set.
        github_repository: Default owner/repo for review comments.
        kill_grace_seconds: Grace period before SIGKILL on stage timeout.
        debug_log_enabled: Whether a debug log file is written per run.
    """

    runs_dir: Path = field(default_factory=lambda: USER_CONFIG_DIR / "runs")
    github_output: Path | None = None
    step_summary: Path | None = None
    github_repository: str | None = None
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS
    debug_log_enabled: bool = True

    @classmethod
    def from_env(cls, *, validate: bool = True) -> StageBusConfig:
        """Create StageBusConfig from environment variables.

        Args:
            validate: If True (default), raise ConfigurationError on any
                validation errors.

        Raises:
            ConfigurationError: If validate=True and configuration is invalid,
                or STAGEBUS_KILL_GRACE_SECONDS is not a number.
        """
        runs_dir = Path(
            os.environ.get("STAGEBUS_RUNS_DIR", str(USER_CONFIG_DIR / "runs"))
        )
        grace_raw = os.environ.get("STAGEBUS_KILL_GRACE_SECONDS")
        try:
            kill_grace = (
                float(grace_raw) if grace_raw else DEFAULT_KILL_GRACE_SECONDS
            )
        except ValueError as e:
            raise ConfigurationError(
                f"STAGEBUS_KILL_GRACE_SECONDS must be a number, got {grace_raw!r}"
            ) from e

        config = cls(
            runs_dir=runs_dir,
            github_output=_optional_path("GITHUB_OUTPUT"),
            step_summary=_optional_path("GITHUB_STEP_SUMMARY"),
            github_repository=os.environ.get("GITHUB_REPOSITORY") or None,
            kill_grace_seconds=kill_grace,
            debug_log_enabled=os.environ.get("STAGEBUS_DISABLE_DEBUG_LOG") != "1",
        )

        if validate:
            errors = config.validate()
            if errors:
                raise ConfigurationError(errors)
        return config

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors: list[str] = []
        if not self.runs_dir.is_absolute():
            errors.append(f"runs_dir should be an absolute path, got: {self.runs_dir}")
        if self.kill_grace_seconds < 0:
            errors.append(
                f"kill_grace_seconds must be non-negative, got {self.kill_grace_seconds}"
            )
        if self.github_repository is not None and "/" not in self.github_repository:
            errors.append(
                f"github_repository must look like owner/repo, got: {self.github_repository}"
            )
        return errors
