"""Unit tests for StageBusConfig and environment loading."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from stagebus.core.errors import ConfigurationError
from stagebus.infra.command_runner import DEFAULT_KILL_GRACE_SECONDS
from stagebus.infra.config import StageBusConfig
from stagebus.infra.env import USER_CONFIG_DIR, get_runs_dir, load_env

pytestmark = pytest.mark.unit

_ENV_VARS = (
    "STAGEBUS_RUNS_DIR",
    "STAGEBUS_KILL_GRACE_SECONDS",
    "STAGEBUS_DISABLE_DEBUG_LOG",
    "GITHUB_OUTPUT",
    "GITHUB_STEP_SUMMARY",
    "GITHUB_REPOSITORY",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestStageBusConfigFromEnv:
    def test_defaults(self, clean_env: pytest.MonkeyPatch) -> None:
        config = StageBusConfig.from_env()
        assert config.runs_dir == USER_CONFIG_DIR / "runs"
        assert config.github_output is None
        assert config.step_summary is None
        assert config.github_repository is None
        assert config.kill_grace_seconds == DEFAULT_KILL_GRACE_SECONDS
        assert config.debug_log_enabled is True

    def test_reads_github_actions_variables(
        self, clean_env: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        clean_env.setenv("STAGEBUS_RUNS_DIR", str(tmp_path / "runs"))
        clean_env.setenv("GITHUB_OUTPUT", str(tmp_path / "output"))
        clean_env.setenv("GITHUB_STEP_SUMMARY", str(tmp_path / "summary"))
        clean_env.setenv("GITHUB_REPOSITORY", "octo/repo")
        clean_env.setenv("STAGEBUS_KILL_GRACE_SECONDS", "0.5")
        clean_env.setenv("STAGEBUS_DISABLE_DEBUG_LOG", "1")

        config = StageBusConfig.from_env()

        assert config.runs_dir == tmp_path / "runs"
        assert config.github_output == tmp_path / "output"
        assert config.step_summary == tmp_path / "summary"
        assert config.github_repository == "octo/repo"
        assert config.kill_grace_seconds == 0.5
        assert config.debug_log_enabled is False

    def test_empty_variables_are_unset(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("GITHUB_OUTPUT", "")
        clean_env.setenv("GITHUB_REPOSITORY", "")
        config = StageBusConfig.from_env()
        assert config.github_output is None
        assert config.github_repository is None

    def test_non_numeric_grace(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("STAGEBUS_KILL_GRACE_SECONDS", "soon")
        with pytest.raises(ConfigurationError, match="must be a number"):
            StageBusConfig.from_env()

    def test_validation_errors_collected(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("STAGEBUS_RUNS_DIR", "relative/runs")
        clean_env.setenv("STAGEBUS_KILL_GRACE_SECONDS", "-1")
        clean_env.setenv("GITHUB_REPOSITORY", "no-slash")

        with pytest.raises(ConfigurationError) as exc_info:
            StageBusConfig.from_env()
        assert len(exc_info.value.errors) == 3
        assert "Configuration validation failed" in str(exc_info.value)

    def test_validation_can_be_skipped(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("STAGEBUS_RUNS_DIR", "relative/runs")
        config = StageBusConfig.from_env(validate=False)
        assert config.runs_dir == Path("relative/runs")
        assert config.validate() != []


class TestEnv:
    def test_get_runs_dir_reads_env_at_call_time(
        self, clean_env: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        assert get_runs_dir() == USER_CONFIG_DIR / "runs"
        clean_env.setenv("STAGEBUS_RUNS_DIR", str(tmp_path))
        assert get_runs_dir() == tmp_path

    def test_load_env_repo_file_overrides(
        self, clean_env: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        clean_env.setenv("GITHUB_REPOSITORY", "from/shell")
        (tmp_path / ".env").write_text("GITHUB_REPOSITORY=from/dotenv\n")

        load_env(tmp_path)

        assert os.environ["GITHUB_REPOSITORY"] == "from/dotenv"
