"""Environment configuration and loading for stagebus.

Centralizes config paths and dotenv loading. The CLI calls load_user_env()
at bootstrap so values from ~/.config/stagebus/.env are visible to every
later os.environ lookup, and `stagebus run` adds the .env file that sits
next to the pipeline file via load_env().
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# User config directory (stores .env, runs, etc.)
USER_CONFIG_DIR = Path.home() / ".config" / "stagebus"


# Run record directory
# Can be overridden via STAGEBUS_RUNS_DIR environment variable
def get_runs_dir() -> Path:
    """Get the runs directory, respecting STAGEBUS_RUNS_DIR env var.

    This function evaluates the env var at call time, so it respects
    values loaded from .env via load_user_env().
    """
    return Path(os.environ.get("STAGEBUS_RUNS_DIR", str(USER_CONFIG_DIR / "runs")))


def load_user_env() -> None:
    """Load environment from ~/.config/stagebus/.env (existing vars win)."""
    load_dotenv(dotenv_path=USER_CONFIG_DIR / ".env")


def load_env(repo_path: Path | None = None) -> None:
    """Load environment from user config and optionally a repository.

    Args:
        repo_path: Optional repository path. If provided, loads
            <repo_path>/.env with override=True.
    """
    load_user_env()
    if repo_path is not None:
        load_dotenv(dotenv_path=repo_path / ".env", override=True)
