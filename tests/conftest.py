"""Pytest configuration for stagebus tests."""

import os

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Configure test environment before collection.

    Sets up environment variables to:
    - Redirect run records to /tmp to avoid polluting ~/.config/stagebus/runs/
    - Skip the per-run debug log file
    - Drop GitHub Actions variables so tests never write to a real job's
      output or summary files
    """
    os.environ["STAGEBUS_RUNS_DIR"] = "/tmp/stagebus-test-runs"
    os.environ["STAGEBUS_DISABLE_DEBUG_LOG"] = "1"
    for name in ("GITHUB_OUTPUT", "GITHUB_STEP_SUMMARY", "GITHUB_REPOSITORY"):
        os.environ.pop(name, None)


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Default unmarked tests to unit category."""
    for item in items:
        if any(marker in item.keywords for marker in ("unit", "integration", "e2e")):
            continue
        item.add_marker(pytest.mark.unit)
