"""StageRunner against real processes.

Verifies that non-zero exits, hangs and missing executables all end up as
FAILED results in the store, and that timed-out stages leave no process
behind.
"""

from __future__ import annotations

import asyncio
import json
import sys
import time
from typing import TYPE_CHECKING

import pytest

from stagebus.core.models import CommandSpec, StageStatus
from stagebus.domain.result_store import ResultStore
from stagebus.domain.stage_runner import StageRunner
from stagebus.infra.command_runner import TIMEOUT_EXIT_CODE, CommandRunner

if TYPE_CHECKING:
    from pathlib import Path

pytestmark = pytest.mark.integration


@pytest.fixture
def runner(tmp_path: Path) -> StageRunner:
    return StageRunner(
        ResultStore(),
        command_runner=CommandRunner(cwd=tmp_path, kill_grace_seconds=0.5),
        cwd=tmp_path,
    )


class TestRealProcesses:
    def test_passing_command(self, runner: StageRunner) -> None:
        result = runner.run("echo", CommandSpec(argv=("echo", "ok")))
        assert result.status is StageStatus.PASSED
        assert result.exit_code == 0

    def test_failing_command_keeps_stderr(self, runner: StageRunner) -> None:
        result = runner.run(
            "lint",
            CommandSpec(argv=("sh -c 'echo \"src/app.py:1: E501\" >&2; exit 1'",), shell=True),
        )
        assert result.status is StageStatus.FAILED
        assert result.exit_code == 1
        assert result.error_detail == "src/app.py:1: E501"

    def test_missing_executable(self, runner: StageRunner) -> None:
        result = runner.run("deploy", CommandSpec(argv=("stagebus-no-such-binary", "--prod")))
        assert result.status is StageStatus.FAILED
        assert result.exit_code is None
        assert result.error_detail is not None
        assert "stagebus-no-such-binary" in result.error_detail
        assert runner.store.get("deploy") is result

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX-only test")
    def test_timeout_terminates_stage_and_children(
        self, runner: StageRunner, tmp_path: Path
    ) -> None:
        script = tmp_path / "hang.sh"
        script.write_text(
            "#!/bin/bash\n"
            '(sleep 1.5; echo leaked > "$1/leaked.txt") &\n'
            "sleep 30\n"
        )
        script.chmod(0o755)

        start = time.monotonic()
        result = runner.run(
            "integration", CommandSpec(argv=(str(script), str(tmp_path))), timeout=1
        )
        elapsed = time.monotonic() - start

        assert result.status is StageStatus.FAILED
        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert result.error_detail == "timeout after 1s"
        assert elapsed < 10
        assert 1000 <= result.duration_ms < 10_000
        time.sleep(1.0)
        assert not (tmp_path / "leaked.txt").exists()

    def test_cwd_and_env_reach_the_process(self, runner: StageRunner, tmp_path: Path) -> None:
        web = tmp_path / "web"
        web.mkdir()
        result = runner.run(
            "write",
            CommandSpec(
                argv=('echo "$STAGE_NAME" > marker.txt',),
                cwd=web,
                env={"STAGE_NAME": "write"},
                shell=True,
            ),
        )
        assert result.passed
        assert (web / "marker.txt").read_text() == "write\n"

    def test_coverage_written_by_the_command(self, runner: StageRunner, tmp_path: Path) -> None:
        summary = json.dumps({"total": {"lines": {"pct": 83.3}, "branches": {"pct": 70}}})
        result = runner.run(
            "unit-test",
            CommandSpec(
                argv=(f"mkdir -p coverage && echo '{summary}' > coverage/summary.json",),
                shell=True,
            ),
            coverage_summary="coverage/summary.json",
            min_coverage=80,
        )
        assert result.passed
        assert dict(result.metrics) == {"lines_pct": 83.3, "branches_pct": 70.0}


class TestParallelStages:
    @pytest.mark.asyncio
    async def test_independent_stages_run_concurrently(self, runner: StageRunner) -> None:
        start = time.monotonic()
        results = await asyncio.gather(
            runner.run_async("a", CommandSpec(argv=("sleep", "0.5"))),
            runner.run_async("b", CommandSpec(argv=("sleep", "0.5"))),
            runner.run_async("c", CommandSpec(argv=("sh", "-c", "exit 4"))),
        )
        elapsed = time.monotonic() - start

        assert [r.status for r in results] == [
            StageStatus.PASSED,
            StageStatus.PASSED,
            StageStatus.FAILED,
        ]
        assert sorted(runner.store.stage_ids()) == ["a", "b", "c"]
        assert elapsed < 1.4

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_runs_once(self, runner: StageRunner) -> None:
        outcomes = await asyncio.gather(
            runner.run_async("dup", CommandSpec(argv=("sleep", "0.2"))),
            runner.run_async("dup", CommandSpec(argv=("sleep", "0.2"))),
            return_exceptions=True,
        )
        errors = [o for o in outcomes if isinstance(o, Exception)]
        assert len(errors) == 1
        assert len(runner.store) == 1

    @pytest.mark.asyncio
    async def test_async_timeout(self, runner: StageRunner) -> None:
        result = await runner.run_async("slow", CommandSpec(argv=("sleep", "30")), timeout=0.3)
        assert result.status is StageStatus.FAILED
        assert result.exit_code == TIMEOUT_EXIT_CODE
