"""StageRunner: execute one pipeline stage and record its StageResult.

A stage runs one external command. Whatever the command does (exit non-zero,
hang past its timeout, fail to start) the outcome is recorded as a
StageResult in the run's ResultStore; nothing is raised to the caller.
Only defects in the pipeline definition itself (empty or duplicate stage id,
malformed command, invalid timeout) raise ConfigurationError, and they do so
before anything is executed.
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import TYPE_CHECKING

from stagebus.core.errors import ConfigurationError
from stagebus.core.models import StageResult, StageStatus
from stagebus.domain.coverage import check_coverage_threshold, extract_from_file
from stagebus.infra.command_runner import CommandRunner

if TYPE_CHECKING:
    from stagebus.core.models import CommandSpec
    from stagebus.core.protocols import (
        ArtifactStorePort,
        CommandResultProtocol,
        CommandRunnerPort,
    )
    from stagebus.domain.result_store import ResultStore

logger = logging.getLogger(__name__)

# Upper bound on error_detail so a noisy tool cannot bloat the result
MAX_ERROR_DETAIL_CHARS = 4096
_MAX_ERROR_DETAIL_LINES = 200

DEFAULT_RETENTION_DAYS = 7


class StageRunner:
    """Runs stages against one ResultStore.

    Usage:
        store = ResultStore()
        runner = StageRunner(store)
        result = runner.run("unit-test", CommandSpec(argv=("pytest",)), timeout=600)
    """

    def __init__(
        self,
        store: ResultStore,
        command_runner: CommandRunnerPort | None = None,
        artifact_store: ArtifactStorePort | None = None,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        cwd: Path | None = None,
    ):
        """Initialize StageRunner.

        Args:
            store: ResultStore of the current run.
            command_runner: Executes commands. Defaults to a CommandRunner
                without a default timeout.
            artifact_store: Where declared artifacts are stored, if anywhere.
            retention_days: Retention period handed to the artifact store.
            cwd: Base directory for commands, coverage reports and artifacts
                given as relative paths.
        """
        self.store = store
        self.cwd = cwd
        self.artifact_store = artifact_store
        self.retention_days = retention_days
        self._command_runner = command_runner or CommandRunner(cwd=cwd)

    # --- Preconditions ---

    def _check(
        self,
        stage_id: str,
        command: CommandSpec,
        timeout: float | None,
        min_coverage: float | None,
    ) -> None:
        errors: list[str] = []
        if not stage_id or not stage_id.strip():
            errors.append("stage_id must be non-empty")
        if timeout is not None and timeout <= 0:
            errors.append(f"{stage_id}: timeout must be positive, got {timeout}")
        if min_coverage is not None and not 0 <= min_coverage <= 100:
            errors.append(
                f"{stage_id}: min_coverage must be within 0-100, got {min_coverage}"
            )
        try:
            command.validate()
        except ConfigurationError as e:
            errors.extend(f"{stage_id}: {err}" for err in e.errors)
        if errors:
            raise ConfigurationError(errors)
        self.store.reserve(stage_id)

    def _resolve(self, path: str | Path, command: CommandSpec) -> Path:
        p = Path(path)
        if p.is_absolute():
            return p
        base = command.cwd or self.cwd
        return base / p if base is not None else p

    # --- Execution ---

    def run(
        self,
        stage_id: str,
        command: CommandSpec,
        timeout: float | None = None,
        *,
        coverage_summary: str | Path | None = None,
        min_coverage: float | None = None,
    ) -> StageResult:
        """Run a stage's command and record the result.

        Args:
            stage_id: Unique id of the stage within this run.
            command: The command descriptor.
            timeout: Seconds before the command is terminated; None for no limit.
            coverage_summary: Coverage report (JSON summary or Cobertura XML)
                to attach as metrics once the command finishes.
            min_coverage: Fail the stage when lines_pct is below this.

        Returns:
            The recorded StageResult.

        Raises:
            ConfigurationError: If the stage id is empty or already used,
                or the command/timeout is malformed.
        """
        self._check(stage_id, command, timeout, min_coverage)
        try:
            logger.info("Running stage %s: %s", stage_id, command.display)
            start = time.monotonic()
            try:
                outcome = self._command_runner.run(
                    command.runner_command(),
                    env=command.env,
                    timeout=timeout,
                    shell=command.shell,
                    cwd=command.cwd,
                )
            except OSError as e:
                outcome = e
            duration_ms = _elapsed_ms(start)
            result = self._build_result(
                stage_id,
                command,
                outcome,
                duration_ms,
                timeout,
                coverage_summary,
                min_coverage,
            )
        except BaseException:
            self.store.release(stage_id)
            raise
        self.store.insert(result, reserved=True)
        return result

    async def run_async(
        self,
        stage_id: str,
        command: CommandSpec,
        timeout: float | None = None,
        *,
        coverage_summary: str | Path | None = None,
        min_coverage: float | None = None,
    ) -> StageResult:
        """Async counterpart of run() for running independent stages in parallel."""
        self._check(stage_id, command, timeout, min_coverage)
        try:
            logger.info("Running stage %s: %s", stage_id, command.display)
            start = time.monotonic()
            try:
                outcome = await self._command_runner.run_async(
                    command.runner_command(),
                    env=command.env,
                    timeout=timeout,
                    shell=command.shell,
                    cwd=command.cwd,
                )
            except OSError as e:
                outcome = e
            duration_ms = _elapsed_ms(start)
            result = self._build_result(
                stage_id,
                command,
                outcome,
                duration_ms,
                timeout,
                coverage_summary,
                min_coverage,
            )
        except BaseException:
            self.store.release(stage_id)
            raise
        self.store.insert(result, reserved=True)
        return result

    def skip(self, stage_id: str) -> StageResult:
        """Record a stage as SKIPPED without running anything."""
        result = StageResult(stage_id=stage_id, status=StageStatus.SKIPPED)
        self.store.insert(result)
        logger.info("Skipped stage %s", stage_id)
        return result

    def fail(self, stage_id: str, error_detail: str) -> StageResult:
        """Record a stage as FAILED without running a process.

        Used for failures detected before execution, such as a missing
        required input.
        """
        result = StageResult(
            stage_id=stage_id,
            status=StageStatus.FAILED,
            error_detail=_bound(error_detail) or "failed",
        )
        self.store.insert(result)
        logger.warning("Stage %s failed: %s", stage_id, result.error_detail)
        return result

    def record_outcome(self, stage_id: str, status: StageStatus) -> StageResult:
        """Record the outcome of a stage that ran outside stagebus.

        Used for steps whose result arrives as text (a workflow step outcome
        parsed with StageStatus.parse).
        """
        if status is StageStatus.SKIPPED:
            return self.skip(stage_id)
        if status is StageStatus.FAILED:
            return self.fail(stage_id, "step reported failure")
        result = StageResult(stage_id=stage_id, status=StageStatus.PASSED)
        self.store.insert(result)
        return result

    # --- Result construction ---

    def _build_result(
        self,
        stage_id: str,
        command: CommandSpec,
        outcome: CommandResultProtocol | OSError,
        duration_ms: int,
        timeout: float | None,
        coverage_summary: str | Path | None,
        min_coverage: float | None,
    ) -> StageResult:
        artifact_refs = self._collect_artifacts(stage_id, command)

        if isinstance(outcome, OSError):
            detail = f"failed to start {command.argv[0]!r}: {outcome}"
            logger.warning("Stage %s: %s", stage_id, detail)
            return StageResult(
                stage_id=stage_id,
                status=StageStatus.FAILED,
                duration_ms=duration_ms,
                artifact_refs=artifact_refs,
                error_detail=_bound(detail),
            )

        metrics: dict[str, float] = {}
        if coverage_summary is not None:
            metrics = extract_from_file(self._resolve(coverage_summary, command))

        if outcome.timed_out:
            logger.warning("Stage %s timed out after %ss", stage_id, timeout)
            return StageResult(
                stage_id=stage_id,
                status=StageStatus.FAILED,
                exit_code=outcome.returncode,
                duration_ms=duration_ms,
                metrics=metrics,
                artifact_refs=artifact_refs,
                error_detail=f"timeout after {timeout:g}s"
                if timeout is not None
                else "timeout",
            )

        if outcome.returncode != 0:
            detail = (
                outcome.stderr_tail(
                    max_chars=MAX_ERROR_DETAIL_CHARS,
                    max_lines=_MAX_ERROR_DETAIL_LINES,
                ).strip()
                or outcome.stdout_tail(
                    max_chars=MAX_ERROR_DETAIL_CHARS,
                    max_lines=_MAX_ERROR_DETAIL_LINES,
                ).strip()
                or f"exit code {outcome.returncode}"
            )
            logger.warning("Stage %s failed with exit code %s", stage_id, outcome.returncode)
            return StageResult(
                stage_id=stage_id,
                status=StageStatus.FAILED,
                exit_code=outcome.returncode,
                duration_ms=duration_ms,
                metrics=metrics,
                artifact_refs=artifact_refs,
                error_detail=detail,
            )

        coverage_failure = check_coverage_threshold(metrics, min_coverage)
        if coverage_failure:
            logger.warning("Stage %s: %s", stage_id, coverage_failure)
            return StageResult(
                stage_id=stage_id,
                status=StageStatus.FAILED,
                exit_code=0,
                duration_ms=duration_ms,
                metrics=metrics,
                artifact_refs=artifact_refs,
                error_detail=coverage_failure,
            )

        logger.info("Stage %s passed in %dms", stage_id, duration_ms)
        return StageResult(
            stage_id=stage_id,
            status=StageStatus.PASSED,
            exit_code=0,
            duration_ms=duration_ms,
            metrics=metrics,
            artifact_refs=artifact_refs,
        )

    def _collect_artifacts(self, stage_id: str, command: CommandSpec) -> tuple[str, ...]:
        """Return declared artifacts that exist and hand them to the store."""
        refs: list[str] = []
        paths: list[Path] = []
        for declared in command.artifacts:
            path = self._resolve(declared, command)
            if path.exists():
                refs.append(declared)
                paths.append(path)
            else:
                logger.info("Stage %s: artifact not produced: %s", stage_id, declared)

        if paths and self.artifact_store is not None:
            try:
                self.artifact_store.store(
                    artifact_name(stage_id), paths, self.retention_days
                )
            except OSError as e:
                logger.warning("Stage %s: storing artifacts failed: %s", stage_id, e)
        return tuple(refs)


def artifact_name(stage_id: str) -> str:
    """Filesystem-safe artifact set name for a stage id ("deploy:prod" -> "deploy-prod")."""
    return re.sub(r"[^A-Za-z0-9._-]+", "-", stage_id).strip("-") or "stage"


def _elapsed_ms(start: float) -> int:
    return max(0, round((time.monotonic() - start) * 1000))


def _bound(text: str) -> str:
    text = text.strip()
    if len(text) > MAX_ERROR_DETAIL_CHARS:
        return text[-MAX_ERROR_DETAIL_CHARS:]
    return text
