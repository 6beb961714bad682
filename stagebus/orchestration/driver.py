"""PipelineDriver: run a pipeline definition end to end.

Order of operations for one run:
1. Build the notification sinks (fails fast on sink misconfiguration).
2. Run every stage in declaration order against a fresh ResultStore. A stage
   whose dependencies did not all pass is recorded as SKIPPED.
3. Take a snapshot of the store once all stages are done; aggregation only
   ever sees that snapshot.
4. Aggregate, notify, write GitHub step outputs, persist the run record.

Stage failures never stop the run; every stage gets a result so the report
shows the whole pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from stagebus.core.errors import ConfigurationError
from stagebus.domain.aggregator import aggregate
from stagebus.domain.notifier import Notifier
from stagebus.domain.result_store import ResultStore
from stagebus.domain.stage_runner import StageRunner
from stagebus.infra.artifacts import LocalArtifactStore
from stagebus.infra.command_runner import CommandRunner
from stagebus.infra.config import StageBusConfig
from stagebus.infra.github_outputs import (
    format_outputs,
    format_report_outputs,
    write_outputs,
)
from stagebus.infra.run_record import RunRecord, new_run_id
from stagebus.infra.sinks import IssueTrackerSink, ReviewCommentSink, StepSummarySink

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from stagebus.core.models import SinkResult, StageResult, Verdict
    from stagebus.core.protocols import CommandRunnerPort, NotificationSink
    from stagebus.domain.aggregator import Report
    from stagebus.domain.result_store import StoreSnapshot
    from stagebus.infra.pipeline_config import PipelineConfig, StageConfig

logger = logging.getLogger(__name__)


@dataclass
class PipelineOutcome:
    """What a pipeline run produced."""

    run_id: str
    verdict: Verdict
    report: Report
    snapshot: StoreSnapshot
    sink_results: list[SinkResult] = field(default_factory=list)
    record_path: Path | None = None


class PipelineDriver:
    """Runs one PipelineConfig per call to run()."""

    def __init__(
        self,
        pipeline: PipelineConfig,
        settings: StageBusConfig | None = None,
        command_runner: CommandRunnerPort | None = None,
        gh_runner: CommandRunnerPort | None = None,
        on_result: Callable[[StageResult], None] | None = None,
        pipeline_file: str | None = None,
    ):
        """Initialize PipelineDriver.

        Args:
            pipeline: Parsed pipeline definition.
            settings: Environment-derived settings. Defaults to StageBusConfig().
            command_runner: Executes stage commands.
            gh_runner: Executes gh for the PR comment and issue sinks.
            on_result: Called with each StageResult as soon as it is recorded.
            pipeline_file: Source file name, stored in the run record.
        """
        self.pipeline = pipeline
        self.settings = settings or StageBusConfig()
        self._command_runner = command_runner or CommandRunner(
            cwd=pipeline.base_dir,
            kill_grace_seconds=self.settings.kill_grace_seconds,
        )
        self._gh_runner = gh_runner
        self._on_result = on_result or (lambda result: None)
        self._pipeline_file = pipeline_file

    def build_sinks(self) -> list[NotificationSink]:
        """Create the sinks configured under `notify`.

        Raises:
            ConfigurationError: If a PR comment is configured without a
                repository (neither in the file nor GITHUB_REPOSITORY).
        """
        notify = self.pipeline.notify
        sinks: list[NotificationSink] = []
        if notify.step_summary:
            if self.settings.step_summary is None:
                logger.warning("step_summary requested but GITHUB_STEP_SUMMARY is not set")
            else:
                sinks.append(StepSummarySink(self.settings.step_summary))
        if notify.pr_comment is not None:
            repo = notify.pr_comment.repo or self.settings.github_repository
            if not repo:
                raise ConfigurationError(
                    "notify.pr_comment needs 'repo' or GITHUB_REPOSITORY"
                )
            sinks.append(
                ReviewCommentSink(
                    repo=repo,
                    pr_number=notify.pr_comment.pr_number,
                    comment_id=notify.pr_comment.comment_id,
                    runner=self._gh_runner,
                )
            )
        if notify.issue is not None:
            sinks.append(
                IssueTrackerSink(
                    title=notify.issue.title,
                    labels=notify.issue.labels,
                    assignees=notify.issue.assignees,
                    repo=notify.issue.repo or self.settings.github_repository,
                    only_on_failure=notify.issue.only_on_failure,
                    runner=self._gh_runner,
                )
            )
        return sinks

    def _resolve_required(self, required: Sequence[str] | None) -> list[str]:
        if required is None:
            return list(self.pipeline.required)
        declared = {s.stage_id for s in self.pipeline.stages}
        unknown = [stage_id for stage_id in required if stage_id not in declared]
        if unknown:
            raise ConfigurationError(
                [f"required stage '{stage_id}' is not declared in stages" for stage_id in unknown]
            )
        return list(required)

    def _run_stage(self, runner: StageRunner, stage: StageConfig) -> StageResult:
        blocked_by = [
            dep
            for dep in stage.depends_on
            if (dep_result := runner.store.get(dep)) is None or not dep_result.passed
        ]
        if blocked_by:
            logger.info(
                "Skipping %s: dependencies did not pass: %s",
                stage.stage_id,
                ", ".join(blocked_by),
            )
            return runner.skip(stage.stage_id)
        if stage.outcome is not None:
            return runner.record_outcome(stage.stage_id, stage.outcome)
        assert stage.command is not None  # guaranteed by the pipeline loader
        return runner.run(
            stage.stage_id,
            stage.command,
            stage.timeout,
            coverage_summary=stage.coverage_summary,
            min_coverage=stage.min_coverage,
        )

    def run(
        self,
        required: Sequence[str] | None = None,
        *,
        notify: bool = True,
        save: bool = True,
        run_id: str | None = None,
    ) -> PipelineOutcome:
        """Run the pipeline.

        Args:
            required: Override the pipeline's required stages.
            notify: Deliver the report to the configured sinks.
            save: Persist a run record under settings.runs_dir.
            run_id: Id for this run; generated when omitted.

        Returns:
            PipelineOutcome with the verdict and report.

        Raises:
            ConfigurationError: For pipeline defects (unknown required stage,
                sink misconfiguration). Stage failures are never raised.
        """
        required_ids = self._resolve_required(required)
        sinks = self.build_sinks() if notify else []

        run_id = run_id or new_run_id()
        started_at = datetime.now(UTC)
        store = ResultStore()
        artifacts = self.pipeline.artifacts
        stage_runner = StageRunner(
            store,
            command_runner=self._command_runner,
            artifact_store=LocalArtifactStore(artifacts.dir) if artifacts else None,
            retention_days=artifacts.retention_days if artifacts else 7,
            cwd=self.pipeline.base_dir,
        )

        logger.info("Run %s: %d stage(s)", run_id, len(self.pipeline.stages))
        for stage in self.pipeline.stages:
            self._on_result(self._run_stage(stage_runner, stage))

        # All stages have finished; aggregation reads only this snapshot.
        snapshot = store.snapshot()
        verdict, report = aggregate(snapshot, required_ids)
        logger.info("Run %s verdict: %s", run_id, verdict.value)

        sink_results = Notifier().notify(report, sinks)
        self._write_github_outputs(snapshot, report)

        record = RunRecord(
            run_id=run_id,
            started_at=started_at,
            finished_at=datetime.now(UTC),
            verdict=verdict,
            required=required_ids,
            results=list(snapshot.values()),
            report=report,
            sink_results=sink_results,
            pipeline_file=self._pipeline_file,
        )
        record_path: Path | None = None
        if save:
            try:
                record_path = record.save(self.settings.runs_dir)
            except OSError as e:
                logger.warning("Could not save run record: %s", e)

        return PipelineOutcome(
            run_id=run_id,
            verdict=verdict,
            report=report,
            snapshot=snapshot,
            sink_results=sink_results,
            record_path=record_path,
        )

    def _write_github_outputs(self, snapshot: StoreSnapshot, report: Report) -> None:
        path = self.settings.github_output
        if not self.pipeline.github_outputs or path is None:
            return
        pairs: list[tuple[str, str]] = []
        for result in snapshot.values():
            pairs.extend(format_outputs(result))
        pairs.extend(format_report_outputs(report))
        try:
            write_outputs(path, pairs)
        except OSError as e:
            logger.warning("Could not write step outputs to %s: %s", path, e)
