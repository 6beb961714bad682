"""Aggregation of stage results into a pipeline verdict and report.

The verdict only considers the required stages:
- a required stage that never ran, or was SKIPPED, blocks the pipeline
- a required stage that FAILED makes the verdict SOME_FAILED
- otherwise ALL_PASSED
The most severe applicable verdict wins (BLOCKED > SOME_FAILED > ALL_PASSED).

Optional stages show up in the report but never change the verdict. The
report is a pure function of (snapshot, required ids), so the same inputs
always render the same text.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from tabulate import tabulate

from stagebus.core.errors import ConfigurationError
from stagebus.core.models import StageStatus, Verdict

if TYPE_CHECKING:
    from collections.abc import Sequence

    from stagebus.core.models import StageResult


STATUS_GLYPHS: dict[StageStatus | None, str] = {
    StageStatus.PASSED: "✓",
    StageStatus.FAILED: "✗",
    StageStatus.SKIPPED: "○",
    None: "⊘",  # required stage that never ran
}

VERDICT_LABELS: dict[Verdict, str] = {
    Verdict.ALL_PASSED: "✓ all required stages passed",
    Verdict.SOME_FAILED: "✗ some required stages failed",
    Verdict.BLOCKED: "⊘ blocked: required stages did not run",
}

_NOT_RUN = "not run"


@dataclass(frozen=True)
class ReportEntry:
    """One row of the report.

    Attributes:
        stage_id: Stage the row describes.
        required: Whether the stage counts toward the verdict.
        status: Stage status, or None for a required stage with no result.
        duration_ms: Stage duration, None when the stage has no result.
        metrics: (name, value) pairs sorted by name.
        error_detail: Failure reason for FAILED stages.
        artifact_refs: Artifacts the stage produced.
    """

    stage_id: str
    required: bool
    status: StageStatus | None
    duration_ms: int | None = None
    metrics: tuple[tuple[str, float], ...] = ()
    error_detail: str | None = None
    artifact_refs: tuple[str, ...] = ()

    @classmethod
    def from_result(cls, result: StageResult, required: bool) -> ReportEntry:
        return cls(
            stage_id=result.stage_id,
            required=required,
            status=result.status,
            duration_ms=result.duration_ms,
            metrics=tuple(sorted(result.metrics.items())),
            error_detail=result.error_detail,
            artifact_refs=result.artifact_refs,
        )

    @property
    def glyph(self) -> str:
        return STATUS_GLYPHS[self.status]

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage_id": self.stage_id,
            "required": self.required,
            "status": self.status.value if self.status is not None else None,
            "duration_ms": self.duration_ms,
            "metrics": dict(self.metrics),
            "error_detail": self.error_detail,
            "artifact_refs": list(self.artifact_refs),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ReportEntry:
        """Rebuild a ReportEntry from to_dict() output.

        Raises:
            ConfigurationError: If an entry or one of its fields has the wrong shape.
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError(
                f"Report entry must be an object, got {type(data).__name__}"
            )
        status = data.get("status")
        duration_ms = data.get("duration_ms")
        metrics = data.get("metrics") or {}
        if duration_ms is not None and (
            isinstance(duration_ms, bool) or not isinstance(duration_ms, int)
        ):
            raise ConfigurationError(
                f"Report entry duration_ms must be an integer, got {duration_ms!r}"
            )
        if not isinstance(metrics, Mapping):
            raise ConfigurationError("Report entry metrics must be an object")
        return cls(
            stage_id=str(data["stage_id"]),
            required=bool(data.get("required", False)),
            status=StageStatus(status) if status is not None else None,
            duration_ms=duration_ms,
            metrics=tuple(sorted((k, float(v)) for k, v in metrics.items())),
            error_detail=data.get("error_detail"),
            artifact_refs=tuple(data.get("artifact_refs") or ()),
        )


@dataclass(frozen=True)
class Report:
    """Rendered pipeline report.

    Attributes:
        verdict: The pipeline verdict.
        entries: Required stages in caller order, then optional stages in
            insertion order.
    """

    verdict: Verdict
    entries: tuple[ReportEntry, ...] = field(default_factory=tuple)

    @property
    def text(self) -> str:
        return render_report(self)

    @property
    def failed_stage_ids(self) -> list[str]:
        return [e.stage_id for e in self.entries if e.status is StageStatus.FAILED]

    @property
    def blocked_stage_ids(self) -> list[str]:
        return [
            e.stage_id
            for e in self.entries
            if e.required and e.status in (None, StageStatus.SKIPPED)
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "entries": [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Report:
        """Rebuild a Report from to_dict() output.

        Raises:
            ConfigurationError: If the data is malformed.
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError(
                f"Invalid report data: expected an object, got {type(data).__name__}"
            )
        entries = data.get("entries") or []
        if not isinstance(entries, list):
            raise ConfigurationError("Invalid report data: entries must be a list")
        try:
            return cls(
                verdict=Verdict(data["verdict"]),
                entries=tuple(ReportEntry.from_dict(e) for e in entries),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid report data: {e}") from e


def _check_required(required_stage_ids: Sequence[str]) -> None:
    errors: list[str] = []
    seen: set[str] = set()
    for stage_id in required_stage_ids:
        if not stage_id:
            errors.append("required stage ids must be non-empty")
        elif stage_id in seen:
            errors.append(f"required stage {stage_id!r} listed more than once")
        seen.add(stage_id)
    if errors:
        raise ConfigurationError(errors)


def compute_verdict(
    snapshot: Mapping[str, StageResult], required_stage_ids: Sequence[str]
) -> Verdict:
    """Compute the pipeline verdict from the required stages."""
    contributions: list[Verdict] = []
    for stage_id in required_stage_ids:
        result = snapshot.get(stage_id)
        if result is None or result.status is StageStatus.SKIPPED:
            contributions.append(Verdict.BLOCKED)
        elif result.status is StageStatus.FAILED:
            contributions.append(Verdict.SOME_FAILED)
        else:
            contributions.append(Verdict.ALL_PASSED)
    return Verdict.most_severe(contributions)


def aggregate(
    snapshot: Mapping[str, StageResult], required_stage_ids: Sequence[str]
) -> tuple[Verdict, Report]:
    """Combine a ResultStore snapshot into a verdict and report.

    Args:
        snapshot: Read-only snapshot of the run's ResultStore. No stage may
            still be writing to the store.
        required_stage_ids: Stages that decide the verdict, in report order.

    Returns:
        (verdict, report).

    Raises:
        ConfigurationError: If required_stage_ids has blanks or duplicates.
    """
    _check_required(required_stage_ids)
    verdict = compute_verdict(snapshot, required_stage_ids)

    required = set(required_stage_ids)
    entries: list[ReportEntry] = []
    for stage_id in required_stage_ids:
        result = snapshot.get(stage_id)
        if result is None:
            entries.append(ReportEntry(stage_id=stage_id, required=True, status=None))
        else:
            entries.append(ReportEntry.from_result(result, required=True))
    for stage_id, result in snapshot.items():
        if stage_id not in required:
            entries.append(ReportEntry.from_result(result, required=False))

    return verdict, Report(verdict=verdict, entries=tuple(entries))


def format_duration(duration_ms: int | None) -> str:
    """Human-readable duration: 850ms, 12.3s, 4m05s."""
    if duration_ms is None:
        return "-"
    if duration_ms < 1000:
        return f"{duration_ms}ms"
    seconds = duration_ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m{secs:02d}s"


def format_metrics(metrics: Sequence[tuple[str, float]]) -> str:
    return ", ".join(f"{name}={value:g}" for name, value in metrics)


def code_fence(text: str) -> str:
    """Backtick fence longer than any backtick run inside text."""
    longest = max((len(run) for run in re.findall(r"`+", text)), default=0)
    return "`" * max(3, longest + 1)


def render_report(report: Report) -> str:
    """Render a report as GitHub-flavoured markdown."""
    rows = []
    for entry in report.entries:
        status = entry.status.value if entry.status is not None else _NOT_RUN
        stage = entry.stage_id if entry.required else f"{entry.stage_id} (optional)"
        rows.append(
            [
                entry.glyph,
                stage,
                status,
                format_duration(entry.duration_ms),
                format_metrics(entry.metrics),
            ]
        )

    lines = [f"### Pipeline result: {VERDICT_LABELS[report.verdict]}", ""]
    if rows:
        lines.append(
            tabulate(
                rows,
                headers=["", "Stage", "Status", "Duration", "Metrics"],
                tablefmt="github",
                disable_numparse=True,
            )
        )
    else:
        lines.append("_No stages recorded._")

    failures = [e for e in report.entries if e.status is StageStatus.FAILED]
    if failures:
        lines.extend(["", "#### Failures"])
        for entry in failures:
            detail = entry.error_detail or ""
            fence = code_fence(detail)
            lines.extend(["", f"**{entry.stage_id}**", fence, detail, fence])
    return "\n".join(lines) + "\n"
