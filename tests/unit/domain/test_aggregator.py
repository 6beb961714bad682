"""Unit tests for verdict computation and report rendering."""

from __future__ import annotations

import pytest

from stagebus.core.errors import ConfigurationError
from stagebus.core.models import StageResult, StageStatus, Verdict
from stagebus.domain.aggregator import (
    Report,
    ReportEntry,
    aggregate,
    compute_verdict,
    format_duration,
    format_metrics,
    code_fence,
    render_report,
)
from stagebus.domain.result_store import ResultStore, StoreSnapshot

pytestmark = pytest.mark.unit


def _snapshot(*results: StageResult) -> StoreSnapshot:
    store = ResultStore()
    for result in results:
        store.insert(result)
    return store.snapshot()


def _passed(stage_id: str, duration_ms: int = 100, **metrics: float) -> StageResult:
    return StageResult(
        stage_id, StageStatus.PASSED, exit_code=0, duration_ms=duration_ms, metrics=metrics
    )


def _failed(stage_id: str, detail: str = "boom") -> StageResult:
    return StageResult(stage_id, StageStatus.FAILED, exit_code=1, error_detail=detail)


def _skipped(stage_id: str) -> StageResult:
    return StageResult(stage_id, StageStatus.SKIPPED)


class TestComputeVerdict:
    def test_all_required_passed(self) -> None:
        snapshot = _snapshot(_passed("lint"), _passed("unit-test"))
        assert compute_verdict(snapshot, ["lint", "unit-test"]) is Verdict.ALL_PASSED

    def test_required_failure(self) -> None:
        snapshot = _snapshot(_passed("lint"), _failed("unit-test"))
        assert compute_verdict(snapshot, ["lint", "unit-test"]) is Verdict.SOME_FAILED

    def test_missing_required_blocks(self) -> None:
        snapshot = _snapshot(_passed("lint"))
        assert compute_verdict(snapshot, ["lint", "deploy"]) is Verdict.BLOCKED

    def test_skipped_required_blocks(self) -> None:
        snapshot = _snapshot(_passed("lint"), _skipped("deploy"))
        assert compute_verdict(snapshot, ["lint", "deploy"]) is Verdict.BLOCKED

    def test_blocked_outranks_failure(self) -> None:
        snapshot = _snapshot(_failed("lint"))
        assert compute_verdict(snapshot, ["lint", "deploy"]) is Verdict.BLOCKED

    def test_optional_failure_ignored(self) -> None:
        snapshot = _snapshot(_passed("lint"), _failed("e2e"))
        assert compute_verdict(snapshot, ["lint"]) is Verdict.ALL_PASSED

    def test_no_required_stages(self) -> None:
        assert compute_verdict(_snapshot(_failed("e2e")), []) is Verdict.ALL_PASSED


class TestAggregate:
    def test_entries_order_required_then_optional(self) -> None:
        snapshot = _snapshot(
            _passed("install"), _passed("lint"), _failed("e2e"), _passed("unit-test")
        )
        _, report = aggregate(snapshot, ["unit-test", "lint"])

        assert [e.stage_id for e in report.entries] == ["unit-test", "lint", "install", "e2e"]
        assert [e.required for e in report.entries] == [True, True, False, False]

    def test_missing_required_gets_placeholder(self) -> None:
        verdict, report = aggregate(_snapshot(_passed("lint")), ["lint", "deploy"])

        assert verdict is Verdict.BLOCKED
        placeholder = report.entries[1]
        assert placeholder.stage_id == "deploy"
        assert placeholder.status is None
        assert placeholder.glyph == "⊘"
        assert report.blocked_stage_ids == ["deploy"]

    def test_failed_and_blocked_ids(self) -> None:
        snapshot = _snapshot(_failed("lint"), _skipped("deploy"), _failed("e2e"))
        _, report = aggregate(snapshot, ["lint", "deploy"])
        assert report.failed_stage_ids == ["lint", "e2e"]
        assert report.blocked_stage_ids == ["deploy"]

    @pytest.mark.parametrize(
        "required",
        [["lint", "lint"], ["lint", ""]],
    )
    def test_invalid_required_list(self, required: list[str]) -> None:
        with pytest.raises(ConfigurationError):
            aggregate(_snapshot(_passed("lint")), required)

    def test_same_inputs_render_same_text(self) -> None:
        snapshot = _snapshot(_passed("lint", lines_pct=91.5), _failed("unit-test"))
        first = aggregate(snapshot, ["lint", "unit-test"])
        second = aggregate(snapshot, ["lint", "unit-test"])
        assert first == second
        assert first[1].text == second[1].text

    def test_metrics_sorted_in_entry(self) -> None:
        snapshot = _snapshot(_passed("unit-test", lines_pct=90.0, branches_pct=70.0))
        _, report = aggregate(snapshot, ["unit-test"])
        assert report.entries[0].metrics == (("branches_pct", 70.0), ("lines_pct", 90.0))


class TestRenderReport:
    def test_all_passed_report(self) -> None:
        _, report = aggregate(
            _snapshot(_passed("lint", 850), _passed("unit-test", 12_300, lines_pct=91.2)),
            ["lint", "unit-test"],
        )
        text = render_report(report)

        assert text.startswith("### Pipeline result: ✓ all required stages passed\n")
        assert "| ✓ " in text
        assert "850ms" in text
        assert "12.3s" in text
        assert "lines_pct=91.2" in text
        assert "#### Failures" not in text
        assert text.endswith("\n")

    def test_failures_section(self) -> None:
        _, report = aggregate(
            _snapshot(_failed("unit-test", "AssertionError: 1 != 2")), ["unit-test"]
        )
        text = report.text

        assert "✗ some required stages failed" in text
        assert "#### Failures" in text
        assert "**unit-test**\n```\nAssertionError: 1 != 2\n```" in text

    def test_detail_containing_fences_stays_inside_its_block(self) -> None:
        detail = "Expected:\n```\nok\n```\nGot ````raw````"
        _, report = aggregate(_snapshot(_failed("lint", detail)), ["lint"])

        assert f"**lint**\n`````\n{detail}\n`````" in report.text

    @pytest.mark.parametrize(
        ("text", "expected"),
        [("", "```"), ("plain", "```"), ("a ` b ``", "```"), ("```", "````"), ("x ````` y", "``````")],
    )
    def test_code_fence(self, text: str, expected: str) -> None:
        assert code_fence(text) == expected

    def test_optional_and_not_run_rows(self) -> None:
        _, report = aggregate(_snapshot(_passed("e2e")), ["deploy"])
        text = report.text

        assert "⊘ blocked" in text
        assert "e2e (optional)" in text
        assert "not run" in text

    def test_empty_report(self) -> None:
        text = render_report(Report(verdict=Verdict.ALL_PASSED))
        assert "_No stages recorded._" in text

    def test_stage_ids_that_look_numeric_are_kept_verbatim(self) -> None:
        _, report = aggregate(_snapshot(_passed("007")), ["007"])
        assert "| 007 " in report.text


class TestReportSerialization:
    def test_report_dict_round_trip(self) -> None:
        _, report = aggregate(
            _snapshot(_passed("lint", lines_pct=80.0), _failed("unit-test")),
            ["lint", "unit-test", "deploy"],
        )
        assert Report.from_dict(report.to_dict()) == report

    def test_entry_to_dict(self) -> None:
        entry = ReportEntry(stage_id="deploy", required=True, status=None)
        assert entry.to_dict()["status"] is None

    def test_from_dict_with_unknown_verdict(self) -> None:
        with pytest.raises(ConfigurationError, match="Invalid report"):
            Report.from_dict({"verdict": "green", "entries": []})

    @pytest.mark.parametrize(
        ("data", "message"),
        [
            (["blocked"], "expected an object"),
            ({"verdict": "blocked", "entries": ["x"]}, "must be an object"),
            ({"verdict": "blocked", "entries": {"stage_id": "a"}}, "entries must be a list"),
            (
                {"verdict": "blocked", "entries": [{"stage_id": "a", "duration_ms": "300"}]},
                "duration_ms must be an integer",
            ),
            (
                {"verdict": "blocked", "entries": [{"stage_id": "a", "metrics": [1]}]},
                "metrics must be an object",
            ),
        ],
    )
    def test_from_dict_with_malformed_shapes(self, data: object, message: str) -> None:
        with pytest.raises(ConfigurationError, match=message):
            Report.from_dict(data)  # type: ignore[arg-type]


class TestFormatting:
    @pytest.mark.parametrize(
        ("duration_ms", "expected"),
        [(None, "-"), (0, "0ms"), (999, "999ms"), (1000, "1.0s"), (59_949, "59.9s"), (245_000, "4m05s")],
    )
    def test_format_duration(self, duration_ms: int | None, expected: str) -> None:
        assert format_duration(duration_ms) == expected

    def test_format_metrics(self) -> None:
        assert format_metrics((("branches_pct", 50.0), ("lines_pct", 91.25))) == (
            "branches_pct=50, lines_pct=91.25"
        )
