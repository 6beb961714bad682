"""Unit tests for the notification sinks, with gh replaced by FakeCommandRunner."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from stagebus.core.errors import SinkDeliveryError
from stagebus.core.models import StageResult, StageStatus
from stagebus.domain.aggregator import Report, aggregate
from stagebus.domain.result_store import ResultStore
from stagebus.infra.sinks import (
    IssueTrackerSink,
    ReviewCommentSink,
    StepSummarySink,
    issue_number_from_url,
)
from tests.fakes import FakeCommandRunner

if TYPE_CHECKING:
    from pathlib import Path

pytestmark = pytest.mark.unit


def _report(status: StageStatus) -> Report:
    store = ResultStore()
    if status is StageStatus.FAILED:
        store.insert(StageResult("lint", status, exit_code=1, error_detail="E501"))
    else:
        store.insert(StageResult("lint", status, exit_code=0))
    return aggregate(store.snapshot(), ["lint"])[1]


@pytest.fixture
def failed_report() -> Report:
    return _report(StageStatus.FAILED)


@pytest.fixture
def passed_report() -> Report:
    return _report(StageStatus.PASSED)


class TestReviewCommentSink:
    def test_creates_comment(self, failed_report: Report) -> None:
        gh = FakeCommandRunner().add(
            "gh", stdout=json.dumps({"id": 987, "html_url": "https://github.com/o/r/pull/5#c"})
        )
        sink = ReviewCommentSink(repo="o/r", pr_number=5, runner=gh)

        locator = sink.deliver(failed_report)

        assert locator == "987"
        assert sink.comment_id == 987
        cmd = gh.commands[0]
        assert cmd[:3] == ["gh", "api", "repos/o/r/issues/5/comments"]
        assert cmd[-1] == f"body={failed_report.text}"

    def test_updates_existing_comment(self, failed_report: Report) -> None:
        gh = FakeCommandRunner().add("gh", stdout='{"id": 42}')
        sink = ReviewCommentSink(repo="o/r", pr_number=5, comment_id=42, runner=gh)

        assert sink.deliver(failed_report) == "42"
        assert gh.commands[0][:5] == ["gh", "api", "-X", "PATCH", "repos/o/r/issues/comments/42"]

    def test_second_delivery_updates_created_comment(self, failed_report: Report) -> None:
        gh = FakeCommandRunner().add("gh", stdout='{"id": 7}')
        sink = ReviewCommentSink(repo="o/r", pr_number=5, runner=gh)

        sink.deliver(failed_report)
        sink.deliver(failed_report)

        assert "PATCH" not in gh.commands[0]
        assert "repos/o/r/issues/comments/7" in gh.commands[1]

    def test_gh_failure_raises(self, failed_report: Report) -> None:
        gh = FakeCommandRunner().add("gh", returncode=1, stderr="HTTP 404: Not Found")
        sink = ReviewCommentSink(repo="o/r", pr_number=5, runner=gh)

        with pytest.raises(SinkDeliveryError, match="HTTP 404") as exc_info:
            sink.deliver(failed_report)
        assert exc_info.value.sink == "pr-comment"

    def test_gh_timeout_raises(self, failed_report: Report) -> None:
        gh = FakeCommandRunner().add("gh", timed_out=True)
        with pytest.raises(SinkDeliveryError, match="timed out"):
            ReviewCommentSink(repo="o/r", pr_number=5, runner=gh).deliver(failed_report)

    def test_unexpected_response_raises(self, failed_report: Report) -> None:
        gh = FakeCommandRunner().add("gh", stdout="not json")
        with pytest.raises(SinkDeliveryError, match="unexpected gh api response"):
            ReviewCommentSink(repo="o/r", pr_number=5, runner=gh).deliver(failed_report)


class TestIssueTrackerSink:
    def test_creates_issue(self, failed_report: Report) -> None:
        gh = FakeCommandRunner().add(
            "gh", stdout="Creating issue in o/r\n\nhttps://github.com/o/r/issues/31\n"
        )
        sink = IssueTrackerSink(
            title="Pipeline failed",
            labels=["ci", "flaky"],
            assignees=["octocat"],
            repo="o/r",
            runner=gh,
        )

        url = sink.deliver(failed_report)

        assert url == "https://github.com/o/r/issues/31"
        assert issue_number_from_url(url) == 31
        assert gh.commands[0] == [
            "gh",
            "issue",
            "create",
            "--title",
            "Pipeline failed",
            "--body",
            failed_report.text,
            "--label",
            "ci",
            "--label",
            "flaky",
            "--assignee",
            "octocat",
            "--repo",
            "o/r",
        ]

    def test_passing_pipeline_opens_nothing(self, passed_report: Report) -> None:
        gh = FakeCommandRunner()
        sink = IssueTrackerSink(title="Pipeline failed", runner=gh)

        assert sink.deliver(passed_report) is None
        assert gh.calls == []

    def test_always_mode_opens_for_passing_pipeline(self, passed_report: Report) -> None:
        gh = FakeCommandRunner().add("gh", stdout="https://github.com/o/r/issues/2")
        sink = IssueTrackerSink(title="Nightly", only_on_failure=False, runner=gh)
        assert sink.deliver(passed_report) == "https://github.com/o/r/issues/2"

    def test_gh_failure_raises(self, failed_report: Report) -> None:
        gh = FakeCommandRunner().add("gh", returncode=4, stderr="gh auth login required")
        with pytest.raises(SinkDeliveryError, match="auth login"):
            IssueTrackerSink(title="x", runner=gh).deliver(failed_report)

    def test_output_without_url_raises(self, failed_report: Report) -> None:
        gh = FakeCommandRunner().add("gh", stdout="done")
        with pytest.raises(SinkDeliveryError, match="unexpected gh output"):
            IssueTrackerSink(title="x", runner=gh).deliver(failed_report)

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://github.com/o/r/issues/42", 42),
            ("https://github.com/o/r/issues/42/", 42),
            ("https://github.com/o/r/issues", None),
        ],
    )
    def test_issue_number_from_url(self, url: str, expected: int | None) -> None:
        assert issue_number_from_url(url) == expected


class TestStepSummarySink:
    def test_appends_report(self, tmp_path: Path, failed_report: Report) -> None:
        path = tmp_path / "summary.md"
        path.write_text("## Earlier step\n")
        sink = StepSummarySink(path)

        assert sink.deliver(failed_report) == str(path)
        content = path.read_text()
        assert content.startswith("## Earlier step\n")
        assert failed_report.text in content

    def test_unwritable_path_raises(self, tmp_path: Path, failed_report: Report) -> None:
        sink = StepSummarySink(tmp_path / "missing-dir" / "summary.md")
        with pytest.raises(SinkDeliveryError, match="cannot write"):
            sink.deliver(failed_report)
