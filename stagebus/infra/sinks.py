"""Notification sinks for pipeline reports.

- ReviewCommentSink: pull-request comment via `gh api`, updated in place
  when a previous comment id is known
- IssueTrackerSink: `gh issue create` for failed pipelines
- StepSummarySink: appends the report to the GitHub job summary file

Sinks raise SinkDeliveryError on failure; the Notifier turns that into a
failed SinkResult.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from stagebus.core.errors import SinkDeliveryError
from stagebus.core.models import Verdict
from stagebus.infra.command_runner import CommandRunner

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from stagebus.core.protocols import CommandResultProtocol, CommandRunnerPort
    from stagebus.domain.aggregator import Report

logger = logging.getLogger(__name__)

# Default timeout for gh subprocess calls (seconds)
DEFAULT_GH_TIMEOUT = 30.0


def _gh_error(result: CommandResultProtocol) -> str:
    if result.timed_out:
        return "gh timed out"
    detail = result.stderr_tail().strip() or result.stdout_tail().strip()
    return detail or f"gh exited {result.returncode}"


def issue_number_from_url(url: str) -> int | None:
    """Issue number from a URL like https://github.com/o/r/issues/42."""
    last = url.rstrip("/").rsplit("/", 1)[-1]
    return int(last) if last.isdigit() else None


class ReviewCommentSink:
    """Posts the report as a pull-request comment.

    When comment_id is given the existing comment is edited, otherwise a new
    one is created. After a successful create the new id is remembered, so a
    second delivery through the same sink updates instead of duplicating.
    """

    name = "pr-comment"

    def __init__(
        self,
        repo: str,
        pr_number: int,
        comment_id: int | None = None,
        runner: CommandRunnerPort | None = None,
        timeout_seconds: float = DEFAULT_GH_TIMEOUT,
    ):
        self.repo = repo
        self.pr_number = pr_number
        self.comment_id = comment_id
        self._runner = runner or CommandRunner(timeout_seconds=timeout_seconds)

    def _command(self, body: str) -> list[str]:
        if self.comment_id is not None:
            return [
                "gh",
                "api",
                "-X",
                "PATCH",
                f"repos/{self.repo}/issues/comments/{self.comment_id}",
                "-f",
                f"body={body}",
            ]
        return [
            "gh",
            "api",
            f"repos/{self.repo}/issues/{self.pr_number}/comments",
            "-f",
            f"body={body}",
        ]

    def deliver(self, report: Report) -> str | None:
        result = self._runner.run(self._command(report.text))
        if not result.ok:
            raise SinkDeliveryError(self.name, _gh_error(result))
        try:
            payload = json.loads(result.stdout)
            comment_id = int(payload["id"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise SinkDeliveryError(
                self.name, f"unexpected gh api response: {e}"
            ) from e
        self.comment_id = comment_id
        logger.debug("PR #%s comment %s: %s", self.pr_number, comment_id, payload.get("html_url"))
        return str(comment_id)


class IssueTrackerSink:
    """Opens an issue describing the pipeline result.

    With only_on_failure (the default) nothing is created for ALL_PASSED.
    Returns the created issue's URL; issue_number_from_url() gives its id.
    """

    name = "issue"

    def __init__(
        self,
        title: str,
        labels: Sequence[str] = (),
        assignees: Sequence[str] = (),
        repo: str | None = None,
        only_on_failure: bool = True,
        runner: CommandRunnerPort | None = None,
        timeout_seconds: float = DEFAULT_GH_TIMEOUT,
    ):
        self.title = title
        self.labels = list(labels)
        self.assignees = list(assignees)
        self.repo = repo
        self.only_on_failure = only_on_failure
        self._runner = runner or CommandRunner(timeout_seconds=timeout_seconds)

    def _command(self, body: str) -> list[str]:
        cmd = ["gh", "issue", "create", "--title", self.title, "--body", body]
        for label in self.labels:
            cmd.extend(["--label", label])
        for assignee in self.assignees:
            cmd.extend(["--assignee", assignee])
        if self.repo:
            cmd.extend(["--repo", self.repo])
        return cmd

    def deliver(self, report: Report) -> str | None:
        if self.only_on_failure and report.verdict is Verdict.ALL_PASSED:
            logger.debug("Pipeline passed; not opening an issue")
            return None
        result = self._runner.run(self._command(report.text))
        if not result.ok:
            raise SinkDeliveryError(self.name, _gh_error(result))
        lines = result.stdout.strip().splitlines()
        url = lines[-1].strip() if lines else ""
        if not url.startswith("http"):
            raise SinkDeliveryError(self.name, f"unexpected gh output: {result.stdout!r}")
        return url


class StepSummarySink:
    """Appends the report markdown to a file (GITHUB_STEP_SUMMARY)."""

    name = "step-summary"

    def __init__(self, path: Path):
        self.path = path

    def deliver(self, report: Report) -> str | None:
        try:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(report.text)
                f.write("\n")
        except OSError as e:
            raise SinkDeliveryError(self.name, f"cannot write {self.path}: {e}") from e
        return str(self.path)
