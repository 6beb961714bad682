"""YAML loader for stagebus.yaml pipeline definitions.

Example:
    required: [unit-test, lint]
    stages:
      - id: install
        run: npm ci
      - id: unit-test
        run: ["npx", "jest", "--coverage"]
        depends_on: [install]
        timeout: 600
        coverage_summary: coverage/coverage-summary.json
        min_coverage: 80
        artifacts: [coverage/lcov.info]
      - id: lint
        outcome: ${{ steps.lint.outcome }}
    artifacts: {dir: .stagebus/artifacts, retention_days: 7}
    notify:
      step_summary: true
      pr_comment: {pr: 12}
      issue: {title: "Pipeline failed", labels: [ci]}

A stage either runs a command (`run`: list of arguments, or a string run via
the shell) or imports an outcome reported by another step (`outcome`).
Stages run in declaration order, so `depends_on` may only name stages
declared earlier.

Validation is strict: unknown fields, wrong types and dangling references
are all collected and raised together as one ConfigurationError.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from stagebus.core.errors import ConfigurationError
from stagebus.core.models import CommandSpec, StageStatus

DEFAULT_PIPELINE_FILE = "stagebus.yaml"
DEFAULT_ARTIFACT_DIR = ".stagebus/artifacts"
DEFAULT_RETENTION_DAYS = 7

_ALLOWED_TOP_LEVEL_FIELDS = frozenset(
    {"required", "stages", "artifacts", "notify", "github_outputs"}
)
_ALLOWED_STAGE_FIELDS = frozenset(
    {
        "id",
        "run",
        "outcome",
        "cwd",
        "env",
        "timeout",
        "depends_on",
        "coverage_summary",
        "min_coverage",
        "artifacts",
    }
)
_ALLOWED_ARTIFACT_FIELDS = frozenset({"dir", "retention_days"})
_ALLOWED_NOTIFY_FIELDS = frozenset({"step_summary", "pr_comment", "issue"})
_ALLOWED_PR_COMMENT_FIELDS = frozenset({"repo", "pr", "comment_id"})
_ALLOWED_ISSUE_FIELDS = frozenset(
    {"title", "labels", "assignees", "repo", "only_on_failure"}
)


@dataclass(frozen=True)
class StageConfig:
    """One stage of the pipeline.

    Exactly one of command and outcome is set.
    """

    stage_id: str
    command: CommandSpec | None = None
    outcome: StageStatus | None = None
    timeout: float | None = None
    depends_on: tuple[str, ...] = ()
    coverage_summary: str | None = None
    min_coverage: float | None = None


@dataclass(frozen=True)
class ArtifactsConfig:
    dir: Path
    retention_days: int = DEFAULT_RETENTION_DAYS


@dataclass(frozen=True)
class PrCommentConfig:
    pr_number: int
    repo: str | None = None
    comment_id: int | None = None


@dataclass(frozen=True)
class IssueConfig:
    title: str
    labels: tuple[str, ...] = ()
    assignees: tuple[str, ...] = ()
    repo: str | None = None
    only_on_failure: bool = True


@dataclass(frozen=True)
class NotifyConfig:
    step_summary: bool = False
    pr_comment: PrCommentConfig | None = None
    issue: IssueConfig | None = None


@dataclass(frozen=True)
class PipelineConfig:
    """A parsed pipeline definition.

    Attributes:
        stages: Stages in execution order.
        required: Stages that decide the verdict. Defaults to all stages.
        base_dir: Directory relative paths are resolved against.
        artifacts: Artifact storage settings, or None to keep artifacts in place.
        notify: Notification sinks to deliver the report to.
        github_outputs: Write step outputs when GITHUB_OUTPUT is set.
    """

    stages: tuple[StageConfig, ...]
    required: tuple[str, ...]
    base_dir: Path
    artifacts: ArtifactsConfig | None = None
    notify: NotifyConfig = field(default_factory=NotifyConfig)
    github_outputs: bool = True

    def stage(self, stage_id: str) -> StageConfig | None:
        for stage in self.stages:
            if stage.stage_id == stage_id:
                return stage
        return None


def load_pipeline(path: Path) -> PipelineConfig:
    """Load and validate a pipeline file.

    Raises:
        ConfigurationError: If the file is missing, unreadable, not valid
            YAML, or fails validation.
    """
    if not path.exists():
        raise ConfigurationError(f"Pipeline file not found: {path}")
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Failed to read {path}: {e}") from e
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML syntax in {path.name}: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"{path.name} must be a YAML mapping, got {type(data).__name__}"
        )
    return parse_pipeline(data, base_dir=path.parent.resolve())


def parse_pipeline(data: dict[str, Any], base_dir: Path) -> PipelineConfig:
    """Build a PipelineConfig from parsed YAML.

    Raises:
        ConfigurationError: Listing every problem found.
    """
    errors: list[str] = []
    _check_unknown(data, _ALLOWED_TOP_LEVEL_FIELDS, "pipeline", errors)

    stages_data = data.get("stages")
    stages: list[StageConfig] = []
    if not isinstance(stages_data, list) or not stages_data:
        errors.append("'stages' must be a non-empty list")
    else:
        seen: set[str] = set()
        for index, stage_data in enumerate(stages_data):
            stage = _parse_stage(stage_data, index, base_dir, seen, errors)
            if stage is not None:
                seen.add(stage.stage_id)
                stages.append(stage)

    stage_ids = [s.stage_id for s in stages]
    required_data = data.get("required")
    if required_data is None:
        required = tuple(stage_ids)
    else:
        required = tuple(_string_list(required_data, "required", errors))
        for stage_id in required:
            if stage_id not in stage_ids:
                errors.append(f"required stage '{stage_id}' is not declared in stages")
        if len(set(required)) != len(required):
            errors.append("'required' lists a stage more than once")

    artifacts = _parse_artifacts(data.get("artifacts"), base_dir, errors)
    notify = _parse_notify(data.get("notify"), errors)

    github_outputs = data.get("github_outputs", True)
    if not isinstance(github_outputs, bool):
        errors.append("'github_outputs' must be a boolean")

    if errors:
        raise ConfigurationError(errors)
    return PipelineConfig(
        stages=tuple(stages),
        required=required,
        base_dir=base_dir,
        artifacts=artifacts,
        notify=notify,
        github_outputs=github_outputs,
    )


# --- Field helpers ---


def _check_unknown(
    data: dict[str, Any], allowed: frozenset[str], where: str, errors: list[str]
) -> None:
    # str() handles non-string YAML keys such as null or integers
    for key in sorted(str(k) for k in set(data) - allowed):
        errors.append(f"Unknown field '{key}' in {where}")


def _string_list(value: object, where: str, errors: list[str]) -> list[str]:
    if not isinstance(value, list) or not all(
        isinstance(v, str) and v.strip() for v in value
    ):
        errors.append(f"'{where}' must be a list of non-empty strings")
        return []
    return list(value)


def _number(value: object, where: str, errors: list[str]) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int | float):
        errors.append(f"'{where}' must be a number, got {type(value).__name__}")
        return None
    return float(value)


def _int(value: object, where: str, errors: list[str]) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(f"'{where}' must be an integer, got {type(value).__name__}")
        return None
    return value


def _parse_stage(
    data: object,
    index: int,
    base_dir: Path,
    seen: set[str],
    errors: list[str],
) -> StageConfig | None:
    if not isinstance(data, dict):
        errors.append(f"stage {index} must be a mapping, got {type(data).__name__}")
        return None

    stage_id = data.get("id")
    if not isinstance(stage_id, str) or not stage_id.strip():
        errors.append(f"stage {index}: 'id' must be a non-empty string")
        return None
    where = f"stage '{stage_id}'"
    _check_unknown(data, _ALLOWED_STAGE_FIELDS, where, errors)
    if stage_id in seen:
        errors.append(f"{where} is declared more than once")

    depends_on = tuple(
        _string_list(data["depends_on"], f"{stage_id}.depends_on", errors)
        if "depends_on" in data
        else []
    )
    for dep in depends_on:
        if dep not in seen:
            errors.append(
                f"{where} depends on '{dep}', which is not declared before it"
            )

    timeout = _number(data.get("timeout"), f"{stage_id}.timeout", errors)
    if timeout is not None and timeout <= 0:
        errors.append(f"{where}: timeout must be positive")
    min_coverage = _number(data.get("min_coverage"), f"{stage_id}.min_coverage", errors)
    if min_coverage is not None and not 0 <= min_coverage <= 100:
        errors.append(f"{where}: min_coverage must be within 0-100")

    coverage_summary = data.get("coverage_summary")
    if coverage_summary is not None and not isinstance(coverage_summary, str):
        errors.append(f"'{stage_id}.coverage_summary' must be a string")
        coverage_summary = None

    has_run = "run" in data
    has_outcome = "outcome" in data
    if has_run == has_outcome:
        errors.append(f"{where} needs exactly one of 'run' or 'outcome'")
        return None

    command: CommandSpec | None = None
    outcome: StageStatus | None = None
    if has_outcome:
        for key in ("cwd", "env", "timeout", "artifacts", "coverage_summary", "min_coverage"):
            if key in data:
                errors.append(f"{where}: '{key}' only applies to stages with 'run'")
        raw_outcome = data["outcome"]
        if not isinstance(raw_outcome, str):
            errors.append(f"'{stage_id}.outcome' must be a string")
        else:
            try:
                outcome = StageStatus.parse(raw_outcome)
            except ConfigurationError as e:
                errors.extend(f"{where}: {err}" for err in e.errors)
    else:
        command = _parse_command(data, stage_id, base_dir, errors)

    return StageConfig(
        stage_id=stage_id,
        command=command,
        outcome=outcome,
        timeout=timeout,
        depends_on=depends_on,
        coverage_summary=coverage_summary,
        min_coverage=min_coverage,
    )


def _parse_command(
    data: dict[str, Any], stage_id: str, base_dir: Path, errors: list[str]
) -> CommandSpec | None:
    run = data["run"]
    if isinstance(run, str):
        if not run.strip():
            errors.append(f"'{stage_id}.run' cannot be empty")
            return None
        argv, shell = (run,), True
    elif isinstance(run, list) and run and all(isinstance(a, str) for a in run):
        argv, shell = tuple(run), False
    else:
        errors.append(f"'{stage_id}.run' must be a string or a non-empty list of strings")
        return None

    cwd = base_dir
    if "cwd" in data:
        if not isinstance(data["cwd"], str):
            errors.append(f"'{stage_id}.cwd' must be a string")
        else:
            cwd = base_dir / data["cwd"]

    env: dict[str, str] = {}
    if "env" in data:
        raw_env = data["env"]
        if not isinstance(raw_env, dict):
            errors.append(f"'{stage_id}.env' must be a mapping")
        else:
            for key, value in raw_env.items():
                if not isinstance(key, str) or isinstance(value, dict | list) or value is None:
                    errors.append(f"'{stage_id}.env.{key}' must be a scalar value")
                    continue
                # YAML turns `CI: 1` into an int and `DEBUG: true` into a bool
                env[key] = str(value).lower() if isinstance(value, bool) else str(value)

    artifacts = tuple(
        _string_list(data["artifacts"], f"{stage_id}.artifacts", errors)
        if "artifacts" in data
        else []
    )
    return CommandSpec(argv=argv, cwd=cwd, env=env, artifacts=artifacts, shell=shell)


def _parse_artifacts(
    data: object, base_dir: Path, errors: list[str]
) -> ArtifactsConfig | None:
    if data is None:
        return None
    if not isinstance(data, dict):
        errors.append("'artifacts' must be a mapping")
        return None
    _check_unknown(data, _ALLOWED_ARTIFACT_FIELDS, "artifacts", errors)
    directory = data.get("dir", DEFAULT_ARTIFACT_DIR)
    if not isinstance(directory, str) or not directory.strip():
        errors.append("'artifacts.dir' must be a non-empty string")
        directory = DEFAULT_ARTIFACT_DIR
    retention = _int(data.get("retention_days"), "artifacts.retention_days", errors)
    if retention is not None and retention < 1:
        errors.append("'artifacts.retention_days' must be at least 1")
    return ArtifactsConfig(
        dir=base_dir / directory,
        retention_days=retention if retention is not None else DEFAULT_RETENTION_DAYS,
    )


def _parse_notify(data: object, errors: list[str]) -> NotifyConfig:
    if data is None:
        return NotifyConfig()
    if not isinstance(data, dict):
        errors.append("'notify' must be a mapping")
        return NotifyConfig()
    _check_unknown(data, _ALLOWED_NOTIFY_FIELDS, "notify", errors)

    step_summary = data.get("step_summary", False)
    if not isinstance(step_summary, bool):
        errors.append("'notify.step_summary' must be a boolean")
        step_summary = False

    pr_comment: PrCommentConfig | None = None
    pr_data = data.get("pr_comment")
    if pr_data is not None:
        if not isinstance(pr_data, dict):
            errors.append("'notify.pr_comment' must be a mapping")
        else:
            _check_unknown(pr_data, _ALLOWED_PR_COMMENT_FIELDS, "notify.pr_comment", errors)
            pr_number = _int(pr_data.get("pr"), "notify.pr_comment.pr", errors)
            comment_id = _int(pr_data.get("comment_id"), "notify.pr_comment.comment_id", errors)
            repo = pr_data.get("repo")
            if repo is not None and not isinstance(repo, str):
                errors.append("'notify.pr_comment.repo' must be a string")
                repo = None
            if pr_number is None:
                errors.append("'notify.pr_comment.pr' is required")
            else:
                pr_comment = PrCommentConfig(
                    pr_number=pr_number, repo=repo, comment_id=comment_id
                )

    issue: IssueConfig | None = None
    issue_data = data.get("issue")
    if issue_data is not None:
        if not isinstance(issue_data, dict):
            errors.append("'notify.issue' must be a mapping")
        else:
            _check_unknown(issue_data, _ALLOWED_ISSUE_FIELDS, "notify.issue", errors)
            title = issue_data.get("title")
            if not isinstance(title, str) or not title.strip():
                errors.append("'notify.issue.title' must be a non-empty string")
                title = None
            labels = _string_list(issue_data.get("labels", []), "notify.issue.labels", errors)
            assignees = _string_list(
                issue_data.get("assignees", []), "notify.issue.assignees", errors
            )
            only_on_failure = issue_data.get("only_on_failure", True)
            if not isinstance(only_on_failure, bool):
                errors.append("'notify.issue.only_on_failure' must be a boolean")
                only_on_failure = True
            repo = issue_data.get("repo")
            if repo is not None and not isinstance(repo, str):
                errors.append("'notify.issue.repo' must be a string")
                repo = None
            if title is not None:
                issue = IssueConfig(
                    title=title,
                    labels=tuple(labels),
                    assignees=tuple(assignees),
                    repo=repo,
                    only_on_failure=only_on_failure,
                )

    return NotifyConfig(step_summary=step_summary, pr_comment=pr_comment, issue=issue)
