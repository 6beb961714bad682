"""Shared dataclasses for stagebus.

Types:
- StageStatus: Closed set of terminal stage states
- Verdict: Pipeline-level verdict with severity ordering
- StageResult: Immutable record produced once per stage
- CommandSpec: Descriptor for the external command a stage runs
- SinkResult: Per-sink delivery outcome reported by the Notifier
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from stagebus.core.errors import ConfigurationError

if TYPE_CHECKING:
    from pathlib import Path


# External spellings accepted for each status. GitHub step outcomes use
# success/failure, composite-action outputs use 'true'/'false'.
_STATUS_ALIASES: dict[str, str] = {
    "passed": "passed",
    "success": "passed",
    "true": "passed",
    "failed": "failed",
    "failure": "failed",
    "false": "failed",
    "skipped": "skipped",
}


class StageStatus(Enum):
    """Terminal state of a stage. SKIPPED is valid, not an error."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @classmethod
    def parse(cls, text: str) -> StageStatus:
        """Convert external status text into a StageStatus.

        Raises:
            ConfigurationError: If the text is not a recognised status.
        """
        key = text.strip().lower()
        if key not in _STATUS_ALIASES:
            raise ConfigurationError(f"Unrecognized stage status: {text!r}")
        return cls(_STATUS_ALIASES[key])


class Verdict(Enum):
    """Overall pipeline verdict."""

    ALL_PASSED = "all_passed"
    SOME_FAILED = "some_failed"
    BLOCKED = "blocked"

    @property
    def severity(self) -> int:
        return _VERDICT_SEVERITY[self]

    @classmethod
    def most_severe(cls, verdicts: list[Verdict]) -> Verdict:
        """Return the most severe verdict, ALL_PASSED for an empty list."""
        return max(verdicts, key=lambda v: v.severity, default=cls.ALL_PASSED)


_VERDICT_SEVERITY = {
    Verdict.ALL_PASSED: 0,
    Verdict.SOME_FAILED: 1,
    Verdict.BLOCKED: 2,
}


@dataclass(frozen=True)
class StageResult:
    """Result of one stage, immutable once created.

    Attributes:
        stage_id: Unique id of the stage within a run (e.g. "unit-test").
        status: Terminal status of the stage.
        exit_code: Process exit code; None when no process ran.
        duration_ms: Wall-clock duration in milliseconds.
        metrics: Numeric metrics such as lines_pct. Stored read-only.
        artifact_refs: Locators of artifacts the stage produced, in
            declaration order.
        error_detail: Human-readable failure reason; only set when FAILED.

    Raises:
        ConfigurationError: If the fields violate the status invariants.
    """

    stage_id: str
    status: StageStatus
    exit_code: int | None = None
    duration_ms: int = 0
    metrics: Mapping[str, float] = field(default_factory=dict)
    artifact_refs: tuple[str, ...] = ()
    error_detail: str | None = None

    def __post_init__(self) -> None:
        errors = _check_result_invariants(self)
        if errors:
            raise ConfigurationError(errors)
        object.__setattr__(self, "metrics", MappingProxyType(dict(self.metrics)))
        object.__setattr__(self, "artifact_refs", tuple(self.artifact_refs))

    @property
    def passed(self) -> bool:
        return self.status is StageStatus.PASSED

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "stage_id": self.stage_id,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "metrics": dict(self.metrics),
            "artifact_refs": list(self.artifact_refs),
            "error_detail": self.error_detail,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StageResult:
        """Rebuild a StageResult from to_dict() output.

        Raises:
            ConfigurationError: If the data is malformed.
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError(
                f"Invalid stage result data: expected an object, got {type(data).__name__}"
            )
        metrics = data.get("metrics") or {}
        exit_code = data.get("exit_code")
        if not isinstance(metrics, Mapping):
            raise ConfigurationError("Invalid stage result data: metrics must be an object")
        if exit_code is not None and (
            isinstance(exit_code, bool) or not isinstance(exit_code, int)
        ):
            raise ConfigurationError(
                f"Invalid stage result data: exit_code must be an integer, got {exit_code!r}"
            )
        try:
            return cls(
                stage_id=str(data["stage_id"]),
                status=StageStatus(data["status"]),
                exit_code=exit_code,
                duration_ms=int(data.get("duration_ms", 0)),
                metrics={k: float(v) for k, v in metrics.items()},
                artifact_refs=tuple(data.get("artifact_refs") or ()),
                error_detail=data.get("error_detail"),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid stage result data: {e}") from e


def _check_result_invariants(result: StageResult) -> list[str]:
    errors: list[str] = []
    if not result.stage_id or not result.stage_id.strip():
        errors.append("stage_id must be non-empty")
    if result.duration_ms < 0:
        errors.append(f"duration_ms must be non-negative, got {result.duration_ms}")
    if result.status is StageStatus.FAILED:
        if not result.error_detail and not result.exit_code:
            errors.append(
                f"{result.stage_id}: FAILED requires a non-zero exit_code or error_detail"
            )
    elif result.error_detail is not None:
        errors.append(f"{result.stage_id}: error_detail is only allowed on FAILED")
    if result.status is StageStatus.SKIPPED and result.exit_code is not None:
        errors.append(f"{result.stage_id}: SKIPPED must not carry an exit_code")
    if result.status is StageStatus.PASSED and result.exit_code not in (None, 0):
        errors.append(
            f"{result.stage_id}: PASSED with non-zero exit_code {result.exit_code}"
        )
    return errors


@dataclass(frozen=True)
class CommandSpec:
    """Descriptor of the external command a stage runs.

    Attributes:
        argv: Program and arguments. With shell=True, a single shell string.
        cwd: Working directory, or None for the runner's default.
        env: Environment overrides merged over the process environment.
        artifacts: Artifact paths the command is expected to produce.
        shell: Run argv[0] through the shell.
    """

    argv: tuple[str, ...]
    cwd: Path | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    artifacts: tuple[str, ...] = ()
    shell: bool = False

    def validate(self) -> None:
        """Check the descriptor is well-formed.

        Raises:
            ConfigurationError: For an empty argv, non-string arguments,
                non-string env entries, or a multi-part shell command.
        """
        errors: list[str] = []
        if not self.argv:
            errors.append("command argv must not be empty")
        if any(not isinstance(arg, str) for arg in self.argv):
            errors.append(f"command arguments must be strings: {self.argv!r}")
        elif self.argv and not self.argv[0].strip():
            errors.append("command program must not be blank")
        if self.shell and len(self.argv) != 1:
            errors.append("shell commands must be a single string")
        if any(
            not isinstance(k, str) or not isinstance(v, str)
            for k, v in self.env.items()
        ):
            errors.append("command env keys and values must be strings")
        if errors:
            raise ConfigurationError(errors)

    @property
    def display(self) -> str:
        return " ".join(self.argv)

    def runner_command(self) -> list[str] | str:
        """Command in the form CommandRunner accepts."""
        if self.shell:
            return self.argv[0]
        return list(self.argv)


@dataclass(frozen=True)
class SinkResult:
    """Delivery outcome for one notification sink.

    Attributes:
        sink: Name of the sink.
        ok: Whether delivery succeeded.
        locator: What the sink created (comment id, issue URL, file path).
        error: Failure reason when ok is False.
    """

    sink: str
    ok: bool
    locator: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sink": self.sink,
            "ok": self.ok,
            "locator": self.locator,
            "error": self.error,
        }
