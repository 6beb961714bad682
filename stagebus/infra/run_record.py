"""Persisted run records.

Each pipeline run can be written to the runs directory as one JSON document
holding the stage results, the report and the sink outcomes. Records are
meant for later inspection (`stagebus runs`) and as replayable test
fixtures; a new run never reads an earlier run's results.

File name: ``<UTC timestamp>_<first 8 chars of run id>.json``.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from stagebus.core.errors import ConfigurationError
from stagebus.core.models import SinkResult, StageResult, Verdict
from stagebus.domain.aggregator import Report

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

# Bump when the document layout changes incompatibly
RECORD_VERSION = 1

_REQUIRED_KEYS = frozenset({"run_id", "started_at", "verdict", "results", "report"})


def new_run_id() -> str:
    return str(uuid.uuid4())


@dataclass
class RunRecord:
    """Everything one pipeline run produced."""

    run_id: str
    started_at: datetime
    finished_at: datetime
    verdict: Verdict
    required: list[str]
    results: list[StageResult]
    report: Report
    sink_results: list[SinkResult] = field(default_factory=list)
    pipeline_file: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": RECORD_VERSION,
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "pipeline_file": self.pipeline_file,
            "verdict": self.verdict.value,
            "required": list(self.required),
            "results": [r.to_dict() for r in self.results],
            "report": self.report.to_dict(),
            "sink_results": [s.to_dict() for s in self.sink_results],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunRecord:
        """Rebuild a RunRecord.

        Raises:
            ConfigurationError: If required keys are missing or malformed.
        """
        missing = _REQUIRED_KEYS - data.keys()
        if missing:
            raise ConfigurationError(
                f"Run record is missing keys: {', '.join(sorted(missing))}"
            )
        try:
            started_at = datetime.fromisoformat(data["started_at"])
            return cls(
                run_id=str(data["run_id"]),
                started_at=started_at,
                finished_at=datetime.fromisoformat(
                    data.get("finished_at") or data["started_at"]
                ),
                verdict=Verdict(data["verdict"]),
                required=list(data.get("required") or []),
                results=[StageResult.from_dict(r) for r in data["results"]],
                report=Report.from_dict(data["report"]),
                sink_results=[
                    SinkResult(
                        sink=str(s["sink"]),
                        ok=bool(s["ok"]),
                        locator=s.get("locator"),
                        error=s.get("error"),
                    )
                    for s in data.get("sink_results") or []
                ],
                pipeline_file=data.get("pipeline_file"),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid run record: {e}") from e

    def filename(self) -> str:
        timestamp = self.started_at.astimezone(UTC).strftime("%Y-%m-%dT%H-%M-%S")
        return f"{timestamp}_{self.run_id[:8]}.json"

    def save(self, runs_dir: Path) -> Path:
        """Write the record atomically into runs_dir.

        Raises:
            OSError: If the directory or file cannot be written.
        """
        runs_dir.mkdir(parents=True, exist_ok=True)
        path = runs_dir / self.filename()
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(self.to_dict(), indent=2, ensure_ascii=False) + "\n")
        tmp.replace(path)
        return path


def load_run(path: Path) -> RunRecord:
    """Load a run record from disk.

    Raises:
        ConfigurationError: If the file cannot be read or is not a valid record.
    """
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot read run record {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Run record {path} is not a JSON object")
    return RunRecord.from_dict(data)


def list_run_files(runs_dir: Path) -> list[Path]:
    """Run record files, newest first (timestamps in file names)."""
    if not runs_dir.exists():
        return []
    return sorted(runs_dir.glob("*.json"), key=lambda p: p.name, reverse=True)


def list_runs(runs_dir: Path, limit: int | None = None) -> list[RunRecord]:
    """Load run records newest first, skipping corrupt files."""
    records: list[RunRecord] = []
    for path in list_run_files(runs_dir):
        if limit is not None and len(records) >= limit:
            break
        try:
            records.append(load_run(path))
        except ConfigurationError as e:
            logger.warning("Skipping corrupt run record %s: %s", path, e)
    return records


def find_run(runs_dir: Path, run_id: str) -> Path | None:
    """Find a run record by full run id or unique prefix.

    Raises:
        ConfigurationError: If the prefix matches more than one run.
    """
    matches: list[Path] = []
    for path in list_run_files(runs_dir):
        try:
            record = load_run(path)
        except ConfigurationError:
            continue
        if record.run_id == run_id:
            return path
        if record.run_id.startswith(run_id):
            matches.append(path)
    if len(matches) > 1:
        raise ConfigurationError(
            f"Run id prefix {run_id!r} is ambiguous ({len(matches)} matches)"
        )
    return matches[0] if matches else None
