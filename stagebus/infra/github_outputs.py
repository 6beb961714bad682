"""Key-value step outputs in the GITHUB_OUTPUT file format.

Other workflow steps read these as `steps.<id>.outputs.<key>`. Single-line
values are written as ``key=value``; multi-line values use the delimiter
form ``key<<DELIM`` ... ``DELIM``.
"""

from __future__ import annotations

import re
import uuid
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from stagebus.core.models import StageResult
    from stagebus.domain.aggregator import Report


def output_key(stage_id: str) -> str:
    """Output-safe key prefix: "deploy:prod" -> "deploy_prod"."""
    return re.sub(r"[^A-Za-z0-9_]+", "_", stage_id).strip("_") or "stage"


def format_outputs(result: StageResult) -> list[tuple[str, str]]:
    """Outputs describing one stage."""
    prefix = output_key(result.stage_id)
    pairs = [
        (f"{prefix}_status", result.status.value),
        (f"{prefix}_passed", "true" if result.passed else "false"),
        (f"{prefix}_duration_ms", str(result.duration_ms)),
    ]
    if result.exit_code is not None:
        pairs.append((f"{prefix}_exit_code", str(result.exit_code)))
    for name, value in sorted(result.metrics.items()):
        pairs.append((f"{prefix}_{output_key(name)}", f"{value:g}"))
    return pairs


def format_report_outputs(report: Report) -> list[tuple[str, str]]:
    """Outputs describing the whole pipeline."""
    return [
        ("verdict", report.verdict.value),
        ("failed_stages", ",".join(report.failed_stage_ids)),
        ("blocked_stages", ",".join(report.blocked_stage_ids)),
        ("report", report.text),
    ]


def write_outputs(path: Path, pairs: Iterable[tuple[str, str]]) -> None:
    """Append outputs to a GITHUB_OUTPUT file.

    Raises:
        OSError: If the file cannot be written.
    """
    chunks: list[str] = []
    for key, value in pairs:
        if "\n" in value:
            delimiter = f"STAGEBUS_{uuid.uuid4().hex}"
            chunks.append(f"{key}<<{delimiter}\n{value.rstrip(chr(10))}\n{delimiter}\n")
        else:
            chunks.append(f"{key}={value}\n")
    with path.open("a", encoding="utf-8") as f:
        f.write("".join(chunks))

