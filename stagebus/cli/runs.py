"""Runs subcommand for the stagebus CLI: list and replay stored run records."""

from __future__ import annotations

import json
from typing import Annotated

import typer
from tabulate import tabulate

from stagebus.core.errors import ConfigurationError
from stagebus.core.models import StageStatus
from stagebus.domain.aggregator import format_duration
from stagebus.infra.env import get_runs_dir
from stagebus.infra.run_record import find_run, list_runs, load_run

runs_app = typer.Typer(name="runs", help="Inspect stored pipeline runs")

# Default limit for number of runs to display
_DEFAULT_LIMIT = 20


@runs_app.command("list")
def list_command(
    json_output: Annotated[
        bool, typer.Option("--json", help="Output as JSON")
    ] = False,
    limit: Annotated[
        int, typer.Option("--limit", "-n", help="Maximum number of runs to show")
    ] = _DEFAULT_LIMIT,
) -> None:
    """List recent runs, newest first."""
    records = list_runs(get_runs_dir(), limit=limit)

    if json_output:
        print(
            json.dumps(
                [
                    {
                        "run_id": r.run_id,
                        "started_at": r.started_at.isoformat(),
                        "verdict": r.verdict.value,
                        "stages": len(r.results),
                        "failed": r.report.failed_stage_ids,
                    }
                    for r in records
                ],
                indent=2,
            )
        )
        return

    if not records:
        print("No runs found")
        return

    rows = []
    for record in records:
        failed = sum(1 for r in record.results if r.status is StageStatus.FAILED)
        duration_ms = int((record.finished_at - record.started_at).total_seconds() * 1000)
        rows.append(
            [
                record.run_id[:8],
                record.started_at.strftime("%Y-%m-%d %H:%M:%S"),
                record.verdict.value,
                len(record.results),
                failed,
                format_duration(duration_ms),
            ]
        )
    headers = ["run", "started", "verdict", "stages", "failed", "duration"]
    print(tabulate(rows, headers=headers, tablefmt="simple"))


@runs_app.command("show")
def show_command(
    run_id: Annotated[str, typer.Argument(help="Run id or unique prefix")],
    json_output: Annotated[
        bool, typer.Option("--json", help="Output the full record as JSON")
    ] = False,
) -> None:
    """Print the report of a stored run."""
    try:
        path = find_run(get_runs_dir(), run_id)
        if path is None:
            print(f"Run not found: {run_id}")
            raise typer.Exit(1)
        record = load_run(path)
    except ConfigurationError as e:
        print(f"Error: {e}")
        raise typer.Exit(1) from e

    if json_output:
        print(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))
        return

    print(record.report.text, end="")
    for sink in record.sink_results:
        status = "ok" if sink.ok else f"failed: {sink.error}"
        print(f"{sink.sink}: {status}")
