#!/usr/bin/env python3
"""
stagebus CLI: run pipeline stages and report their aggregated result.

Usage:
    stagebus run [OPTIONS] [PIPELINE_FILE]
    stagebus runs list [--json] [--limit N]
    stagebus runs show RUN_ID [--json]
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from stagebus.core.errors import ConfigurationError
from stagebus.core.models import Verdict
from stagebus.infra.config import StageBusConfig
from stagebus.infra.console import (
    Colors,
    cleanup_debug_logging,
    configure_debug_logging,
    log,
    log_stage_result,
    set_verbose,
)
from stagebus.infra.env import load_env, load_user_env
from stagebus.infra.pipeline_config import DEFAULT_PIPELINE_FILE, load_pipeline
from stagebus.infra.run_record import new_run_id
from stagebus.orchestration.driver import PipelineDriver

from .runs import runs_app

# Exit codes of `stagebus run`
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2

# Bootstrap state: tracks whether bootstrap() has been called
_bootstrapped = False


def bootstrap() -> None:
    """Initialize environment.

    Idempotent. Loads environment variables from ~/.config/stagebus/.env.
    """
    global _bootstrapped

    if _bootstrapped:
        return
    load_user_env()
    _bootstrapped = True


app = typer.Typer(
    name="stagebus",
    help="Run CI stages, aggregate their results, and report them",
    add_completion=False,
)
app.add_typer(runs_app)


def _parse_required(value: str | None) -> list[str] | None:
    if value is None:
        return None
    required = [stage_id.strip() for stage_id in value.split(",") if stage_id.strip()]
    if not required:
        raise ConfigurationError("--required must list at least one stage id")
    return required


@app.command()
def run(
    pipeline_file: Annotated[
        Path,
        typer.Argument(help="Pipeline definition (YAML)"),
    ] = Path(DEFAULT_PIPELINE_FILE),
    required: Annotated[
        str | None,
        typer.Option(
            "--required",
            "-r",
            help="Comma-separated stage ids that decide the verdict (default: from the file)",
        ),
    ] = None,
    notify: Annotated[
        bool,
        typer.Option("--notify/--no-notify", help="Deliver the report to configured sinks"),
    ] = True,
    save: Annotated[
        bool,
        typer.Option("--save/--no-save", help="Store a run record for `stagebus runs`"),
    ] = True,
    verbose: Annotated[
        bool,
        typer.Option("--verbose/--quiet", "-v/-q", help="Show full failure output"),
    ] = False,
) -> None:
    """Run every stage of a pipeline and report the verdict.

    A .env file next to the pipeline file is loaded on top of the user's
    ~/.config/stagebus/.env.
    """
    bootstrap()
    load_env(pipeline_file.resolve().parent)
    set_verbose(verbose)

    try:
        settings = StageBusConfig.from_env()
        pipeline = load_pipeline(pipeline_file)
        required_ids = _parse_required(required)
    except ConfigurationError as e:
        log("✗", str(e), Colors.RED)
        raise typer.Exit(EXIT_CONFIG_ERROR) from e

    run_id = new_run_id()
    debug_log = (
        configure_debug_logging(settings.runs_dir, run_id)
        if settings.debug_log_enabled and save
        else None
    )
    log("●", f"Running {len(pipeline.stages)} stage(s) from {pipeline_file}", Colors.CYAN)
    driver = PipelineDriver(
        pipeline,
        settings=settings,
        on_result=log_stage_result,
        pipeline_file=str(pipeline_file),
    )
    try:
        outcome = driver.run(required_ids, notify=notify, save=save, run_id=run_id)
    except ConfigurationError as e:
        log("✗", str(e), Colors.RED)
        raise typer.Exit(EXIT_CONFIG_ERROR) from e
    finally:
        cleanup_debug_logging(run_id)

    print()
    print(outcome.report.text, end="")
    for sink in outcome.sink_results:
        if sink.ok:
            log("→", f"{sink.sink}: {sink.locator or 'delivered'}", Colors.GRAY)
        else:
            log("⚠", f"{sink.sink} delivery failed: {sink.error}", Colors.YELLOW)
    if outcome.record_path is not None:
        log("○", f"Run record: {outcome.record_path}", Colors.GRAY, dim=True)
    if debug_log is not None:
        log("○", f"Debug log: {debug_log}", Colors.GRAY, dim=True)

    if outcome.verdict is Verdict.ALL_PASSED:
        log("✓", "All required stages passed", Colors.GREEN)
        raise typer.Exit(0)
    log("✗", f"Pipeline {outcome.verdict.value.replace('_', ' ')}", Colors.RED)
    raise typer.Exit(EXIT_FAILED)
