"""stagebus: run CI pipeline stages, collect typed results, report a verdict.

Typical library use:

    from stagebus import CommandSpec, Notifier, ResultStore, StageRunner, aggregate

    store = ResultStore()
    runner = StageRunner(store)
    runner.run("unit-test", CommandSpec(argv=("pytest", "-q")), timeout=600)
    runner.run("lint", CommandSpec(argv=("ruff", "check", ".")))
    verdict, report = aggregate(store.snapshot(), ["unit-test", "lint"])
    Notifier().notify(report, sinks)
"""

from stagebus.core.errors import ConfigurationError, SinkDeliveryError, StageBusError
from stagebus.core.models import (
    CommandSpec,
    SinkResult,
    StageResult,
    StageStatus,
    Verdict,
)
from stagebus.domain.aggregator import Report, ReportEntry, aggregate
from stagebus.domain.coverage import extract_coverage
from stagebus.domain.notifier import Notifier
from stagebus.domain.result_store import ResultStore, StoreSnapshot
from stagebus.domain.stage_runner import StageRunner

__all__ = [
    "CommandSpec",
    "ConfigurationError",
    "Notifier",
    "Report",
    "ReportEntry",
    "ResultStore",
    "SinkDeliveryError",
    "SinkResult",
    "StageBusError",
    "StageResult",
    "StageRunner",
    "StageStatus",
    "StoreSnapshot",
    "Verdict",
    "aggregate",
    "extract_coverage",
]
