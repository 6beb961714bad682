"""Domain logic: result store, stage execution, coverage, aggregation, notification."""

from stagebus.domain.aggregator import Report, ReportEntry, aggregate, compute_verdict
from stagebus.domain.coverage import (
    check_coverage_threshold,
    extract_coverage,
    extract_from_file,
    load_coverage_summary,
    parse_coverage_xml,
)
from stagebus.domain.notifier import Notifier
from stagebus.domain.result_store import ResultStore, StoreSnapshot
from stagebus.domain.stage_runner import StageRunner

__all__ = [
    "Notifier",
    "Report",
    "ReportEntry",
    "ResultStore",
    "StageRunner",
    "StoreSnapshot",
    "aggregate",
    "check_coverage_threshold",
    "compute_verdict",
    "extract_coverage",
    "extract_from_file",
    "load_coverage_summary",
    "parse_coverage_xml",
]
