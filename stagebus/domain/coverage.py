"""Coverage extraction for stagebus.

This module provides:
- extract_coverage: normalize a parsed coverage summary (the
  coverage-summary.json shape written by istanbul/jest/vitest) into metrics
- load_coverage_summary: read a JSON coverage summary from disk
- parse_coverage_xml: read line/branch percentages from a Cobertura
  coverage.xml (coverage.py, pytest-cov)
- extract_from_file: pick the right parser from the file suffix
- check_coverage_threshold: compare lines_pct against a minimum

Coverage reporting is best-effort. Nothing here raises for a missing or
malformed report; callers get a partial (possibly empty) metrics map.
"""

from __future__ import annotations

import json
import logging
import math
import xml.etree.ElementTree as ET
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

# Sub-objects of `total` in a coverage summary, and the metric each maps to
SUMMARY_METRICS: dict[str, str] = {
    "lines": "lines_pct",
    "statements": "statements_pct",
    "functions": "functions_pct",
    "branches": "branches_pct",
}

# Tolerance for threshold comparison so 88.79999 is not below 88.8
_EPSILON = 1e-9


def _clamp_pct(value: float) -> float:
    return min(100.0, max(0.0, value))


def _as_number(value: object) -> float | None:
    # bool is an int subclass; a `true` pct is malformed, not 1%
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    number = float(value)
    if math.isnan(number):
        return None
    return number


def extract_coverage(raw: object) -> dict[str, float]:
    """Extract normalized coverage metrics from a parsed summary document.

    Expects ``{"total": {"lines": {"pct": 91.2}, "branches": {...}, ...}}``.
    Percentages are passed through as given, clamped to [0, 100].

    Args:
        raw: Parsed summary (any JSON value).

    Returns:
        Mapping with whichever of lines_pct, statements_pct, functions_pct
        and branches_pct were present and numeric. Empty when `total` is
        missing or the document has the wrong shape.
    """
    if not isinstance(raw, Mapping):
        return {}
    total = raw.get("total")
    if not isinstance(total, Mapping):
        return {}

    metrics: dict[str, float] = {}
    for key, metric_name in SUMMARY_METRICS.items():
        section = total.get(key)
        if not isinstance(section, Mapping):
            continue
        pct = _as_number(section.get("pct"))
        if pct is None:
            continue
        metrics[metric_name] = _clamp_pct(pct)
    return metrics


def load_coverage_summary(path: Path) -> dict[str, Any] | None:
    """Load a JSON coverage summary.

    Returns:
        The parsed document, or None if the file is missing, unreadable or
        not a JSON object.
    """
    if not path.exists():
        logger.info("Coverage summary not found: %s", path)
        return None
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        logger.warning("Cannot read coverage summary %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.warning("Coverage summary %s is not a JSON object", path)
        return None
    return data


def parse_coverage_xml(path: Path) -> dict[str, float]:
    """Extract coverage metrics from a Cobertura coverage.xml.

    line-rate and branch-rate (0.0-1.0) become lines_pct and branches_pct.

    Returns:
        Mapping with the metrics found; empty if the file is missing or
        malformed.
    """
    if not path.exists():
        logger.info("Coverage report not found: %s", path)
        return {}
    try:
        root = ET.parse(path).getroot()
    except (ET.ParseError, OSError) as e:
        logger.warning("Cannot read coverage XML %s: %s", path, e)
        return {}
    if root.tag != "coverage":
        logger.warning(
            "Invalid coverage XML %s: expected <coverage> root, got <%s>",
            path,
            root.tag,
        )
        return {}

    metrics: dict[str, float] = {}
    for attr, metric_name in (("line-rate", "lines_pct"), ("branch-rate", "branches_pct")):
        raw_value = root.get(attr)
        if raw_value is None:
            continue
        try:
            rate = float(raw_value)
        except ValueError:
            logger.warning("Invalid %s %r in %s", attr, raw_value, path)
            continue
        if math.isnan(rate):
            continue
        metrics[metric_name] = _clamp_pct(rate * 100.0)
    return metrics


def extract_from_file(path: Path) -> dict[str, float]:
    """Extract coverage metrics from a JSON summary or a Cobertura XML file."""
    if path.suffix.lower() == ".xml":
        return parse_coverage_xml(path)
    return extract_coverage(load_coverage_summary(path))


def check_coverage_threshold(
    metrics: Mapping[str, float], min_percent: float | None
) -> str | None:
    """Check lines_pct against a minimum.

    Args:
        metrics: Metrics from extract_coverage or parse_coverage_xml.
        min_percent: Minimum line coverage (0-100), or None to skip.

    Returns:
        Failure reason, or None when the threshold is met, not set, or
        there is no lines_pct to compare.
    """
    if min_percent is None:
        return None
    percent = metrics.get("lines_pct")
    if percent is None:
        return None
    if percent >= min_percent - _EPSILON:
        return None
    return f"coverage {percent:.1f}% is below threshold {min_percent:.1f}%"
