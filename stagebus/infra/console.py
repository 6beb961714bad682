"""Console output helpers for the stagebus CLI.

Colored, timestamped one-line progress output, plus the optional per-run
debug log file that captures the `stagebus` logger at DEBUG level.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from stagebus.core.models import StageStatus

if TYPE_CHECKING:
    from pathlib import Path

    from stagebus.core.models import StageResult


# Global verbose setting (can be modified at runtime)
_verbose_enabled: bool = False


def set_verbose(enabled: bool) -> None:
    """Enable or disable verbose output globally."""
    global _verbose_enabled
    _verbose_enabled = enabled


def is_verbose_enabled() -> bool:
    """Check if verbose output is currently enabled."""
    return _verbose_enabled


def truncate_text(text: str, max_length: int) -> str:
    """Truncate text to max_length, adding ellipsis if truncated.

    Respects global verbose setting. If verbose is enabled,
    returns the original text unchanged.
    """
    if _verbose_enabled:
        return text
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


class Colors:
    """ANSI color codes for terminal output (bright variants)."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    RED = "\033[91m"
    GRAY = "\033[90m"
    # Subdued style for secondary info
    MUTED = "\033[90m"


_STATUS_STYLE: dict[StageStatus, tuple[str, str]] = {
    StageStatus.PASSED: ("✓", Colors.GREEN),
    StageStatus.FAILED: ("✗", Colors.RED),
    StageStatus.SKIPPED: ("○", Colors.GRAY),
}


def log(
    icon: str,
    message: str,
    color: str = Colors.RESET,
    dim: bool = False,
) -> None:
    """Print one timestamped, colored status line."""
    style = Colors.MUTED if dim else ""
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(
        f"{Colors.GRAY}{timestamp}{Colors.RESET} {style}{color}{icon} {message}{Colors.RESET}"
    )


def log_stage_result(result: StageResult) -> None:
    """Print a stage result line, with the failure reason when failed."""
    icon, color = _STATUS_STYLE[result.status]
    message = f"{result.stage_id} {result.status.value} ({result.duration_ms}ms)"
    if result.metrics:
        metrics = ", ".join(f"{k}={v:g}" for k, v in sorted(result.metrics.items()))
        message = f"{message} {metrics}"
    log(icon, message, color)
    if result.error_detail:
        detail = truncate_text(result.error_detail.strip(), 300)
        for line in detail.splitlines()[-10:]:
            log(" ", line, Colors.GRAY, dim=True)


def configure_debug_logging(runs_dir: Path, run_id: str) -> Path | None:
    """Write DEBUG+ records of the `stagebus` logger to a file next to run records.

    Best-effort: returns None if the directory or file cannot be created.

    Args:
        runs_dir: Directory holding run records.
        run_id: Run ID used in the file name and handler name.

    Returns:
        Path to the debug log file, or None if it could not be set up.
    """
    try:
        runs_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(UTC).strftime("%Y-%m-%dT%H-%M-%S")
        log_path = runs_dir / f"{timestamp}_{run_id[:8]}.debug.log"

        handler = logging.FileHandler(log_path)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)s %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        handler.set_name(f"stagebus_debug_{run_id}")

        pkg_logger = logging.getLogger("stagebus")
        pkg_logger.setLevel(logging.DEBUG)
        # Drop handlers left over from earlier runs in the same process
        for existing in pkg_logger.handlers[:]:
            if (existing.get_name() or "").startswith("stagebus_debug_"):
                existing.close()
                pkg_logger.removeHandler(existing)
        pkg_logger.addHandler(handler)
        return log_path
    except OSError:
        return None


def cleanup_debug_logging(run_id: str) -> bool:
    """Remove and close the debug handler of a finished run.

    Returns:
        True if a handler was found and removed.
    """
    pkg_logger = logging.getLogger("stagebus")
    handler_name = f"stagebus_debug_{run_id}"
    for handler in pkg_logger.handlers[:]:
        if handler.get_name() == handler_name:
            handler.close()
            pkg_logger.removeHandler(handler)
            return True
    return False
