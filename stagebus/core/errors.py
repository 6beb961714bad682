"""Exception types for stagebus.

Only pipeline configuration defects and sink delivery problems are exceptions.
A failing stage, a timed-out command, or a missing coverage report is recorded
as data (a FAILED StageResult, a partial metrics map) and never raised.
"""

from __future__ import annotations


class StageBusError(Exception):
    """Base class for stagebus errors."""


class ConfigurationError(StageBusError):
    """Raised when the pipeline itself is misconfigured.

    Covers duplicate stage ids, malformed command descriptors, invalid
    pipeline files and unrecognised status text. These halt the run.

    Attributes:
        errors: Individual problems found. A single message is wrapped
            into a one-element list.
    """

    def __init__(self, errors: str | list[str]) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors = errors
        if len(errors) == 1:
            message = errors[0]
        else:
            message = "Configuration validation failed:\n" + "\n".join(
                f"  - {e}" for e in errors
            )
        super().__init__(message)


class SinkDeliveryError(StageBusError):
    """Raised by a notification sink when delivery fails.

    The Notifier catches this (and any other sink error) and records it in
    the sink's SinkResult; it never reaches the caller of notify().
    """

    def __init__(self, sink: str, message: str) -> None:
        self.sink = sink
        super().__init__(f"{sink}: {message}")
