"""Core types and ports shared across stagebus layers."""

from stagebus.core.errors import ConfigurationError, SinkDeliveryError, StageBusError
from stagebus.core.models import (
    CommandSpec,
    SinkResult,
    StageResult,
    StageStatus,
    Verdict,
)

__all__ = [
    "CommandSpec",
    "ConfigurationError",
    "SinkDeliveryError",
    "SinkResult",
    "StageBusError",
    "StageResult",
    "StageStatus",
    "Verdict",
]
