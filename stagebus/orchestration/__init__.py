"""Pipeline orchestration: runs a pipeline definition end to end."""

from stagebus.orchestration.driver import PipelineDriver, PipelineOutcome

__all__ = ["PipelineDriver", "PipelineOutcome"]
