"""
Pipeline module: the moderation request orchestrator.

Public API:
- ModerationPipeline: run(raw_secret, body) -> PipelineSuccess | Failure
- PipelineSuccess: the success result
- PipelineStage: stage names, in execution order
"""

from app.pipeline.orchestrator import (
    INVALID_KEY_MESSAGE,
    MISSING_KEY_MESSAGE,
    ModerationPipeline,
    PipelineStage,
    PipelineSuccess,
)

__all__ = [
    "INVALID_KEY_MESSAGE",
    "MISSING_KEY_MESSAGE",
    "ModerationPipeline",
    "PipelineStage",
    "PipelineSuccess",
]
