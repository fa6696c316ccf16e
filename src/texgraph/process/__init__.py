from .pipeline import (
    CancelToken,
    PipelineCancelled,
    PipelineOrchestrator,
    PipelineStatus,
    ProcessingState,
    clamp_concurrency,
)

__all__ = [
    "CancelToken",
    "PipelineCancelled",
    "PipelineOrchestrator",
    "PipelineStatus",
    "ProcessingState",
    "clamp_concurrency",
]
