from .events import EventChannel, PipelineState, ProgressEvent
from .orchestrator import PipelineOrchestrator, PipelineResult, PipelineRun

__all__ = [
    "EventChannel",
    "PipelineOrchestrator",
    "PipelineResult",
    "PipelineRun",
    "PipelineState",
    "ProgressEvent",
]
