"""
Podpulse Episode Pipeline

Durable download -> transcribe -> analyze pipeline for podcast episodes,
its admin control plane and the weekly trend aggregator.
"""

from .chunker import ByteChunk, plan_chunks
from .segmenter import segment
from .steps import (
    PermanentStepError,
    RunAborted,
    StepExecutor,
    StepFailedError,
    StepPolicy,
    StepTimeoutError,
)
from .runner import RunHandle, RunNotFoundError, ThreadJobRunner
from .services import SpeechToTextClient, TextGenerationClient
from .episode import EpisodePipeline, blob_key_for
from .control import (
    PipelineAlreadyRunningError,
    PipelineControlPlane,
    build_control_plane,
    create_control_plane,
)
from .weekly import NothingToAnalyzeError, WeeklyAggregator

__all__ = [
    # Pure algorithms
    "segment",
    "ByteChunk",
    "plan_chunks",
    # Durable execution
    "StepExecutor",
    "StepPolicy",
    "StepFailedError",
    "StepTimeoutError",
    "PermanentStepError",
    "RunAborted",
    "ThreadJobRunner",
    "RunHandle",
    "RunNotFoundError",
    # External services
    "SpeechToTextClient",
    "TextGenerationClient",
    # Pipeline and control
    "EpisodePipeline",
    "blob_key_for",
    "PipelineControlPlane",
    "PipelineAlreadyRunningError",
    "create_control_plane",
    "build_control_plane",
    # Weekly report
    "WeeklyAggregator",
    "NothingToAnalyzeError",
]
