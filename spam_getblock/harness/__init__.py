"""
Concurrent load harness for staged remote calls.

This package launches a fixed number of tasks with a pacing delay, times every
stage of each task's call pipeline, and collects the results into a per-task
report plus throughput figures.
"""

from .collector import ResultCollector, format_run_summary, format_stage_summary
from .config import ConfigError, RunConfig, parse_duration
from .context import Context, ContextCancelled, DeadlineExceeded
from .errors import (
    DecodeError,
    DialError,
    StageCancelledError,
    StageError,
    StageTimeoutError,
    TaskError,
)
from .params import RandomHeights
from .pipeline import Pipeline, Stage, StagedPipeline, TaskResult
from .scheduler import RunStats, TaskScheduler, launch, run_load

__all__ = [
    "ConfigError",
    "Context",
    "ContextCancelled",
    "DeadlineExceeded",
    "DecodeError",
    "DialError",
    "Pipeline",
    "RandomHeights",
    "ResultCollector",
    "RunConfig",
    "RunStats",
    "Stage",
    "StageCancelledError",
    "StageError",
    "StageTimeoutError",
    "StagedPipeline",
    "TaskError",
    "TaskResult",
    "TaskScheduler",
    "format_run_summary",
    "format_stage_summary",
    "launch",
    "parse_duration",
    "run_load",
]
