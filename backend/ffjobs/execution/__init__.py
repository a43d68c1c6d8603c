"""
Execution layer: external tool readiness, command building, subprocess
supervision and progress decoding.
"""

from .errors import (
    ExecutionError,
    ToolNotFoundError,
    ToolUnhealthyError,
    ToolCheckTimeoutError,
    LaunchFailedError,
    ExecutionTimeoutError,
    RunCancelledError,
    ProcessFailedError,
    DecodeFailedError,
)
from .command import FFmpegCommand
from .progress import ProgressDecoder, ProgressSnapshot
from .readiness import ReadinessCheck, ReadinessResult
from .runner import AbortRun, RunResult, RunScope, RunSupervisor
from .tool import ExternalTool, FFmpegTool

__all__ = [
    # Errors
    "ExecutionError",
    "ToolNotFoundError",
    "ToolUnhealthyError",
    "ToolCheckTimeoutError",
    "LaunchFailedError",
    "ExecutionTimeoutError",
    "RunCancelledError",
    "ProcessFailedError",
    "DecodeFailedError",
    # Commands and progress
    "FFmpegCommand",
    "ProgressDecoder",
    "ProgressSnapshot",
    # Readiness
    "ReadinessCheck",
    "ReadinessResult",
    # Supervision
    "AbortRun",
    "RunResult",
    "RunScope",
    "RunSupervisor",
    # Tools
    "ExternalTool",
    "FFmpegTool",
]
