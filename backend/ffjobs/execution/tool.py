"""
External tool wrappers.

An ExternalTool owns one binary (ffmpeg, ffprobe): it resolves and
health-checks it once, caches the outcome, and refuses to run anything
while unready. FFmpegTool adds transcoding runs with progress.

Design rules:
- The readiness check runs at most once per tool instance
- A failed check is cached and re-raised on every call, never retried
- Each run gets its own subprocess and its own deadline
"""

import logging
from typing import Callable, List, Optional

from .command import FFmpegCommand
from .progress import ProgressSnapshot
from .readiness import ReadinessCheck, ReadinessResult, probe_binary
from .runner import DEFAULT_STDERR_LIMIT, RunResult, RunScope, RunSupervisor

logger = logging.getLogger(__name__)


class ExternalTool:
    """
    Base class for a cached, health-checked external binary.

    Attributes:
        name: Display name used in logs and errors
        path: Binary name (looked up on PATH) or explicit path
        timeout: Per-run deadline in seconds, None or 0 for unbounded
    """

    name = "tool"
    default_path = ""

    def __init__(self, path: Optional[str] = None, timeout: Optional[float] = None):
        self.path = path or self.default_path or self.name
        self.timeout = timeout if timeout and timeout > 0 else None
        self._readiness = ReadinessCheck(self._run_check)

    def _run_check(self, timeout: Optional[float]) -> ReadinessResult:
        return probe_binary(self.name, self.path, timeout)

    def ensure_ready(self, timeout: Optional[float] = None) -> ReadinessResult:
        """
        Check the binary once and return the cached result.

        Raises:
            ToolNotFoundError: Binary not on PATH
            ToolUnhealthyError: Binary present but -version failed or timed out
        """
        result = self._readiness.get(timeout)
        result.raise_for_error()
        return result

    def readiness(self) -> Optional[ReadinessResult]:
        """Cached readiness, None if never checked."""
        return self._readiness.peek()

    def version(self) -> str:
        return self.ensure_ready().version

    def resolved_path(self) -> str:
        return self.ensure_ready().resolved_path


class FFmpegTool(ExternalTool):
    """
    ffmpeg wrapper.

    Usage:
        tool = FFmpegTool()
        snapshot = tool.run_with_progress(cmd, on_progress=print)
    """

    name = "ffmpeg"

    def __init__(
        self,
        path: Optional[str] = None,
        timeout: Optional[float] = None,
        stderr_limit: int = DEFAULT_STDERR_LIMIT,
    ):
        super().__init__(path=path, timeout=timeout)
        self.stderr_limit = stderr_limit

    def run(self, command: FFmpegCommand) -> RunResult:
        """Run without progress reporting."""
        return self.run_with_progress(command, None)

    def run_with_progress(
        self,
        command: FFmpegCommand,
        on_progress: Optional[Callable[[ProgressSnapshot], None]] = None,
        scope: Optional[RunScope] = None,
    ) -> RunResult:
        """
        Run `command` to completion.

        With on_progress, "-progress pipe:1 -nostats" is appended and each
        decoded snapshot is passed to the callback. The callback may raise
        AbortRun to stop the run.

        Returns:
            RunResult with the last progress snapshot

        Raises:
            ExecutionError subclasses, see RunSupervisor.run
        """
        return self.run_args(command.args(), on_progress, scope)

    def run_args(
        self,
        args: List[str],
        on_progress: Optional[Callable[[ProgressSnapshot], None]] = None,
        scope: Optional[RunScope] = None,
    ) -> RunResult:
        """Run a pre-built argument list; `scope` allows external cancellation."""
        ready = self.ensure_ready()
        supervisor = RunSupervisor(
            tool_name=self.name,
            binary=ready.resolved_path,
            timeout=self.timeout,
            stderr_limit=self.stderr_limit,
        )
        return supervisor.run(args, on_progress, scope)
