"""
Execution-specific errors.

Every failure of an external tool (ffmpeg, ffprobe) surfaces as one of these.
Readiness errors are cached per tool instance and replayed verbatim.
Run failures carry the captured stderr tail of the subprocess.
"""

from typing import Optional


class ExecutionError(Exception):
    """
    Base exception for external tool failures.

    All execution errors inherit from this.
    """

    def __init__(self, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(message)


class ToolNotFoundError(ExecutionError):
    """Raised when the binary cannot be found on the search path."""

    def __init__(self, tool: str, path: str):
        self.tool = tool
        self.path = path
        super().__init__(f"{tool} not found (path={path!r})")


class ToolUnhealthyError(ExecutionError):
    """
    Binary exists but the `-version` health probe failed.

    Raised when the probe exits non-zero or cannot be executed at all
    (permission denied, wrong architecture).
    """

    def __init__(self, tool: str, resolved_path: str, reason: str, stderr: str = ""):
        self.tool = tool
        self.resolved_path = resolved_path
        message = f"{tool} exists but cannot run (path={resolved_path!r}): {reason}"
        if stderr:
            message += f"; stderr={stderr}"
        super().__init__(message, stderr=stderr)


class ToolCheckTimeoutError(ToolUnhealthyError):
    """The health probe did not finish inside its bounded deadline."""

    def __init__(self, tool: str, resolved_path: str, timeout: float):
        self.timeout = timeout
        ExecutionError.__init__(
            self,
            f"{tool} check timed out after {timeout:g}s (path={resolved_path!r})",
        )
        self.tool = tool
        self.resolved_path = resolved_path


class LaunchFailedError(ExecutionError):
    """Raised when the subprocess could not be started (pipe or exec failure)."""
    pass


class ExecutionTimeoutError(ExecutionError):
    """The run-scoped deadline expired before the subprocess exited."""

    def __init__(self, tool: str, timeout: Optional[float], stderr: str = ""):
        self.tool = tool
        self.timeout = timeout
        after = f" after {timeout:g}s" if timeout else ""
        super().__init__(f"{tool} timed out{after}; stderr={stderr}", stderr=stderr)


class RunCancelledError(ExecutionTimeoutError):
    """
    The run was cancelled before the subprocess exited cleanly.

    Reported like a timeout: the subprocess was terminated by us,
    not by its own failure.
    """

    def __init__(self, tool: str, stderr: str = ""):
        self.tool = tool
        self.timeout = None
        ExecutionError.__init__(self, f"{tool} run cancelled; stderr={stderr}", stderr=stderr)


class ProcessFailedError(ExecutionError):
    """The subprocess exited with a non-zero status."""

    def __init__(self, tool: str, returncode: int, stderr: str = ""):
        self.tool = tool
        self.returncode = returncode
        super().__init__(
            f"{tool} failed: exit status {returncode}; stderr={stderr}",
            stderr=stderr,
        )


class DecodeFailedError(ExecutionError):
    """Structured tool output (ffprobe JSON) could not be parsed."""
    pass
