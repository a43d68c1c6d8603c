"""
One-time readiness check for an external binary.

ReadinessCheck is a once-cell: the first caller runs the check, concurrent
first callers wait for that result, and every later call gets the cached
ReadinessResult. The lock only guards the state transition; the check
itself (a subprocess) runs outside it.
"""

import logging
import shutil
import subprocess
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from .errors import (
    ExecutionError,
    ToolCheckTimeoutError,
    ToolNotFoundError,
    ToolUnhealthyError,
)

logger = logging.getLogger(__name__)

# Upper bound for the -version probe, whatever the caller's own deadline
PROBE_TIMEOUT_CAP = 5.0

UNKNOWN_VERSION = "unknown"


@dataclass(frozen=True)
class ReadinessResult:
    """Frozen outcome of a readiness check."""

    resolved_path: Optional[str] = None
    version: Optional[str] = None
    error: Optional[ExecutionError] = None

    @property
    def ready(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        """Re-raise the cached error, if any. Always the same instance."""
        if self.error is not None:
            raise self.error.with_traceback(None)


def parse_version(banner: str) -> str:
    """
    Extract the version token from a -version banner.

    Looks at the first line only: "ffmpeg version 6.1.1-3 Copyright ..."
    yields "6.1.1-3". Returns "" when no token follows "version".
    """
    lines = banner.splitlines()
    if not lines:
        return ""
    parts = lines[0].split()
    for i, part in enumerate(parts[:-1]):
        if part.lower() == "version":
            return parts[i + 1]
    return ""


def probe_binary(tool: str, path: str, timeout: Optional[float] = None) -> ReadinessResult:
    """
    Resolve `path` on PATH and run it with -version.

    Never raises for tool failures; the error is captured in the result.

    Args:
        tool: Display name used in error messages ("ffmpeg")
        path: Binary name or path as configured
        timeout: Caller deadline in seconds; the probe uses min(timeout, 5s)
    """
    resolved = shutil.which(path)
    if resolved is None:
        logger.warning(f"[Readiness] {tool} not found (path={path!r})")
        return ReadinessResult(error=ToolNotFoundError(tool, path))

    probe_timeout = PROBE_TIMEOUT_CAP
    if timeout is not None and timeout > 0:
        probe_timeout = min(timeout, PROBE_TIMEOUT_CAP)

    try:
        completed = subprocess.run(
            [resolved, "-version"],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=probe_timeout,
        )
    except subprocess.TimeoutExpired:
        logger.warning(f"[Readiness] {tool} -version timed out after {probe_timeout:g}s")
        return ReadinessResult(
            resolved_path=resolved,
            error=ToolCheckTimeoutError(tool, resolved, probe_timeout),
        )
    except OSError as e:
        logger.warning(f"[Readiness] {tool} could not be executed: {e}")
        return ReadinessResult(
            resolved_path=resolved,
            error=ToolUnhealthyError(tool, resolved, str(e)),
        )

    if completed.returncode != 0:
        return ReadinessResult(
            resolved_path=resolved,
            error=ToolUnhealthyError(
                tool,
                resolved,
                f"exit status {completed.returncode}",
                stderr=completed.stderr.strip(),
            ),
        )

    version = parse_version(completed.stdout) or UNKNOWN_VERSION
    logger.info(f"[Readiness] {tool} {version} at {resolved}")
    return ReadinessResult(resolved_path=resolved, version=version)


class ReadinessCheck:
    """
    Lazily computed, cached readiness result.

    The check function runs at most once per instance.
    """

    def __init__(self, check: Callable[[Optional[float]], ReadinessResult]):
        self._check = check
        self._lock = threading.Lock()
        self._result: Optional[ReadinessResult] = None
        self._in_flight: Optional[threading.Event] = None
        self.runs = 0

    @property
    def checked(self) -> bool:
        with self._lock:
            return self._result is not None

    def peek(self) -> Optional[ReadinessResult]:
        """Cached result without triggering the check."""
        with self._lock:
            return self._result

    def get(self, timeout: Optional[float] = None) -> ReadinessResult:
        """
        Cached result, running the check first if nobody has yet.

        If the running check is interrupted (KeyboardInterrupt, SystemExit),
        nothing is cached: the interruption propagates in its own thread and
        one of the waiting callers runs the check again.
        """
        while True:
            with self._lock:
                if self._result is not None:
                    return self._result
                if self._in_flight is not None:
                    waiter = self._in_flight
                    owner = False
                else:
                    waiter = self._in_flight = threading.Event()
                    owner = True
                    self.runs += 1

            if not owner:
                waiter.wait()
                continue

            result: Optional[ReadinessResult] = None
            try:
                try:
                    result = self._check(timeout)
                except Exception as e:
                    logger.exception(f"[Readiness] Check crashed: {e}")
                    error = ExecutionError(f"readiness check crashed: {e}")
                    error.__cause__ = e
                    result = ReadinessResult(error=error)
            finally:
                with self._lock:
                    if result is not None:
                        self._result = result
                    self._in_flight = None
                waiter.set()
            return result
