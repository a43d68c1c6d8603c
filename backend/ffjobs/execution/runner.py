"""
Run supervisor: one subprocess execution from launch to terminal outcome.

Design rules:
- stdout and stderr are pipes, each drained by its own reader thread
  started right after launch (an unread pipe deadlocks the child)
- stderr goes into a bounded tail buffer used for error messages only
- stdout is either decoded as -progress output or discarded
- run() returns only after the process exited AND both readers joined
- Cancellation (abort, deadline) sends SIGTERM, escalating to SIGKILL
- The exit status that actually materializes decides the outcome
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .errors import (
    ExecutionError,
    ExecutionTimeoutError,
    LaunchFailedError,
    ProcessFailedError,
    RunCancelledError,
)
from .progress import ProgressDecoder, ProgressSnapshot

logger = logging.getLogger(__name__)


DEFAULT_STDERR_LIMIT = 64 * 1024

# Flags that switch ffmpeg to machine-readable progress on stdout
PROGRESS_ARGS = ["-progress", "pipe:1", "-nostats"]

REASON_TIMEOUT = "timeout"
REASON_CANCELLED = "cancelled"


class AbortRun(Exception):
    """Raised by a progress callback to stop the run."""
    pass


class RunScope:
    """
    Cancellation scope of one run.

    Cancellable at any time from any thread; optionally bounded by a
    deadline. The first reason recorded wins.
    """

    def __init__(self, timeout: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._event = threading.Event()
        self._lock = threading.Lock()
        self.timeout = timeout if timeout and timeout > 0 else None
        self.deadline = clock() + self.timeout if self.timeout else None
        self.reason: Optional[str] = None

    def bound(self, timeout: Optional[float]) -> None:
        """Tighten the deadline to `timeout` seconds from now."""
        if not timeout or timeout <= 0:
            return
        deadline = self._clock() + timeout
        if self.deadline is None or deadline < self.deadline:
            self.deadline = deadline
            self.timeout = timeout

    def cancel(self, reason: str = REASON_CANCELLED) -> None:
        with self._lock:
            if self.reason is None:
                self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def timed_out(self) -> bool:
        return self.reason == REASON_TIMEOUT

    def check_deadline(self) -> bool:
        """Cancel with REASON_TIMEOUT once the deadline passed."""
        if self.deadline is not None and self._clock() >= self.deadline:
            self.cancel(REASON_TIMEOUT)
        return self.cancelled

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


class BoundedTail:
    """Byte sink that keeps only the last `limit` bytes written."""

    def __init__(self, limit: int = DEFAULT_STDERR_LIMIT):
        self.limit = max(1, limit)
        self._buffer = bytearray()
        self.total = 0

    def write(self, chunk: bytes) -> None:
        self.total += len(chunk)
        self._buffer.extend(chunk)
        overflow = len(self._buffer) - self.limit
        if overflow > 0:
            del self._buffer[:overflow]

    @property
    def truncated(self) -> int:
        return self.total - len(self._buffer)

    def text(self) -> str:
        body = self._buffer.decode("utf-8", errors="replace").strip()
        if self.truncated:
            return f"[{self.truncated} bytes truncated] {body}"
        return body


class DrainGroup:
    """
    Start-all, join-all group of reader threads.

    join() waits for every thread; the first exception raised inside a
    thread is kept and exposed as .error.
    """

    def __init__(self, name: str):
        self.name = name
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self.error: Optional[BaseException] = None

    def start(self, label: str, target: Callable[[], None]) -> None:
        def runner():
            try:
                target()
            except BaseException as e:
                with self._lock:
                    if self.error is None:
                        self.error = e
                logger.debug(f"[DrainGroup] {self.name}/{label} failed: {e!r}")

        thread = threading.Thread(target=runner, name=f"{self.name}-{label}", daemon=True)
        self._threads.append(thread)
        thread.start()

    def join(self) -> None:
        for thread in self._threads:
            thread.join()

    @property
    def alive(self) -> int:
        return sum(1 for t in self._threads if t.is_alive())

    def __len__(self) -> int:
        return len(self._threads)


@dataclass
class RunResult:
    """Outcome of a successful run."""

    snapshot: ProgressSnapshot
    returncode: int
    args: List[str] = field(default_factory=list)
    stderr: str = ""
    aborted: bool = False


class _ProgressState:
    def __init__(self):
        self.last = ProgressSnapshot()
        self.aborted = False


class RunSupervisor:
    """
    Execute one subprocess and reconcile its outcome.

    Args:
        tool_name: Display name for logs and errors
        binary: Absolute path of the resolved binary
        timeout: Deadline in seconds for the whole run, None for unbounded
        stderr_limit: Bytes of stderr kept for diagnostics
        poll_interval: How often the wait loop checks the scope
        kill_grace: Seconds between SIGTERM and SIGKILL
    """

    def __init__(
        self,
        tool_name: str,
        binary: str,
        timeout: Optional[float] = None,
        stderr_limit: int = DEFAULT_STDERR_LIMIT,
        poll_interval: float = 0.05,
        kill_grace: float = 5.0,
    ):
        self.tool_name = tool_name
        self.binary = binary
        self.timeout = timeout
        self.stderr_limit = stderr_limit
        self.poll_interval = poll_interval
        self.kill_grace = kill_grace

    def run(
        self,
        args: List[str],
        on_progress: Optional[Callable[[ProgressSnapshot], None]] = None,
        scope: Optional[RunScope] = None,
    ) -> RunResult:
        """
        Run the binary with `args`.

        Returns:
            RunResult carrying the last progress snapshot (zero snapshot
            when no callback was given)

        Raises:
            LaunchFailedError: Process could not be started
            ExecutionTimeoutError: Deadline exceeded
            RunCancelledError: Cancelled or aborted, then exited non-zero
            ProcessFailedError: Exited non-zero on its own
            ExecutionError: A reader thread or the callback failed
        """
        if scope is None:
            scope = RunScope(self.timeout)
        else:
            scope.bound(self.timeout)

        argv = list(args)
        if on_progress is not None:
            argv.extend(PROGRESS_ARGS)

        logger.info(f"[{self.tool_name}] Executing: {self.binary} {' '.join(argv)}")

        try:
            process = subprocess.Popen(
                [self.binary, *argv],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            raise LaunchFailedError(f"{self.tool_name} start: {e}") from e

        tail = BoundedTail(self.stderr_limit)
        state = _ProgressState()
        group = DrainGroup(f"{self.tool_name}-{process.pid}")

        with process:
            group.start("stderr", lambda: self._copy_stderr(process.stderr, tail))
            if on_progress is not None:
                group.start(
                    "progress",
                    lambda: self._decode_progress(process.stdout, state, on_progress, scope),
                )
            else:
                group.start("stdout", lambda: self._discard(process.stdout))

            try:
                returncode = self._wait(process, scope)
            finally:
                if process.poll() is None:
                    process.kill()
                    process.wait()
                group.join()

        stderr = tail.text()
        logger.info(f"[{self.tool_name}] PID {process.pid} exited with code {returncode}")

        map_outcome(self.tool_name, returncode, scope, stderr, group.error)

        return RunResult(
            snapshot=state.last,
            returncode=returncode,
            args=argv,
            stderr=stderr,
            aborted=state.aborted,
        )

    def _wait(self, process: subprocess.Popen, scope: RunScope) -> int:
        terminated_at: Optional[float] = None
        while True:
            try:
                return process.wait(timeout=self.poll_interval)
            except subprocess.TimeoutExpired:
                pass

            if not scope.check_deadline():
                continue

            now = time.monotonic()
            if terminated_at is None:
                logger.info(f"[{self.tool_name}] Sending SIGTERM to PID {process.pid} ({scope.reason})")
                _signal(process.terminate)
                terminated_at = now
            elif now - terminated_at >= self.kill_grace:
                logger.warning(f"[{self.tool_name}] PID {process.pid} did not terminate, sending SIGKILL")
                _signal(process.kill)
                terminated_at = float("inf")

    @staticmethod
    def _copy_stderr(stream, tail: BoundedTail) -> None:
        for chunk in iter(lambda: stream.read1(8192), b""):
            tail.write(chunk)

    @staticmethod
    def _discard(stream) -> None:
        for _ in iter(lambda: stream.read1(65536), b""):
            pass

    def _decode_progress(
        self,
        stream,
        state: _ProgressState,
        on_progress: Callable[[ProgressSnapshot], None],
        scope: RunScope,
    ) -> None:
        decoder = ProgressDecoder()
        try:
            for raw in iter(stream.readline, b""):
                snapshot = decoder.feed(raw.decode("ascii", errors="replace")).copy()
                state.last = snapshot
                try:
                    on_progress(snapshot)
                except AbortRun:
                    logger.info(f"[{self.tool_name}] Progress callback requested abort")
                    state.aborted = True
                    scope.cancel(REASON_CANCELLED)
                    break
                except Exception:
                    scope.cancel(REASON_CANCELLED)
                    raise
                if snapshot.done:
                    break
        finally:
            # Keep the pipe flowing until exit
            self._discard(stream)


def _signal(send: Callable[[], None]) -> None:
    try:
        send()
    except ProcessLookupError:
        pass  # already gone


def map_outcome(
    tool_name: str,
    returncode: int,
    scope: RunScope,
    stderr: str,
    drain_error: Optional[BaseException] = None,
) -> None:
    """
    Map a finished run to its terminal outcome.

    A clean exit is success even when a cancel was requested: the
    process finished before the cancellation reached it.

    Raises:
        ExecutionTimeoutError, RunCancelledError, ProcessFailedError,
        ExecutionError as described in RunSupervisor.run
    """
    if returncode != 0:
        if scope.timed_out:
            raise ExecutionTimeoutError(tool_name, scope.timeout, stderr=stderr)
        if scope.cancelled:
            raise RunCancelledError(tool_name, stderr=stderr) from drain_error
        raise ProcessFailedError(tool_name, returncode, stderr=stderr)

    if drain_error is not None:
        raise ExecutionError(
            f"{tool_name} exec error: {drain_error}; stderr={stderr}",
            stderr=stderr,
        ) from drain_error
