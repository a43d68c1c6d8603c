"""
Tests for RunSupervisor: one subprocess from launch to terminal outcome.

Uses the fake ffmpeg from conftest. Covers success with progress, exit
failures with stderr, deadlines, aborts from the progress callback and
the outcome mapping policy.
"""

import threading
import time

import pytest

from ffjobs.execution.command import FFmpegCommand
from ffjobs.execution.errors import (
    ExecutionError,
    ExecutionTimeoutError,
    LaunchFailedError,
    ProcessFailedError,
    RunCancelledError,
)
from ffjobs.execution.progress import ProgressSnapshot
from ffjobs.execution.runner import (
    PROGRESS_ARGS,
    REASON_CANCELLED,
    REASON_TIMEOUT,
    AbortRun,
    BoundedTail,
    DrainGroup,
    RunScope,
    RunSupervisor,
    map_outcome,
)
from ffjobs.execution.tool import FFmpegTool


def _command(tmp_path, name="out.mp4"):
    return FFmpegCommand().input("in.mov").output(str(tmp_path / name))


class TestRunWithProgress:
    """Successful runs."""

    def test_progress_snapshots_in_order(self, fake_ffmpeg, tmp_path):
        """
        GIVEN: ffmpeg printing 3 progress blocks then progress=end
        WHEN: Run with a progress callback
        THEN: Snapshots arrive with non-decreasing frames, the last one is
              done, and the returned snapshot equals the last delivered one
        """
        tool = FFmpegTool(path=fake_ffmpeg)
        seen = []

        result = tool.run_with_progress(_command(tmp_path), seen.append)

        assert result.returncode == 0
        assert seen, "no progress delivered"
        frames = [s.frame for s in seen]
        assert frames == sorted(frames)
        assert seen[-1].done
        assert result.snapshot == seen[-1]
        assert result.snapshot.frame == 30
        assert result.snapshot.out_time_ms == 1_200_000
        assert result.args[-3:] == PROGRESS_ARGS
        assert (tmp_path / "out.mp4").read_text() == "fake media"

    def test_snapshots_are_independent_copies(self, fake_ffmpeg, tmp_path):
        tool = FFmpegTool(path=fake_ffmpeg)
        seen = []
        tool.run_with_progress(_command(tmp_path), seen.append)
        assert len({id(s) for s in seen}) == len(seen)
        assert seen[0].frame == 0 or seen[0].frame < seen[-1].frame

    def test_run_without_sink_returns_zero_snapshot(self, fake_ffmpeg, tmp_path):
        result = FFmpegTool(path=fake_ffmpeg).run(_command(tmp_path))
        assert result.returncode == 0
        assert result.snapshot == ProgressSnapshot()
        assert "-progress" not in result.args

    def test_command_snapshot_taken_at_launch(self, fake_ffmpeg, tmp_path, monkeypatch):
        """
        GIVEN: A running command
        WHEN: The builder is mutated while ffmpeg runs
        THEN: The in-flight invocation keeps the original arguments
        """
        monkeypatch.setenv("FAKE_FFMPEG_SLEEP", "0.1")
        tool = FFmpegTool(path=fake_ffmpeg)
        cmd = _command(tmp_path)
        original = cmd.args()
        mutated = threading.Event()

        def on_progress(snapshot):
            if not mutated.is_set():
                cmd.append_args("-bogus")
                mutated.set()

        result = tool.run_with_progress(cmd, on_progress)
        assert mutated.is_set()
        assert result.args[:len(original)] == original
        assert "-bogus" not in result.args

    def test_no_thread_outlives_the_run(self, fake_ffmpeg, tmp_path):
        tool = FFmpegTool(path=fake_ffmpeg)
        tool.ensure_ready()
        before = set(threading.enumerate())
        for i in range(3):
            tool.run_with_progress(_command(tmp_path, f"out{i}.mp4"), lambda s: None)
        assert set(threading.enumerate()) - before == set()


class TestRunFailures:
    """Non-zero exits, deadlines and cancellation."""

    def test_non_zero_exit_carries_code_and_stderr(self, fake_ffmpeg, tmp_path, monkeypatch):
        monkeypatch.setenv("FAKE_FFMPEG_EXIT", "1")
        monkeypatch.setenv("FAKE_FFMPEG_STDERR", "in.mov: Invalid data found when processing input\n")
        tool = FFmpegTool(path=fake_ffmpeg)

        with pytest.raises(ProcessFailedError) as excinfo:
            tool.run_with_progress(_command(tmp_path), lambda s: None)

        assert excinfo.value.returncode == 1
        assert "Invalid data found" in excinfo.value.stderr
        assert "Invalid data found" in str(excinfo.value)

    def test_unwritable_output_fails(self, fake_ffmpeg, tmp_path):
        tool = FFmpegTool(path=fake_ffmpeg)
        cmd = FFmpegCommand().input("in.mov").output(str(tmp_path / "missing-dir" / "out.mp4"))
        with pytest.raises(ProcessFailedError) as excinfo:
            tool.run(cmd)
        assert "out.mp4" in excinfo.value.stderr

    @pytest.mark.slow
    def test_deadline_terminates_run(self, fake_ffmpeg, tmp_path, monkeypatch):
        """
        GIVEN: A tool with a 0.5s timeout and an ffmpeg that runs for 10s
        WHEN: The run is started
        THEN: ExecutionTimeoutError well before 10s
        """
        monkeypatch.setenv("FAKE_FFMPEG_SLEEP", "5")
        monkeypatch.setenv("FAKE_FFMPEG_BLOCKS", "2")
        tool = FFmpegTool(path=fake_ffmpeg, timeout=0.5)
        tool.ensure_ready()

        started = time.monotonic()
        with pytest.raises(ExecutionTimeoutError) as excinfo:
            tool.run_with_progress(_command(tmp_path), lambda s: None)
        assert time.monotonic() - started < 5
        assert not isinstance(excinfo.value, RunCancelledError)
        assert "timed out after 0.5s" in str(excinfo.value)

    @pytest.mark.slow
    def test_abort_from_callback_cancels(self, fake_ffmpeg, tmp_path, monkeypatch):
        monkeypatch.setenv("FAKE_FFMPEG_SLEEP", "5")
        monkeypatch.setenv("FAKE_FFMPEG_BLOCKS", "2")
        tool = FFmpegTool(path=fake_ffmpeg)
        tool.ensure_ready()
        calls = []

        def on_progress(snapshot):
            calls.append(snapshot)
            if snapshot.frame >= 10:
                raise AbortRun()

        started = time.monotonic()
        with pytest.raises(RunCancelledError):
            tool.run_with_progress(_command(tmp_path), on_progress)
        assert time.monotonic() - started < 5
        assert calls[-1].frame == 10

    @pytest.mark.slow
    def test_external_scope_cancel(self, fake_ffmpeg, tmp_path, monkeypatch):
        monkeypatch.setenv("FAKE_FFMPEG_SLEEP", "5")
        tool = FFmpegTool(path=fake_ffmpeg)
        tool.ensure_ready()
        scope = RunScope()
        timer = threading.Timer(0.3, scope.cancel)
        timer.start()
        try:
            with pytest.raises(RunCancelledError):
                tool.run_with_progress(_command(tmp_path), lambda s: None, scope)
        finally:
            timer.cancel()

    def test_callback_crash_surfaces_as_execution_error(self, fake_ffmpeg, tmp_path, monkeypatch):
        monkeypatch.setenv("FAKE_FFMPEG_SLEEP", "0.5")

        def on_progress(snapshot):
            raise KeyError("sink bug")

        with pytest.raises(ExecutionError) as excinfo:
            FFmpegTool(path=fake_ffmpeg).run_with_progress(_command(tmp_path), on_progress)
        assert isinstance(excinfo.value.__cause__, KeyError)

    def test_callback_crash_keeps_stdout_drained(self, fake_ffmpeg, tmp_path, monkeypatch):
        """
        GIVEN: An ffmpeg that writes 1 MiB to stdout when it gets SIGTERM
        WHEN: The progress callback crashes and the run is cancelled
        THEN: The process exits on SIGTERM without waiting for SIGKILL
        """
        monkeypatch.setenv("FAKE_FFMPEG_SLEEP", "5")
        monkeypatch.setenv("FAKE_FFMPEG_BLOCKS", "2")
        monkeypatch.setenv("FAKE_FFMPEG_TERM_FLOOD", str(1024 * 1024))
        supervisor = RunSupervisor("ffmpeg", fake_ffmpeg, kill_grace=30)

        def on_progress(snapshot):
            raise KeyError("sink bug")

        started = time.monotonic()
        with pytest.raises(RunCancelledError) as excinfo:
            supervisor.run(_command(tmp_path).args(), on_progress)
        assert time.monotonic() - started < 10
        assert isinstance(excinfo.value.__cause__, KeyError)

    def test_launch_failure(self, tmp_path):
        supervisor = RunSupervisor("ffmpeg", str(tmp_path / "gone"))
        with pytest.raises(LaunchFailedError):
            supervisor.run(["-version"])


class TestMapOutcome:
    """Outcome reconciliation policy."""

    def test_clean_exit_wins_over_cancel(self):
        scope = RunScope()
        scope.cancel()
        map_outcome("ffmpeg", 0, scope, "")

    def test_clean_exit_wins_over_expired_deadline(self):
        now = [0.0]
        scope = RunScope(timeout=1, clock=lambda: now[0])
        now[0] = 2.0
        assert scope.check_deadline()
        map_outcome("ffmpeg", 0, scope, "")

    def test_timeout_beats_exit_code(self):
        scope = RunScope()
        scope.cancel(REASON_TIMEOUT)
        with pytest.raises(ExecutionTimeoutError) as excinfo:
            map_outcome("ffmpeg", 255, scope, "killed")
        assert excinfo.value.stderr == "killed"
        assert not isinstance(excinfo.value, RunCancelledError)

    def test_cancel_with_non_zero_exit(self):
        scope = RunScope()
        scope.cancel(REASON_CANCELLED)
        with pytest.raises(RunCancelledError):
            map_outcome("ffmpeg", -15, scope, "")

    def test_plain_failure(self):
        with pytest.raises(ProcessFailedError) as excinfo:
            map_outcome("ffmpeg", 1, RunScope(), "bad input")
        assert excinfo.value.returncode == 1

    def test_drain_error_on_clean_exit(self):
        cause = RuntimeError("pipe broke")
        with pytest.raises(ExecutionError) as excinfo:
            map_outcome("ffmpeg", 0, RunScope(), "", cause)
        assert excinfo.value.__cause__ is cause
        assert type(excinfo.value) is ExecutionError

    def test_first_cancel_reason_wins(self):
        scope = RunScope()
        scope.cancel(REASON_CANCELLED)
        scope.cancel(REASON_TIMEOUT)
        assert scope.reason == REASON_CANCELLED
        assert not scope.timed_out


class TestRunScope:
    def test_deadline_with_manual_clock(self):
        now = [100.0]
        scope = RunScope(timeout=5, clock=lambda: now[0])
        assert not scope.check_deadline()
        now[0] = 105.0
        assert scope.check_deadline()
        assert scope.timed_out

    def test_bound_only_tightens(self):
        now = [0.0]
        scope = RunScope(timeout=10, clock=lambda: now[0])
        scope.bound(20)
        assert scope.deadline == 10
        scope.bound(3)
        assert scope.deadline == 3
        scope.bound(0)
        assert scope.deadline == 3

    def test_unbounded_never_times_out(self):
        scope = RunScope()
        assert scope.deadline is None
        assert not scope.check_deadline()


class TestHelpers:
    def test_bounded_tail_keeps_last_bytes(self):
        tail = BoundedTail(limit=8)
        tail.write(b"0123456789")
        tail.write(b"AB")
        assert tail.truncated == 4
        assert tail.text() == "[4 bytes truncated] 456789AB"

    def test_bounded_tail_untruncated(self):
        tail = BoundedTail(limit=64)
        tail.write(b"  error line\n")
        assert tail.text() == "error line"

    def test_drain_group_keeps_first_error(self):
        group = DrainGroup("test")
        release = threading.Event()

        def first():
            raise ValueError("first")

        def second():
            release.wait(1)
            raise ValueError("second")

        group.start("a", first)
        group.start("b", second)
        time.sleep(0.05)
        release.set()
        group.join()
        assert str(group.error) == "first"
        assert group.alive == 0
        assert len(group) == 2
