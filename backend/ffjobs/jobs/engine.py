"""
Job engine orchestration logic.

Starts one worker thread per job, feeds decoded progress into the job's
broadcast hub, reconciles the run outcome into exactly one terminal
status, and schedules disposal of the job and its artifact.

Design rules:
- The store, tool and scheduler are passed in; no module globals
- The command is snapshotted when the job starts
- Every job reaches DONE or ERROR, whatever the worker hits
- Eviction happens once, retention_seconds after the terminal status
"""

import logging
import os
import threading
from typing import AsyncGenerator, Callable, Dict, Iterator, Optional, Tuple

from ..execution.command import FFmpegCommand
from ..execution.errors import ExecutionError
from ..execution.tool import FFmpegTool
from .broadcast import DEFAULT_BUFFER_SIZE
from .errors import ArtifactNotReadyError
from .eviction import EvictionScheduler
from .job import Job
from .models import JobEvent, JobStatus
from .registry import JobStore

logger = logging.getLogger(__name__)


DEFAULT_RETENTION_SECONDS = 30 * 60
DEFAULT_DOWNLOAD_URL = "/jobs/{job_id}/download"


class JobEngine:
    """
    Job orchestration engine.

    Args:
        tool: ffmpeg wrapper used for every run
        store: Job index shared with the HTTP layer
        scheduler: Eviction timers
        retention_seconds: How long a finished job and its artifact live
        subscriber_buffer: Per-subscriber buffer size
        download_url: Template for the download link in the done event
    """

    def __init__(
        self,
        tool: FFmpegTool,
        store: JobStore,
        scheduler: EvictionScheduler,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        subscriber_buffer: int = DEFAULT_BUFFER_SIZE,
        download_url: str = DEFAULT_DOWNLOAD_URL,
    ):
        self.tool = tool
        self.store = store
        self.scheduler = scheduler
        self.retention_seconds = retention_seconds
        self.subscriber_buffer = subscriber_buffer
        self.download_url = download_url
        self._workers: Dict[str, threading.Thread] = {}
        self._workers_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_job(
        self,
        command: FFmpegCommand,
        output_path: str,
        output_name: str,
        input_ref: str = "",
        input_cleanup: Optional[Callable[[], None]] = None,
    ) -> Job:
        """Register a job in CREATED state without launching anything."""
        job = Job(
            output_path=output_path,
            output_name=output_name,
            input_ref=input_ref,
            input_cleanup=input_cleanup,
        )
        job.args = command.args()
        self.store.add(job)
        logger.info(f"[LIFECYCLE] Job {job.id} created: {output_name}")
        return job

    def start_job(
        self,
        command: FFmpegCommand,
        output_path: str,
        output_name: str,
        input_ref: str = "",
        input_cleanup: Optional[Callable[[], None]] = None,
    ) -> str:
        """
        Create a job and run it on its own thread.

        Returns immediately with the job id. `input_cleanup` runs once the
        job is terminal (temporary inputs, downloaded sources).
        """
        job = self.create_job(command, output_path, output_name, input_ref, input_cleanup)
        thread = threading.Thread(
            target=self.run_job,
            args=(job,),
            name=f"job-{job.id[:8]}",
            daemon=True,
        )
        with self._workers_lock:
            self._workers[job.id] = thread
        thread.start()
        return job.id

    def run_job(self, job: Job) -> None:
        """
        Run `job` to its terminal state on the calling thread.

        Never raises: every failure is recorded on the job.
        """
        try:
            job.mark_running()
            result = self.tool.run_args(job.args, job.publish_progress, job.scope)
            logger.info(
                f"[LIFECYCLE] Job {job.id} exited {result.returncode}"
                f" (frame={result.snapshot.frame}, aborted={result.aborted})"
            )
            job.mark_done({
                "download": self.download_url.format(job_id=job.id),
                "name": job.output_name,
            })
        except ExecutionError as e:
            job.mark_failed(str(e))
        except Exception as e:
            logger.exception(f"[LIFECYCLE] Job {job.id} crashed: {e}")
            if not job.terminal:
                job.mark_failed(f"internal error: {e}")
        finally:
            self._cleanup_input(job)
            self.scheduler.schedule(job.id, self.retention_seconds, lambda: self._evict(job.id))
            with self._workers_lock:
                self._workers.pop(job.id, None)

    @staticmethod
    def _cleanup_input(job: Job) -> None:
        cleanup = job.input_cleanup
        job.input_cleanup = None
        if cleanup is None:
            return
        try:
            cleanup()
        except Exception as e:
            logger.warning(f"[LIFECYCLE] Input cleanup for job {job.id} failed: {e}")

    def _evict(self, job_id: str) -> None:
        job = self.store.remove(job_id)
        if job is None:
            return
        job.close_subscribers()
        try:
            os.remove(job.output_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[LIFECYCLE] Could not remove artifact {job.output_path}: {e}")
        logger.info(f"[LIFECYCLE] Job {job_id} evicted")

    def cancel_job(self, job_id: str) -> None:
        """
        Request cancellation of a running job.

        The exit status that materializes still decides the outcome.

        Raises:
            JobNotFoundError: Unknown or evicted job
        """
        job = self.store.get_or_raise(job_id)
        logger.info(f"[LIFECYCLE] cancel_job() called for job {job_id}, status: {job.status.value}")
        job.scope.cancel()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Job:
        """
        Raises:
            JobNotFoundError: Unknown or evicted job
        """
        return self.store.get_or_raise(job_id)

    def events(self, job_id: str, heartbeat: Optional[float] = None) -> Iterator[Optional[JobEvent]]:
        """
        Subscribe to a job and yield its events.

        Yields the current status first, then live events, and ends after
        the terminal event. With `heartbeat`, None is yielded whenever no
        event arrived within that many seconds. Closing the generator
        unsubscribes.

        Raises:
            JobNotFoundError: Unknown or evicted job
        """
        job = self.store.get_or_raise(job_id)
        sub = job.subscribe(self.subscriber_buffer)

        def stream() -> Iterator[Optional[JobEvent]]:
            try:
                while True:
                    event = sub.get(heartbeat)
                    if event is not None:
                        yield event
                        continue
                    if sub.exhausted:
                        return
                    yield None
            finally:
                job.unsubscribe(sub)

        return stream()

    def events_async(self, job_id: str, heartbeat: Optional[float] = None) -> AsyncGenerator[Optional[JobEvent], None]:
        """
        Same stream as events(), for consumers running on an event loop.

        Waiting holds no worker thread, so idle viewers cost nothing but
        their buffer.

        Raises:
            JobNotFoundError: Unknown or evicted job
        """
        job = self.store.get_or_raise(job_id)
        sub = job.subscribe(self.subscriber_buffer)

        async def stream() -> AsyncGenerator[Optional[JobEvent], None]:
            try:
                while True:
                    event = await sub.get_async(heartbeat)
                    if event is not None:
                        yield event
                        continue
                    if sub.exhausted:
                        return
                    yield None
            finally:
                job.unsubscribe(sub)

        return stream()

    def get_artifact(self, job_id: str) -> Tuple[str, str]:
        """
        Returns:
            (output_path, output_name) of a finished job

        Raises:
            JobNotFoundError: Unknown or evicted job
            ArtifactNotReadyError: Job is not DONE
        """
        job = self.store.get_or_raise(job_id)
        status = job.status
        if status != JobStatus.DONE:
            raise ArtifactNotReadyError(job_id, status.value)
        return job.output_path, job.output_name

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """Join the worker of `job_id`; True once it is no longer running."""
        with self._workers_lock:
            thread = self._workers.get(job_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        """Cancel every running job and wait for the workers."""
        with self._workers_lock:
            workers = list(self._workers.items())
        for job_id, _ in workers:
            job = self.store.get(job_id)
            if job is not None:
                job.scope.cancel()
        for _, thread in workers:
            thread.join(timeout)
        logger.info(f"[LIFECYCLE] Engine shut down ({len(workers)} job(s) cancelled)")
