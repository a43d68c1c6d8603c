"""
Job: one ffmpeg invocation plus its observable lifecycle.

The job thread owns status transitions; any number of viewer threads
subscribe and unsubscribe concurrently. Status and the subscriber set
share one lock, so a new subscriber always sees the current status
before any later event, and no event slips between the two.

Publishing never blocks: every Subscription.offer() is non-blocking.
"""

import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from ..execution.progress import ProgressSnapshot
from ..execution.runner import RunScope
from .broadcast import DEFAULT_BUFFER_SIZE, Subscription
from .models import EventType, JobEvent, JobStatus, JobView
from .state import is_job_terminal, validate_job_transition

logger = logging.getLogger(__name__)


def new_job_id() -> str:
    return uuid.uuid4().hex


class Job:
    """
    A single transcoding job.

    Attributes:
        id: Opaque identifier, never reused
        input_ref: Source path or URL, informational
        output_path: Where ffmpeg writes the artifact
        output_name: Display/download name of the artifact
        scope: Cancellation scope of the run
    """

    def __init__(
        self,
        output_path: str,
        output_name: str,
        input_ref: str = "",
        input_cleanup: Optional[Callable[[], None]] = None,
        job_id: Optional[str] = None,
    ):
        self.id = job_id or new_job_id()
        self.created_at = datetime.now()
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self.input_ref = input_ref
        self.input_cleanup = input_cleanup
        self.output_path = output_path
        self.output_name = output_name
        self.args: List[str] = []
        self.error_text = ""
        self.scope = RunScope()

        self._status = JobStatus.CREATED
        self._lock = threading.Lock()
        self._subscribers: Set[Subscription] = set()
        self._finished = False

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    @property
    def status(self) -> JobStatus:
        with self._lock:
            return self._status

    def subscribe(self, maxsize: int = DEFAULT_BUFFER_SIZE) -> Subscription:
        """
        Register a new subscriber.

        Its first event is always the current status. On a job that
        already finished, that status is the only event.
        """
        sub = Subscription(maxsize)
        with self._lock:
            sub.offer(JobEvent.status(self._status))
            if self._finished:
                sub.finish()
            else:
                self._subscribers.add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(sub)
        sub.close()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def close_subscribers(self) -> None:
        """End every open stream; used on eviction."""
        with self._lock:
            subs = list(self._subscribers)
            self._subscribers.clear()
            self._finished = True
        for sub in subs:
            sub.finish()

    def _publish_locked(self, event: JobEvent) -> None:
        if self._finished:
            return
        if event.terminal:
            self._finish_locked(event)
            return
        for sub in self._subscribers:
            sub.offer(event)

    def _finish_locked(self, *events: JobEvent) -> None:
        for sub in self._subscribers:
            sub.finish(*events)
        self._subscribers.clear()
        self._finished = True

    def publish(self, event: JobEvent) -> None:
        """Deliver `event` to every subscriber without blocking."""
        with self._lock:
            self._publish_locked(event)

    def publish_progress(self, snapshot: ProgressSnapshot) -> None:
        """Progress sink for RunSupervisor."""
        self.publish(JobEvent.encode(EventType.PROGRESS, snapshot.to_payload()))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition_locked(self, target: JobStatus, closing: Optional[JobEvent] = None) -> None:
        validate_job_transition(self._status, target)
        self._status = target
        if closing is None:
            self._publish_locked(JobEvent.status(target))
        elif not self._finished:
            # Final status and closing event share the reserved tail
            self._finish_locked(JobEvent.status(target), closing)

    def mark_running(self) -> None:
        with self._lock:
            self._transition_locked(JobStatus.RUNNING)
            self.started_at = datetime.now()
        logger.info(f"[Job] {self.id} running")

    def mark_done(self, payload: Dict[str, Any]) -> None:
        """Transition to DONE and publish the terminal done event."""
        with self._lock:
            self._transition_locked(JobStatus.DONE, JobEvent.encode(EventType.DONE, payload))
            self.completed_at = datetime.now()
        logger.info(f"[Job] {self.id} done")

    def mark_failed(self, error_text: str) -> None:
        """Transition to ERROR and publish the terminal error event."""
        with self._lock:
            self._transition_locked(JobStatus.ERROR, JobEvent(EventType.ERROR.value, error_text))
            self.completed_at = datetime.now()
            self.error_text = error_text
        logger.warning(f"[Job] {self.id} failed: {error_text}")

    @property
    def terminal(self) -> bool:
        return is_job_terminal(self.status)

    def view(self) -> JobView:
        with self._lock:
            return JobView(
                id=self.id,
                status=self._status,
                created_at=self.created_at,
                started_at=self.started_at,
                completed_at=self.completed_at,
                input_ref=self.input_ref,
                output_name=self.output_name,
                error_text=self.error_text,
                args=list(self.args),
                subscribers=len(self._subscribers),
            )
