"""
In-memory job store.

Maps job ids to Job instances. Entries are added on creation and
removed on eviction; a removed id is never handed out again.
State is volatile: nothing survives a restart.
"""

import threading
from typing import Dict, List, Optional

from .errors import JobNotFoundError
from .job import Job


class JobStore:
    """
    Thread-safe id → Job mapping.

    Passed explicitly to every component that needs it.
    """

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def add(self, job: Job) -> None:
        """
        Raises:
            ValueError: If a job with the same ID already exists
        """
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job with ID '{job.id}' already exists")
            self._jobs[job.id] = job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def get_or_raise(self, job_id: str) -> Job:
        """
        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def remove(self, job_id: str) -> Optional[Job]:
        """
        Remove and return the job, or None if it was already gone.

        Only the first caller gets the job back, which makes eviction
        idempotent.
        """
        with self._lock:
            return self._jobs.pop(job_id, None)

    def list(self) -> List[Job]:
        """All jobs, newest first."""
        with self._lock:
            jobs = list(self._jobs.values())
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs

    def count(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs
