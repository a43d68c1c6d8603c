"""
Job-specific error types.

All errors inherit from JobError for easy catching.
"""


class JobError(Exception):
    """Base exception for all job-related failures."""
    pass


class JobNotFoundError(JobError):
    """Raised when a job id is unknown or already evicted."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidStateTransitionError(JobError):
    """Raised when attempting an illegal state transition."""

    def __init__(self, current_state: str, target_state: str):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(f"Invalid job state transition: {current_state} -> {target_state}")


class ArtifactNotReadyError(JobError):
    """Raised when the output of a job that is not done is requested."""

    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Job {job_id} is not done (status: {status})")
