"""
State transition validation for jobs.

Job lifecycle: CREATED → RUNNING → DONE | ERROR

INVARIANT: Terminal job states (DONE, ERROR) are immutable. Once a job
enters a terminal state, no state transition is allowed.
"""

from typing import FrozenSet, Set, Tuple

from .errors import InvalidStateTransitionError
from .models import JobStatus


TERMINAL_JOB_STATES: FrozenSet[JobStatus] = frozenset({
    JobStatus.DONE,
    JobStatus.ERROR,
})


_JOB_TRANSITIONS: Set[Tuple[JobStatus, JobStatus]] = {
    (JobStatus.CREATED, JobStatus.RUNNING),
    (JobStatus.RUNNING, JobStatus.DONE),
    (JobStatus.RUNNING, JobStatus.ERROR),
}


def is_job_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_JOB_STATES


def can_transition_job(from_status: JobStatus, to_status: JobStatus) -> bool:
    """
    Check if a job state transition is legal.

    Terminal states cannot transition anywhere, not even to themselves:
    reaching a terminal state twice would publish two terminal events.
    """
    if is_job_terminal(from_status):
        return False
    return (from_status, to_status) in _JOB_TRANSITIONS


def validate_job_transition(from_status: JobStatus, to_status: JobStatus) -> None:
    """
    Raises:
        InvalidStateTransitionError: If the transition is not allowed
    """
    if not can_transition_job(from_status, to_status):
        raise InvalidStateTransitionError(from_status.value, to_status.value)
