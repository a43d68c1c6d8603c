"""
Jobs layer: job lifecycle, per-job broadcast, store and eviction.
"""

from .errors import (
    JobError,
    JobNotFoundError,
    InvalidStateTransitionError,
    ArtifactNotReadyError,
)
from .models import EventType, JobEvent, JobStatus, JobView
from .broadcast import Subscription
from .job import Job
from .registry import JobStore
from .eviction import EvictionScheduler, ManualClock
from .engine import JobEngine

__all__ = [
    # Errors
    "JobError",
    "JobNotFoundError",
    "InvalidStateTransitionError",
    "ArtifactNotReadyError",
    # Models
    "EventType",
    "JobEvent",
    "JobStatus",
    "JobView",
    # Runtime
    "Subscription",
    "Job",
    "JobStore",
    "EvictionScheduler",
    "ManualClock",
    "JobEngine",
]
