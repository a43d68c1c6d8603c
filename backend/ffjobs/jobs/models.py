"""
Job data models.

Status and event vocabularies shared by the job, its subscribers and the
HTTP layer, plus the read-only JobView handed out to callers.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """
    Job-level status.

    CREATED → RUNNING → DONE | ERROR. DONE and ERROR are terminal.
    """

    CREATED = "created"  # Registered, subprocess not launched yet
    RUNNING = "running"  # Subprocess launched
    DONE = "done"  # Exited cleanly, artifact available
    ERROR = "error"  # Failed, timed out or was cancelled


class EventType(str, Enum):
    """Names of events published to subscribers."""

    STATUS = "status"
    PROGRESS = "progress"
    DONE = "done"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventType.DONE.value, EventType.ERROR.value})


@dataclass(frozen=True)
class JobEvent:
    """One published event: a name and a string payload."""

    name: str
    data: str = ""

    @property
    def terminal(self) -> bool:
        return self.name in TERMINAL_EVENTS

    @classmethod
    def status(cls, status: JobStatus) -> "JobEvent":
        return cls(EventType.STATUS.value, status.value)

    @classmethod
    def encode(cls, event_type: EventType, payload: Any) -> "JobEvent":
        return cls(event_type.value, json.dumps(payload, separators=(",", ":")))


class JobView(BaseModel):
    """Read-only snapshot of a job for API responses."""

    model_config = ConfigDict(extra="forbid")

    id: str
    status: JobStatus
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    input_ref: str = ""
    output_name: str = ""
    error_text: str = ""
    args: List[str] = Field(default_factory=list)
    subscribers: int = 0
