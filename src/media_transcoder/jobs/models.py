"""Pydantic models for job records, queue entries and webhook payloads.

The job state machine lives here as well:

    pending    → processing   (worker dequeues)
    pending    → cancelled    (delete request before a worker picks it up)
    processing → completed    (every pipeline stage succeeded)
    processing → failed       (first stage error)
    processing → cancelled    (delete request while in flight, cooperative)

completed, failed and cancelled are terminal. Crash recovery forces a
non-terminal record back to pending through reset_for_recovery(), which is
deliberately not an edge of the machine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, Field

from .errors import InvalidTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """RFC 3339 in UTC with a trailing Z."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class JobStatus(str, Enum):
    """Job processing states."""

    PENDING = "pending"  # Created, waiting for a worker
    PROCESSING = "processing"  # Owned by a worker
    COMPLETED = "completed"  # Transcoded (and uploaded, if configured)
    FAILED = "failed"  # A pipeline stage failed
    CANCELLED = "cancelled"  # Cancelled by a delete request

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)
ACTIVE_STATUSES: FrozenSet[JobStatus] = frozenset({JobStatus.PENDING, JobStatus.PROCESSING})

ALLOWED_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def can_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS[JobStatus(from_status)]


class Job(BaseModel):
    """Persistent unit of work.

    Mutate through the transition methods only; each one validates the edge
    and advances ``updated_at``.
    """

    id: str = Field(..., description="Job identifier (UUID)")
    status: JobStatus = Field(default=JobStatus.PENDING, description="Current job state")
    progress: int = Field(default=0, ge=0, le=100, description="Transcode progress percentage")
    input_path: str = Field(..., description="Uploaded source file")
    output_path: str = Field(..., description="Transcoded output file")
    remote_id: Optional[str] = Field(default=None, description="Remote store file id")
    remote_url: Optional[str] = Field(default=None, description="Shareable remote link")
    error: Optional[str] = Field(default=None, description="Failure cause")
    original_name: str = Field(default="", description="Caller-supplied filename")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = Field(default=None)
    deleted_at: Optional[datetime] = Field(default=None, description="Soft delete marker")

    def _transition(self, to_status: JobStatus) -> datetime:
        if not can_transition(self.status, to_status):
            raise InvalidTransition(self.id, JobStatus(self.status).value, to_status.value)
        now = utcnow()
        self.status = to_status
        self.updated_at = now
        return now

    def start_processing(self) -> None:
        self._transition(JobStatus.PROCESSING)

    def set_progress(self, progress: int) -> bool:
        """Raise progress, clamped to 0-100. Returns False if nothing changed.

        Progress never moves backwards while the job is processing.
        """
        if self.status != JobStatus.PROCESSING:
            raise InvalidTransition(self.id, JobStatus(self.status).value, "progress")
        progress = max(0, min(100, int(progress)))
        if progress <= self.progress:
            return False
        self.progress = progress
        self.updated_at = utcnow()
        return True

    def complete(self, remote_id: Optional[str] = None, remote_url: Optional[str] = None) -> None:
        now = self._transition(JobStatus.COMPLETED)
        self.progress = 100
        self.completed_at = now
        if remote_id is not None:
            self.remote_id = remote_id
        if remote_url is not None:
            self.remote_url = remote_url

    def fail(self, message: str) -> None:
        now = self._transition(JobStatus.FAILED)
        self.error = message
        self.completed_at = now

    def cancel(self) -> None:
        self._transition(JobStatus.CANCELLED)

    def reset_for_recovery(self) -> None:
        """Force an interrupted job back to pending with progress 0."""
        if JobStatus(self.status) not in ACTIVE_STATUSES:
            raise InvalidTransition(self.id, JobStatus(self.status).value, JobStatus.PENDING.value)
        self.status = JobStatus.PENDING
        self.progress = 0
        self.updated_at = utcnow()

    @property
    def is_terminal(self) -> bool:
        return JobStatus(self.status).is_terminal

    def to_response(self, running: bool = False) -> "JobResponse":
        status = JobStatus(self.status)
        # The worker marks the job running a moment before it persists processing.
        if running and status == JobStatus.PENDING:
            status = JobStatus.PROCESSING
        return JobResponse(
            id=self.id,
            status=status,
            progress=self.progress,
            remote_url=self.remote_url,
            error=self.error,
            original_name=self.original_name,
            created_at=self.created_at,
            completed_at=self.completed_at,
        )


class JobResponse(BaseModel):
    """Job as exposed by the HTTP API."""

    id: str
    status: JobStatus
    progress: int
    remote_url: Optional[str] = None
    error: Optional[str] = None
    original_name: str
    created_at: datetime
    completed_at: Optional[datetime] = None


class NotificationPayload(BaseModel):
    """Webhook body describing a job's terminal outcome."""

    job_id: str
    status: str
    remote_url: Optional[str] = None
    remote_id: Optional[str] = None
    error: Optional[str] = None
    original_name: str
    completed_at: str

    @classmethod
    def from_job(cls, job: Job) -> "NotificationPayload":
        status = JobStatus(job.status)
        if status not in (JobStatus.COMPLETED, JobStatus.FAILED):
            raise ValueError(f"job {job.id} has no terminal outcome to notify ({status.value})")
        succeeded = status == JobStatus.COMPLETED
        return cls(
            job_id=job.id,
            status=status.value,
            remote_url=job.remote_url if succeeded else None,
            remote_id=job.remote_id if succeeded else None,
            error=None if succeeded else job.error,
            original_name=job.original_name,
            completed_at=format_timestamp(job.completed_at or utcnow()),
        )

    def to_json_dict(self) -> dict:
        return self.model_dump(exclude_none=True)


@dataclass(frozen=True)
class QueueEntry:
    """Reference to a job held only while it is routed to a worker."""

    job_id: str
    enqueued_at: datetime = field(default_factory=utcnow)
