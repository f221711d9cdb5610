"""Job lifecycle engine: records, bounded queue, worker pool, pipeline, recovery."""

from .backends import ArtifactStorage, JobStore, RemoteUploader, Transcoder
from .errors import (
    InvalidTransition,
    JobNotFound,
    NotificationError,
    QueueClosed,
    QueueFull,
    StartupError,
    StoreError,
    TranscodeCancelled,
    TranscodeError,
    TranscoderServiceError,
    UploadError,
)
from .job_queue import BoundedQueue
from .models import Job, JobResponse, JobStatus, NotificationPayload, QueueEntry
from .pipeline import JobPipeline
from .recovery import RecoveryReport, recover_pending_jobs
from .sqlite_store import SQLiteJobStore
from .worker import WorkerPool

__all__ = [
    "ArtifactStorage",
    "JobStore",
    "RemoteUploader",
    "Transcoder",
    "InvalidTransition",
    "JobNotFound",
    "NotificationError",
    "QueueClosed",
    "QueueFull",
    "StartupError",
    "StoreError",
    "TranscodeCancelled",
    "TranscodeError",
    "TranscoderServiceError",
    "UploadError",
    "BoundedQueue",
    "Job",
    "JobResponse",
    "JobStatus",
    "NotificationPayload",
    "QueueEntry",
    "JobPipeline",
    "RecoveryReport",
    "recover_pending_jobs",
    "SQLiteJobStore",
    "WorkerPool",
]
