"""Exception types raised by the job engine and its collaborators."""

from typing import Optional


class TranscoderServiceError(Exception):
    """Base class for every error raised by the service."""


class QueueFull(TranscoderServiceError):
    """Raised by enqueue when the bounded buffer is at capacity."""

    def __init__(self, capacity: int):
        super().__init__(f"job queue is full (capacity {capacity})")
        self.capacity = capacity


class QueueClosed(TranscoderServiceError):
    """Raised by enqueue after the queue has been closed for shutdown."""


class JobNotFound(TranscoderServiceError):
    def __init__(self, job_id: str):
        super().__init__(f"job not found: {job_id}")
        self.job_id = job_id


class InvalidTransition(TranscoderServiceError):
    """Raised when a status change is not an edge of the job state machine."""

    def __init__(self, job_id: str, from_status: str, to_status: str):
        super().__init__(f"job {job_id}: illegal transition {from_status} -> {to_status}")
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status


class TranscodeError(TranscoderServiceError):
    """Transcoding failed. ``error_type`` classifies the cause for diagnostics."""

    def __init__(self, message: str, error_type: Optional[str] = None):
        super().__init__(message)
        self.error_type = error_type


class TranscodeCancelled(TranscoderServiceError):
    """The transcode was interrupted by the worker pool shutting down."""


class UploadError(TranscoderServiceError):
    pass


class NotificationError(TranscoderServiceError):
    """Webhook delivery gave up (attempts exhausted or deadline passed)."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class StoreError(TranscoderServiceError):
    pass


class StartupError(TranscoderServiceError):
    """A process-level precondition failed; the service must not start."""
