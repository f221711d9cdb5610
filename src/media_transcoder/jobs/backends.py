from __future__ import annotations

"""Abstract interfaces for the collaborators of the job engine.

The engine (queue, worker pool, pipeline, recovery) only talks to these
interfaces. Concrete implementations live in sqlite_store.py, ffmpeg_runner.py
and the storage package; tests substitute in-memory fakes.
"""

import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Tuple

if TYPE_CHECKING:
    from .models import Job, JobStatus


ProgressCallback = Callable[[int], None]


class JobStore(ABC):
    """Persistent record store for jobs.

    Implementations must:
    - Serialize single-row writes (many threads call concurrently)
    - Accept idempotent ``update`` calls (same full record saved twice)
    - Hide soft-deleted records from ``get`` and the list queries
    """

    @abstractmethod
    def create(self, job: "Job") -> None:
        """Insert a new record.

        Raises:
            StoreError: If a record with the same id already exists
        """
        pass

    @abstractmethod
    def get(self, job_id: str) -> "Job":
        """Fetch a record by id.

        Raises:
            JobNotFound: If no live record has this id
        """
        pass

    @abstractmethod
    def update(
        self,
        job: "Job",
        only_if_status: Optional[Iterable["JobStatus"]] = None,
    ) -> bool:
        """Save the full record.

        Args:
            job: Record to save
            only_if_status: If given, the write only happens when the stored
                status is one of these (compare-and-set on status)

        Returns:
            True if the row was written, False if the condition did not hold
            or the record no longer exists
        """
        pass

    @abstractmethod
    def list_by_status(self, statuses: Iterable["JobStatus"]) -> List["Job"]:
        """Live records whose status is in ``statuses``, oldest first."""
        pass

    @abstractmethod
    def list_jobs(self, limit: int = 20, offset: int = 0) -> Tuple[List["Job"], int]:
        """Page of live records, newest first, plus the total live count."""
        pass

    @abstractmethod
    def soft_delete(self, job_id: str) -> None:
        """Mark a record deleted.

        Raises:
            JobNotFound: If no live record has this id
        """
        pass


class Transcoder(ABC):
    """Converts an input file into the output format."""

    @abstractmethod
    def run(
        self,
        input_path: str,
        output_path: str,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Transcode synchronously.

        ``progress_callback`` may be called any number of times (including
        zero) with a percentage. When ``cancel_event`` is set the call must
        stop the work promptly and raise TranscodeCancelled.

        Raises:
            TranscodeError: On failure
            TranscodeCancelled: If interrupted through ``cancel_event``
        """
        pass


class RemoteUploader(ABC):
    """Uploads a finished artifact to a remote store."""

    @abstractmethod
    def upload(self, local_path: str, display_name: str) -> Tuple[str, str]:
        """Upload a file.

        Returns:
            Tuple of (remote_id, remote_url)

        Raises:
            UploadError: On failure
        """
        pass


class ArtifactStorage(ABC):
    """Owner of local input and output files."""

    @abstractmethod
    def release(self, *paths: str) -> None:
        """Delete local files. Best effort: errors are logged, never raised."""
        pass
