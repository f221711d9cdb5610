"""Per-job processing pipeline run by a worker.

Stages, in order:
    1. persist processing
    2. transcode (progress persisted, rate-limited)
    3. remote upload (only when an uploader is configured)
    4. persist completed
    5. release local artifacts (only after a successful upload)
    6. notify (detached)

Any stage failure is terminal for the job. Cancellation is cooperative: the
stored record is re-read before every stage, and every write the worker makes
is conditional on the status it expects, so a cancel is never overwritten.
"""

import logging
import threading
import time
from pathlib import Path
from typing import FrozenSet, Optional

from .backends import ArtifactStorage, JobStore, RemoteUploader, Transcoder
from .errors import JobNotFound, TranscodeCancelled, TranscodeError, UploadError
from .models import ACTIVE_STATUSES, Job, JobStatus, NotificationPayload

logger = logging.getLogger(__name__)


class JobCancelledDuringProcessing(Exception):
    """Internal signal: the stored record was cancelled (or deleted) between stages."""

    def __init__(self, deleted: bool = False):
        super().__init__()
        self.deleted = deleted


class ProgressReporter:
    """Progress callback handed to the transcoder.

    Updates the in-memory record on every call and persists it at most once
    per ``interval_s`` (plus always at 100%). The transcoder may call it as
    often as it likes.
    """

    def __init__(self, job: Job, store: JobStore, interval_s: float = 1.0):
        self.job = job
        self.store = store
        self.interval_s = interval_s
        self._last_persist: Optional[float] = None
        self._dirty = False

    def __call__(self, progress: int) -> None:
        if not self.job.set_progress(progress):
            return
        self._dirty = True
        now = time.monotonic()
        if (
            self._last_persist is None
            or self.job.progress >= 100
            or now - self._last_persist >= self.interval_s
        ):
            self.flush(now)

    def flush(self, now: Optional[float] = None) -> None:
        if not self._dirty:
            return
        self._dirty = False
        self._last_persist = time.monotonic() if now is None else now
        if not self.store.update(self.job, only_if_status={JobStatus.PROCESSING}):
            logger.debug("Job %s: progress not persisted, record no longer processing", self.job.id)


class JobPipeline:
    """Runs transcode → upload → cleanup → notify for one job at a time.

    An instance is shared by all workers; per-job state lives on the stack.
    Used as the worker pool's processor and failure handler.
    """

    def __init__(
        self,
        store: JobStore,
        transcoder: Transcoder,
        storage: ArtifactStorage,
        notifier,
        uploader: Optional[RemoteUploader] = None,
        progress_persist_interval_s: float = 1.0,
    ):
        """Initialize the pipeline.

        Args:
            store: Job record store
            transcoder: Transcode collaborator
            storage: Local artifact owner (space reclamation after upload)
            notifier: Object with ``send_async(NotificationPayload)``
            uploader: Remote upload collaborator, or None to skip uploads
            progress_persist_interval_s: Minimum gap between progress writes
        """
        self.store = store
        self.transcoder = transcoder
        self.storage = storage
        self.notifier = notifier
        self.uploader = uploader
        self.progress_persist_interval_s = progress_persist_interval_s

    def __call__(self, job_id: str, stop_event: threading.Event) -> None:
        self.process(job_id, stop_event)

    def process(self, job_id: str, stop_event: Optional[threading.Event] = None) -> Optional[Job]:
        """Run the pipeline for ``job_id``.

        Returns:
            The final in-memory record, or None if the job was skipped
        """
        stop_event = stop_event or threading.Event()

        try:
            job = self.store.get(job_id)
        except JobNotFound:
            logger.warning("Job %s no longer exists, skipping", job_id)
            return None

        if job.is_terminal:
            logger.info("Job %s is already %s, skipping", job_id, JobStatus(job.status).value)
            return None

        # 1. pending → processing, persisted before any work starts
        if JobStatus(job.status) == JobStatus.PENDING:
            job.start_processing()
            if not self.store.update(job, only_if_status={JobStatus.PENDING}):
                logger.info("Job %s changed before it could start, skipping", job_id)
                return None

        try:
            # 2. Transcode
            self._check_cancelled(job)
            reporter = ProgressReporter(job, self.store, self.progress_persist_interval_s)
            try:
                self.transcoder.run(
                    job.input_path,
                    job.output_path,
                    progress_callback=reporter,
                    cancel_event=stop_event,
                )
            except TranscodeCancelled:
                reporter.flush()
                logger.warning(
                    "Job %s interrupted by shutdown; left as processing for recovery", job_id
                )
                return job
            except TranscodeError as e:
                reporter.flush()
                return self._fail(job, f"transcoding failed: {e}")
            reporter.flush()

            # 3. Remote upload
            remote_id = remote_url = None
            if self.uploader is not None:
                self._check_cancelled(job)
                try:
                    remote_id, remote_url = self.uploader.upload(
                        job.output_path, self.display_name(job)
                    )
                except UploadError as e:
                    return self._fail(job, f"upload failed: {e}")

            # 4. Completed
            self._check_cancelled(job)
            job.complete(remote_id=remote_id, remote_url=remote_url)
            if not self.store.update(job, only_if_status={JobStatus.PROCESSING}):
                self._check_cancelled(job)
                raise JobCancelledDuringProcessing()
            logger.info("Job %s completed", job_id)

        except JobCancelledDuringProcessing as e:
            logger.info("Job %s was cancelled, stopping pipeline", job_id)
            # A cancelled job keeps no output; a deleted one keeps no files at all.
            paths = [job.input_path, job.output_path] if e.deleted else [job.output_path]
            self.storage.release(*paths)
            return None

        # 5. Space reclamation; the job's terminal state does not depend on it
        if remote_id is not None:
            self.storage.release(job.input_path, job.output_path)

        # 6. Notify
        self._notify(job)
        return job

    def _check_cancelled(self, job: Job) -> None:
        try:
            stored = self.store.get(job.id)
        except JobNotFound:
            raise JobCancelledDuringProcessing(deleted=True) from None
        if JobStatus(stored.status) == JobStatus.CANCELLED:
            raise JobCancelledDuringProcessing()

    def _fail(
        self,
        job: Job,
        message: str,
        expected: FrozenSet[JobStatus] = frozenset({JobStatus.PROCESSING}),
    ) -> Optional[Job]:
        logger.error("Job %s failed: %s", job.id, message)
        job.fail(message)
        if not self.store.update(job, only_if_status=expected):
            logger.info("Job %s was cancelled before its failure was recorded", job.id)
            return None
        self._notify(job)
        return job

    def _notify(self, job: Job) -> None:
        try:
            self.notifier.send_async(NotificationPayload.from_job(job))
        except Exception:
            logger.exception("Could not schedule notification for job %s", job.id)

    def handle_crash(self, job_id: str, exc: BaseException) -> None:
        """Failure handler for the worker pool: record an unexpected crash as failed."""
        try:
            job = self.store.get(job_id)
        except JobNotFound:
            return
        if job.is_terminal:
            return
        if JobStatus(job.status) == JobStatus.PENDING:
            job.start_processing()
        self._fail(job, f"internal error: {type(exc).__name__}: {exc}", ACTIVE_STATUSES)

    @staticmethod
    def display_name(job: Job) -> str:
        """Remote file name: the caller's file name with an .mp4 extension."""
        stem = Path(job.original_name).stem if job.original_name else ""
        if not stem:
            return f"{job.id}.mp4"
        return f"{stem}.mp4"
