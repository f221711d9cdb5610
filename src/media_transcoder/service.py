"""Service wiring: builds the job engine from a TranscoderConfig.

Startup order matters: the worker pool is built, recovery re-enqueues
unfinished jobs, and only then do the workers start pulling.
"""

import logging
import uuid
from typing import BinaryIO, List, Optional, Tuple

from .ffmpeg_runner import FfmpegTranscoder
from .jobs.backends import JobStore, RemoteUploader, Transcoder
from .jobs.errors import QueueClosed, QueueFull, StartupError, StoreError
from .jobs.job_queue import BoundedQueue
from .jobs.models import ACTIVE_STATUSES, Job, JobResponse, JobStatus
from .jobs.pipeline import JobPipeline
from .jobs.recovery import RecoveryReport, recover_pending_jobs
from .jobs.sqlite_store import SQLiteJobStore
from .jobs.worker import WorkerPool
from .models import TranscoderConfig
from .notifier import WebhookNotifier
from .storage.local import LocalStorage

logger = logging.getLogger(__name__)


def build_uploader(config: TranscoderConfig) -> Optional[RemoteUploader]:
    """Drive uploader when configured; a broken setup only disables uploads."""
    if not config.drive.enabled:
        logger.info("Google Drive not configured, outputs stay local")
        return None
    try:
        from .storage.gdrive import GoogleDriveUploader

        return GoogleDriveUploader(config.drive.credentials_file, config.drive.folder_id)
    except (ImportError, OSError, ValueError) as e:
        logger.warning("Failed to initialize Google Drive client: %s", e)
        logger.warning("Service will run without Google Drive upload")
        return None


def build_transcoder(config: TranscoderConfig) -> FfmpegTranscoder:
    tc = config.transcode
    return FfmpegTranscoder(
        video_codec=tc.video_codec,
        preset=tc.preset,
        crf=tc.crf,
        audio_codec=tc.audio_codec,
        audio_bitrate=tc.audio_bitrate,
        global_timeout_s=tc.global_timeout_s,
        no_progress_timeout_s=tc.no_progress_timeout_s,
        kill_grace_period_s=tc.kill_grace_period_s,
        save_artifacts_on_failure=tc.save_artifacts_on_failure,
        ffmpeg_loglevel=tc.ffmpeg_loglevel,
        ffmpeg_path=tc.ffmpeg_path,
        temp_dir=config.storage.temp_dir,
    )


class TranscoderService:
    """Owns the store, queue, worker pool and collaborators for one process.

    Collaborators can be injected (tests); anything not given is built from
    ``config``.
    """

    def __init__(
        self,
        config: TranscoderConfig,
        store: Optional[JobStore] = None,
        transcoder: Optional[Transcoder] = None,
        uploader: Optional[RemoteUploader] = None,
        notifier: Optional[WebhookNotifier] = None,
        storage: Optional[LocalStorage] = None,
        poll_interval: float = 0.2,
    ):
        """Build every component and run the startup checks.

        Raises:
            StartupError: ffmpeg missing, store unavailable, or no workers
        """
        self.config = config

        if config.workers.worker_count < 1:
            raise StartupError(f"worker_count must be >= 1, got {config.workers.worker_count}")

        if transcoder is None:
            transcoder = build_transcoder(config)
            if not transcoder.is_available():
                raise StartupError("ffmpeg not found or not executable")
        self.transcoder = transcoder

        try:
            self.storage = storage or LocalStorage(config.storage.temp_dir)
        except OSError as e:
            raise StartupError(f"failed to create temp directory: {e}") from e

        if store is None:
            try:
                store = SQLiteJobStore(config.storage.database_path)
            except StoreError as e:
                raise StartupError(f"failed to initialize database: {e}") from e
        self.store = store

        self.uploader = uploader if uploader is not None else build_uploader(config)

        wh = config.webhook
        self.notifier = notifier or WebhookNotifier(
            wh.url,
            retry_count=wh.retry_count,
            backoff_base_s=wh.backoff_base_s,
            deadline_s=wh.deadline_s,
            request_timeout_s=wh.request_timeout_s,
        )

        self.queue = BoundedQueue(config.workers.queue_capacity)
        self.pipeline = JobPipeline(
            self.store,
            self.transcoder,
            self.storage,
            self.notifier,
            uploader=self.uploader,
            progress_persist_interval_s=config.workers.progress_persist_interval_s,
        )
        self.pool = WorkerPool(
            self.queue,
            config.workers.worker_count,
            self.pipeline,
            failure_handler=self.pipeline.handle_crash,
            poll_interval=poll_interval,
        )
        self._started = False

    # --- lifecycle ---

    def start(self) -> RecoveryReport:
        """Recover unfinished jobs, then start the workers."""
        report = recover_pending_jobs(self.store, self.queue)
        self.pool.start()
        self._started = True
        logger.info("Started %d transcode workers", self.pool.num_workers)
        return report

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop accepting work and wait for in-flight jobs.

        Returns:
            True if every worker exited within the timeout
        """
        if timeout is None:
            timeout = self.config.workers.shutdown_timeout_s
        self.queue.close()
        clean = True
        if self._started:
            clean = self.pool.stop(timeout=timeout)
            self._started = False
        logger.info("Service stopped%s", "" if clean else " (workers still running)")
        return clean

    def close(self) -> None:
        self.notifier.close()
        if isinstance(self.store, SQLiteJobStore):
            self.store.close()

    # --- submission surface ---

    def submit(self, filename: str, fileobj: BinaryIO) -> Job:
        """Save an upload, create its pending record and enqueue it.

        Raises:
            QueueFull: The queue buffer is full; nothing is kept
            QueueClosed: The service is shutting down; nothing is kept
        """
        job_id = str(uuid.uuid4())
        input_path = self.storage.save_upload(job_id, filename, fileobj)
        job = Job(
            id=job_id,
            input_path=input_path,
            output_path=self.storage.output_path(job_id),
            original_name=filename or "",
        )
        try:
            self.store.create(job)
        except StoreError:
            self.storage.release(input_path)
            raise

        try:
            self.queue.enqueue(job)
        except (QueueFull, QueueClosed):
            self.store.soft_delete(job_id)
            self.storage.release(input_path)
            raise

        logger.info("Job %s created for %s", job_id, job.original_name)
        return job

    def get_job(self, job_id: str) -> JobResponse:
        job = self.store.get(job_id)
        return job.to_response(running=self.queue.is_running(job_id))

    def list_jobs(self, limit: int = 20, offset: int = 0) -> Tuple[List[JobResponse], int]:
        jobs, total = self.store.list_jobs(limit=limit, offset=offset)
        return [j.to_response(running=self.queue.is_running(j.id)) for j in jobs], total

    def cancel(self, job_id: str) -> Job:
        """Mark a non-terminal job cancelled. Terminal jobs are returned unchanged.

        Raises:
            JobNotFound: Unknown or deleted job
        """
        while True:
            job = self.store.get(job_id)
            status = JobStatus(job.status)
            if status not in ACTIVE_STATUSES:
                return job
            job.cancel()
            if self.store.update(job, only_if_status={status}):
                logger.info("Job %s cancelled", job_id)
                return job
            # The worker moved it on between the read and the write; re-read.

    def delete(self, job_id: str) -> None:
        """Cancel if still active, release local files, then soft delete.

        Raises:
            JobNotFound: Unknown or already deleted job
        """
        job = self.cancel(job_id)
        self.storage.release(job.input_path, job.output_path)
        self.store.soft_delete(job_id)
        logger.info("Job %s deleted", job_id)
