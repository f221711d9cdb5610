"""Crash recovery: re-enqueue jobs left unfinished by a previous process."""

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import List

from .backends import JobStore
from .errors import QueueClosed, QueueFull, StoreError
from .job_queue import BoundedQueue
from .models import ACTIVE_STATUSES, JobStatus

logger = logging.getLogger(__name__)


@dataclass
class RecoveryReport:
    """Outcome of one recovery pass."""

    recovered: List[str] = field(default_factory=list)  # reset to pending
    enqueued: List[str] = field(default_factory=list)  # reset and queued
    skipped: List[str] = field(default_factory=list)  # reset but queue was full


def recover_pending_jobs(store: JobStore, queue: BoundedQueue) -> RecoveryReport:
    """Reset pending/processing records to pending and enqueue them.

    Runs once at startup, after the worker pool exists but before it starts
    pulling. A job interrupted mid-transcode starts over from zero.

    Failure handling:
    - Store read failure: logged, nothing is recovered
    - Queue full: logged; the record stays pending in storage without a
      queue entry until the next restart
    """
    report = RecoveryReport()

    try:
        jobs = store.list_by_status(ACTIVE_STATUSES)
    except (StoreError, sqlite3.Error) as e:
        logger.warning("Failed to recover pending jobs: %s", e)
        return report

    if not jobs:
        return report

    logger.info("Recovering %d pending jobs", len(jobs))
    for job in jobs:
        job.reset_for_recovery()
        try:
            written = store.update(job, only_if_status=ACTIVE_STATUSES)
        except (StoreError, sqlite3.Error) as e:
            logger.warning("Failed to reset job %s: %s", job.id, e)
            continue
        if not written:
            logger.info("Job %s changed during recovery, skipping", job.id)
            continue
        report.recovered.append(job.id)

        try:
            queue.enqueue(job)
        except (QueueFull, QueueClosed) as e:
            logger.warning(
                "Failed to re-enqueue job %s: %s (left %s until next restart)",
                job.id, e, JobStatus.PENDING.value,
            )
            report.skipped.append(job.id)
            continue
        report.enqueued.append(job.id)

    logger.info(
        "Recovery finished: %d reset, %d enqueued, %d skipped",
        len(report.recovered), len(report.enqueued), len(report.skipped),
    )
    return report
