"""Bounded in-memory job queue with a running set.

The buffer is small and finite on purpose: a full queue is a backpressure
signal to the submitter (QueueFull), never a silent drop and never a block.
"""

import logging
import queue
import threading
from typing import Iterator, Optional, Set

from .errors import QueueClosed, QueueFull
from .models import Job, QueueEntry

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


class BoundedQueue:
    """Fixed-capacity FIFO of queue entries plus the set of running job ids.

    Thread safety:
    - The entry buffer is a ``queue.Queue``; each entry is handed to exactly
      one consumer.
    - The running set and the closed flag are guarded by ``_lock``. Critical
      sections never block or call out to other components.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"queue capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._entries: "queue.Queue[QueueEntry]" = queue.Queue(maxsize=capacity)
        self._running: Set[str] = set()
        self._lock = threading.Lock()
        self._closed = False

    def enqueue(self, job: Job) -> QueueEntry:
        """Add a job without blocking.

        Raises:
            QueueFull: Buffer is at capacity (queue unchanged)
            QueueClosed: Queue was closed for shutdown
        """
        entry = QueueEntry(job_id=job.id)
        with self._lock:
            if self._closed:
                raise QueueClosed("job queue is closed")
            try:
                self._entries.put_nowait(entry)
            except queue.Full:
                raise QueueFull(self.capacity) from None
        logger.info("Job %s enqueued (%d buffered)", job.id, self.size())
        return entry

    def dequeue(self, timeout: Optional[float] = None) -> Optional[QueueEntry]:
        """Take the next entry, waiting up to ``timeout`` seconds.

        Returns:
            The entry, or None if nothing arrived in time or the queue is closed
        """
        if self.closed:
            return None
        try:
            entry = self._entries.get(timeout=timeout)
        except queue.Empty:
            return None
        self._entries.task_done()
        return entry

    def stream(
        self,
        stop_event: Optional[threading.Event] = None,
        poll_interval: float = 0.2,
    ) -> Iterator[QueueEntry]:
        """Lazy blocking sequence of entries for one consumer.

        Ends when ``stop_event`` is set or the queue is closed. Several
        consumers may iterate concurrently; no entry is delivered twice.
        """
        while not self.closed and not (stop_event is not None and stop_event.is_set()):
            entry = self.dequeue(timeout=poll_interval)
            if entry is not None:
                yield entry

    def mark_running(self, job_id: str) -> None:
        with self._lock:
            self._running.add(job_id)

    def mark_done(self, job_id: str) -> None:
        with self._lock:
            self._running.discard(job_id)

    def is_running(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._running

    def running_count(self) -> int:
        with self._lock:
            return len(self._running)

    def running_ids(self) -> Set[str]:
        with self._lock:
            return set(self._running)

    def size(self) -> int:
        """Buffered entries not yet handed to a worker."""
        return self._entries.qsize()

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def close(self) -> None:
        """Stop handing out entries. Jobs already dequeued run to completion."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        logger.info("Job queue closed with %d buffered entries", self.size())
