"""Fixed-size worker pool draining the bounded queue.

Each worker is a thread with its own pull loop:
- Waits for the next entry (interruptible by stop())
- Marks the job running, runs the processor, marks it done
- Catches anything the processor raises so one job can never take a
  worker (or the pool) down with it
"""

import logging
import threading
import time
from typing import Callable, List, Optional

from .job_queue import BoundedQueue
from .models import QueueEntry

logger = logging.getLogger(__name__)

# processor(job_id, stop_event); stop_event is set when the pool shuts down
Processor = Callable[[str, threading.Event], None]
# failure_handler(job_id, exc) for exceptions that escaped the processor
FailureHandler = Callable[[str, BaseException], None]


class WorkerPool:
    """N worker threads, fixed for the pool's lifetime.

    Lifecycle:
        pool = WorkerPool(queue, 2, processor)
        pool.start()          # exactly once
        ...
        pool.stop(timeout=30) # accept no new work, wait for in-flight jobs
    """

    def __init__(
        self,
        queue: BoundedQueue,
        num_workers: int,
        processor: Processor,
        failure_handler: Optional[FailureHandler] = None,
        poll_interval: float = 0.2,
    ):
        """Create the pool (no threads are started yet).

        Args:
            queue: Queue to pull entries from
            num_workers: Number of worker threads (>= 1)
            processor: Callable run once per job
            failure_handler: Called with (job_id, exc) when the processor raises
            poll_interval: How often an idle worker re-checks the stop signal
        """
        if num_workers < 1:
            raise ValueError(f"worker pool needs at least one worker, got {num_workers}")

        self.queue = queue
        self.num_workers = num_workers
        self.processor = processor
        self.failure_handler = failure_handler
        self.poll_interval = poll_interval

        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._started = False

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def start(self) -> None:
        """Launch all workers.

        Raises:
            RuntimeError: If the pool was already started
        """
        if self._started:
            raise RuntimeError("worker pool already started")
        self._started = True

        logger.info("Starting worker pool with %d workers", self.num_workers)
        for worker_id in range(self.num_workers):
            thread = threading.Thread(
                target=self._worker_loop,
                args=(worker_id,),
                name=f"transcode-worker-{worker_id}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Signal shutdown and wait for every worker to exit.

        Workers stop waiting for new entries immediately; a worker in the
        middle of a job finishes it first (the processor receives the stop
        event to interrupt long collaborator calls cooperatively).

        Args:
            timeout: Overall bound in seconds (None = wait forever)

        Returns:
            True if every worker exited in time
        """
        logger.info("Stopping worker pool...")
        self._stop_event.set()

        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in self._threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(timeout=remaining)

        alive = [t.name for t in self._threads if t.is_alive()]
        if alive:
            logger.warning("Worker pool stop timed out; still running: %s", ", ".join(alive))
            return False

        logger.info("Worker pool stopped")
        return True

    def _worker_loop(self, worker_id: int) -> None:
        logger.info("Worker %d started", worker_id)
        for entry in self.queue.stream(self._stop_event, self.poll_interval):
            self._process_entry(worker_id, entry)
        logger.info("Worker %d stopping", worker_id)

    def _process_entry(self, worker_id: int, entry: QueueEntry) -> None:
        job_id = entry.job_id
        logger.info("Worker %d: processing job %s", worker_id, job_id)

        self.queue.mark_running(job_id)
        start = time.monotonic()
        try:
            self.processor(job_id, self._stop_event)
        except Exception as e:
            duration = time.monotonic() - start
            logger.exception(
                "Worker %d: job %s crashed after %.1fs: %s", worker_id, job_id, duration, e
            )
            self._handle_failure(job_id, e)
        else:
            duration = time.monotonic() - start
            logger.info("Worker %d: job %s finished in %.1fs", worker_id, job_id, duration)
        finally:
            self.queue.mark_done(job_id)

    def _handle_failure(self, job_id: str, exc: BaseException) -> None:
        if self.failure_handler is None:
            return
        try:
            self.failure_handler(job_id, exc)
        except Exception:
            logger.exception("Failure handler raised for job %s", job_id)
