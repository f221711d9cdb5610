"""Unit tests for the bounded in-memory queue.

Tests cover:
- FIFO enqueue/dequeue
- Backpressure when the buffer is full
- Closing for shutdown
- Running-set bookkeeping
- Concurrent consumers never share an entry
"""

import threading

import pytest

from media_transcoder.jobs import BoundedQueue, Job, QueueClosed, QueueFull


def _job(job_id):
    return Job(id=job_id, input_path=f"/in/{job_id}", output_path=f"/out/{job_id}.mp4")


class TestEnqueueDequeue:
    def test_fifo_order(self):
        q = BoundedQueue(capacity=3)
        for job_id in ("a", "b", "c"):
            q.enqueue(_job(job_id))

        assert [q.dequeue(timeout=0.1).job_id for _ in range(3)] == ["a", "b", "c"]

    def test_dequeue_empty_returns_none(self):
        q = BoundedQueue(capacity=1)
        assert q.dequeue(timeout=0.05) is None

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            BoundedQueue(capacity=0)


class TestBackpressure:
    """A full queue rejects immediately and leaves the buffer unchanged."""

    def test_queue_full(self):
        q = BoundedQueue(capacity=2)
        q.enqueue(_job("a"))
        q.enqueue(_job("b"))

        with pytest.raises(QueueFull) as exc_info:
            q.enqueue(_job("c"))

        assert exc_info.value.capacity == 2
        assert q.size() == 2
        assert q.dequeue(timeout=0.1).job_id == "a"
        assert q.dequeue(timeout=0.1).job_id == "b"
        assert q.dequeue(timeout=0.05) is None

    def test_space_frees_after_dequeue(self):
        q = BoundedQueue(capacity=1)
        q.enqueue(_job("a"))
        q.dequeue(timeout=0.1)
        q.enqueue(_job("b"))
        assert q.size() == 1


class TestClose:
    def test_enqueue_after_close(self):
        q = BoundedQueue(capacity=2)
        q.close()
        with pytest.raises(QueueClosed):
            q.enqueue(_job("a"))

    def test_dequeue_after_close_returns_none(self):
        q = BoundedQueue(capacity=2)
        q.enqueue(_job("a"))
        q.close()
        assert q.closed
        assert q.dequeue(timeout=0.05) is None

    def test_stream_ends_on_stop_event(self):
        q = BoundedQueue(capacity=2)
        q.enqueue(_job("a"))
        stop = threading.Event()

        seen = []
        for entry in q.stream(stop, poll_interval=0.01):
            seen.append(entry.job_id)
            stop.set()

        assert seen == ["a"]


class TestRunningSet:
    def test_mark_running_and_done(self):
        q = BoundedQueue()
        q.mark_running("a")
        q.mark_running("b")
        assert q.is_running("a")
        assert q.running_count() == 2
        assert q.running_ids() == {"a", "b"}

        q.mark_done("a")
        q.mark_done("missing")  # no-op
        assert not q.is_running("a")
        assert q.running_count() == 1

    def test_running_ids_is_a_copy(self):
        q = BoundedQueue()
        q.mark_running("a")
        ids = q.running_ids()
        ids.add("b")
        assert q.running_ids() == {"a"}


class TestConcurrentConsumers:
    def test_each_entry_delivered_once(self):
        q = BoundedQueue(capacity=50)
        for i in range(50):
            q.enqueue(_job(f"job-{i}"))

        seen = []
        lock = threading.Lock()

        def consume():
            while True:
                entry = q.dequeue(timeout=0.05)
                if entry is None:
                    return
                with lock:
                    seen.append(entry.job_id)

        threads = [threading.Thread(target=consume) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert sorted(seen) == sorted(f"job-{i}" for i in range(50))
