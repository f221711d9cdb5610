import threading
import time
import uuid
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

from media_transcoder.config import merge_dicts
from media_transcoder.jobs import (
    BoundedQueue,
    Job,
    NotificationPayload,
    RemoteUploader,
    SQLiteJobStore,
    Transcoder,
    TranscodeError,
)
from media_transcoder.models import TranscoderConfig
from media_transcoder.service import TranscoderService
from media_transcoder.storage import LocalStorage


class FakeTranscoder(Transcoder):
    """Writes the output file and reports the configured progress steps.

    ``fail_with`` makes run() raise TranscodeError; ``gate`` blocks run()
    until the event is set (used to hold a job in flight).
    """

    def __init__(self, steps=(0, 50, 100), fail_with: Optional[str] = None, gate=None):
        self.steps = steps
        self.fail_with = fail_with
        self.gate = gate
        self.started = threading.Event()
        self.calls: List[Tuple[str, str]] = []

    def run(self, input_path, output_path, progress_callback=None, cancel_event=None):
        self.calls.append((input_path, output_path))
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.fail_with:
            raise TranscodeError(self.fail_with, "permanent")
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_bytes(b"mp4")
        for step in self.steps:
            if progress_callback is not None:
                progress_callback(step)


class FakeUploader(RemoteUploader):
    def __init__(self, remote_id="x", fail_with: Optional[Exception] = None):
        self.remote_id = remote_id
        self.fail_with = fail_with
        self.uploads: List[Tuple[str, str]] = []

    def upload(self, local_path, display_name):
        self.uploads.append((local_path, display_name))
        if self.fail_with is not None:
            raise self.fail_with
        return self.remote_id, f"https://drive.example/{self.remote_id}"


class RecordingNotifier:
    """Collects payloads instead of posting them."""

    def __init__(self):
        self.payloads: List[NotificationPayload] = []
        self.sent = threading.Event()

    def send_async(self, payload):
        self.payloads.append(payload)
        self.sent.set()
        return None

    def close(self):
        pass


@pytest.fixture
def store(tmp_path):
    """SQLite job store in a temporary directory."""
    s = SQLiteJobStore(str(tmp_path / "jobs.db"))
    yield s
    s.close()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "files"))


@pytest.fixture
def queue():
    return BoundedQueue(capacity=10)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_job(store, storage):
    """Create and persist a pending job with a real input file."""

    def _make(original_name="movie.mov", status=None, persist=True):
        job_id = str(uuid.uuid4())
        input_path = storage.uploads_dir / f"{job_id}.mov"
        input_path.write_bytes(b"source")
        job = Job(
            id=job_id,
            input_path=str(input_path),
            output_path=storage.output_path(job_id),
            original_name=original_name,
        )
        if status is not None:
            job.status = status
        if persist:
            store.create(job)
        return job

    return _make


@pytest.fixture
def make_service(tmp_path, store, storage, notifier):
    """TranscoderService wired to the test store, storage and fakes."""
    services = []

    def _make(transcoder=None, uploader=None, **sections):
        data = merge_dicts(
            {
                "storage": {"temp_dir": str(tmp_path)},
                "workers": {"progress_persist_interval_s": 0, "shutdown_timeout_s": 2},
            },
            sections,
        )
        service = TranscoderService(
            TranscoderConfig.from_dict(data),
            store=store,
            transcoder=transcoder or FakeTranscoder(),
            uploader=uploader,
            notifier=notifier,
            storage=storage,
            poll_interval=0.01,
        )
        services.append(service)
        return service

    yield _make

    for service in services:
        service.stop(timeout=2)


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False
