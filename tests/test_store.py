"""Tests for the SQLite job store."""

import time

import pytest

from media_transcoder.jobs import JobNotFound, JobStatus, SQLiteJobStore, StoreError


class TestCrud:
    def test_create_and_get_round_trip(self, store, make_job):
        job = make_job("clip.mov")
        loaded = store.get(job.id)

        assert loaded.id == job.id
        assert loaded.status == JobStatus.PENDING
        assert loaded.original_name == "clip.mov"
        assert loaded.created_at == job.created_at

    def test_duplicate_create(self, store, make_job):
        job = make_job()
        with pytest.raises(StoreError):
            store.create(job)

    def test_get_missing(self, store):
        with pytest.raises(JobNotFound):
            store.get("nope")

    def test_update_persists_fields(self, store, make_job):
        job = make_job()
        job.start_processing()
        job.set_progress(42)
        assert store.update(job)

        loaded = store.get(job.id)
        assert loaded.status == JobStatus.PROCESSING
        assert loaded.progress == 42

    def test_survives_reopen(self, tmp_path, make_job, store):
        job = make_job()
        store.close()

        reopened = SQLiteJobStore(str(tmp_path / "jobs.db"))
        try:
            assert reopened.get(job.id).id == job.id
        finally:
            reopened.close()


class TestConditionalUpdate:
    """Status-guarded writes keep a cancel from being overwritten."""

    def test_guard_matches(self, store, make_job):
        job = make_job()
        job.start_processing()
        assert store.update(job, only_if_status={JobStatus.PENDING})

    def test_guard_rejects_after_cancel(self, store, make_job):
        job = make_job()
        worker_copy = store.get(job.id)
        worker_copy.start_processing()
        store.update(worker_copy)

        cancelled = store.get(job.id)
        cancelled.cancel()
        store.update(cancelled)

        worker_copy.complete()
        assert not store.update(worker_copy, only_if_status={JobStatus.PROCESSING})
        assert store.get(job.id).status == JobStatus.CANCELLED

    def test_empty_guard_never_writes(self, store, make_job):
        job = make_job()
        job.cancel()
        assert not store.update(job, only_if_status=[])


class TestListing:
    def test_list_by_status(self, store, make_job):
        pending = make_job("a.mov")
        processing = make_job("b.mov")
        processing.start_processing()
        store.update(processing)
        done = make_job("c.mov")
        done.start_processing()
        done.complete()
        store.update(done)

        active = store.list_by_status([JobStatus.PENDING, JobStatus.PROCESSING])
        assert {j.id for j in active} == {pending.id, processing.id}

    def test_list_jobs_newest_first_with_total(self, store, make_job):
        ids = []
        for i in range(3):
            ids.append(make_job(f"{i}.mov").id)
            time.sleep(0.002)

        jobs, total = store.list_jobs(limit=2, offset=0)
        assert total == 3
        assert [j.id for j in jobs] == [ids[2], ids[1]]

        jobs, _ = store.list_jobs(limit=2, offset=2)
        assert [j.id for j in jobs] == [ids[0]]


class TestSoftDelete:
    def test_deleted_jobs_are_invisible(self, store, make_job):
        job = make_job()
        store.soft_delete(job.id)

        with pytest.raises(JobNotFound):
            store.get(job.id)
        assert store.list_jobs()[1] == 0
        assert store.list_by_status([JobStatus.PENDING]) == []
        assert not store.update(job)

    def test_delete_twice(self, store, make_job):
        job = make_job()
        store.soft_delete(job.id)
        with pytest.raises(JobNotFound):
            store.soft_delete(job.id)
