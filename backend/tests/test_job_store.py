"""Tests for job persistence, chunk claiming and idempotent completion."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from bookmark_importer.core.exceptions import StorageError
from bookmark_importer.core.models import ImportedBookmark, ImportFormat
from bookmark_importer.db.models import ChunkStatus, ImportChunk, ImportJob, JobStatus
from bookmark_importer.db.models.import_job import utcnow
from conftest import OTHER_OWNER, OWNER


def _bookmarks(count):
    return [ImportedBookmark(url=f"https://example.com/{n}", title=f"Item {n}") for n in range(count)]


def _create(store, owner=OWNER, count=5, **kwargs):
    return store.create_job(
        owner_id=owner,
        format=ImportFormat.POCKET,
        total=count,
        skipped=0,
        bookmarks=_bookmarks(count),
        tags=kwargs.pop("tags", ["news"]),
        **kwargs,
    )


def test_create_job_splits_bookmarks_into_ordered_chunks(store, db_session):
    job = _create(store, count=5)

    loaded = store.get_job(job.id)
    assert loaded.status == JobStatus.PENDING.value
    assert loaded.total_chunks == 3
    assert [len(chunk.bookmarks) for chunk in loaded.chunks] == [2, 2, 1]
    assert loaded.chunks[0].bookmarks[0]["url"] == "https://example.com/0"
    assert loaded.tags == ["news"]
    assert loaded.remaining_chunks == 3


def test_chunks_are_claimed_in_index_order_once(store):
    job = _create(store, count=5)

    first = store.get_next_pending_chunk(job.id)
    second = store.get_next_pending_chunk(job.id)
    third = store.get_next_pending_chunk(job.id)

    assert [first.chunk_index, second.chunk_index, third.chunk_index] == [0, 1, 2]
    assert store.get_next_pending_chunk(job.id) is None
    assert store.has_pending_chunks(job.id)


def test_expired_claim_can_be_taken_over(store, db_session):
    job = _create(store, count=2)
    chunk = store.get_next_pending_chunk(job.id)
    db_session.execute(
        update(ImportChunk).where(ImportChunk.id == chunk.id).values(claimed_at=utcnow() - timedelta(minutes=10))
    )
    db_session.commit()

    retaken = store.get_next_pending_chunk(job.id, lease=timedelta(minutes=2))

    assert retaken is not None
    assert retaken.id == chunk.id


def test_complete_chunk_counts_exactly_once(store):
    job = _create(store, count=4)
    chunk = store.get_next_pending_chunk(job.id)

    assert store.complete_chunk(chunk.id, job.id, imported_delta=2, failed_delta=0) is True
    assert store.complete_chunk(chunk.id, job.id, imported_delta=2, failed_delta=0) is False

    loaded = store.get_job(job.id)
    assert loaded.imported == 2
    assert loaded.processed_chunks == 1
    assert loaded.status == JobStatus.PROCESSING.value
    assert loaded.chunks[0].status == ChunkStatus.DONE.value


def test_counters_never_exceed_total(store):
    job = _create(store, count=5)
    while (chunk := store.get_next_pending_chunk(job.id)) is not None:
        size = len(chunk.bookmarks)
        store.complete_chunk(chunk.id, job.id, imported_delta=size - 1, failed_delta=1)
        store.complete_chunk(chunk.id, job.id, imported_delta=size - 1, failed_delta=1)

    loaded = store.get_job(job.id)
    assert loaded.imported + loaded.failed + loaded.skipped == loaded.total
    assert not store.has_pending_chunks(job.id)


def test_status_only_moves_forward(store):
    job = _create(store, count=1)

    assert store.mark_job_processing(job.id)
    assert store.mark_job_completed(job.id)
    assert not store.mark_job_processing(job.id)
    assert not store.mark_job_failed(job.id, "too late")

    loaded = store.get_job(job.id)
    assert loaded.status == JobStatus.COMPLETED.value
    assert loaded.error_message is None
    assert loaded.finished_at is not None


def test_failed_is_terminal(store):
    job = _create(store, count=1)

    assert store.mark_job_failed(job.id, "Session expired")
    assert not store.mark_job_completed(job.id)
    assert store.get_job(job.id).error_message == "Session expired"


def test_delete_jobs_for_owner_keeps_finished_and_other_owners(store):
    active = _create(store, count=1)
    finished = _create(store, count=1)
    store.mark_job_completed(finished.id)
    foreign = _create(store, owner=OTHER_OWNER, count=1)

    deleted = store.delete_jobs_for_owner(OWNER)

    assert deleted == 1
    assert store.get_job(active.id) is None
    assert store.get_job(finished.id) is not None
    assert store.get_job(foreign.id) is not None


def test_cleanup_stale_jobs_removes_old_jobs_and_chunks(store, db_session):
    old = _create(store, count=3)
    fresh = _create(store, count=1)
    db_session.execute(
        update(ImportJob).where(ImportJob.id == old.id).values(created_at=utcnow() - timedelta(hours=30))
    )
    db_session.commit()

    assert store.cleanup_stale_jobs(timedelta(hours=24)) == 1

    assert store.get_job(old.id) is None
    assert store.get_job(fresh.id) is not None
    assert db_session.query(ImportChunk).filter(ImportChunk.job_id == old.id).count() == 0


def test_database_errors_become_storage_errors(store):
    with patch.object(store.session, "get", side_effect=OperationalError("SELECT", {}, Exception("db down"))):
        with pytest.raises(StorageError) as excinfo:
            store.get_job("missing")
    assert excinfo.value.retryable
