"""Durable storage for import jobs and their chunked bookmark payloads.

Every mutation is a single conditional statement (or a pair inside one
transaction), so concurrent "process next chunk" requests cannot double count:

* a chunk is claimed by stamping ``claimed_at`` only if it is still pending and
  unclaimed (or its lease ran out);
* a chunk is completed only if it is still pending, and the job counters move
  in the same transaction;
* job status only moves forward: pending -> processing -> completed/failed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import timedelta

from sqlalchemy import and_, case, delete, exists, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookmark_importer.core.exceptions import StorageError
from bookmark_importer.core.models import ImportedBookmark, ImportFormat
from bookmark_importer.db.models.import_job import (
    ACTIVE_JOB_STATUSES,
    ChunkStatus,
    ImportChunk,
    ImportJob,
    JobStatus,
    utcnow,
)
from bookmark_importer.utils.batching import chunked

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 200
DEFAULT_CLAIM_LEASE = timedelta(minutes=2)

_NO_SYNC = {"synchronize_session": False}


class JobStore:
    def __init__(self, session: Session, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.session = session
        self.chunk_size = chunk_size

    @contextmanager
    def _storage(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"Job store failed to {action}: {exc}", exc_info=True)
            raise StorageError(f"Failed to {action}, please retry") from exc

    def create_job(
        self,
        owner_id: str,
        format: ImportFormat | str,
        total: int,
        skipped: int,
        bookmarks: Sequence[ImportedBookmark],
        tags: Sequence[str],
        meta: dict | None = None,
    ) -> ImportJob:
        """Persist a job and all of its chunks in one commit."""
        format_name = format.value if isinstance(format, ImportFormat) else str(format)
        job = ImportJob(
            owner_id=owner_id,
            format=format_name,
            status=JobStatus.PENDING.value,
            total=total,
            skipped=skipped,
            imported=0,
            failed=0,
            processed_chunks=0,
            tags=list(tags),
            meta=meta or {},
        )
        job.chunks = [
            ImportChunk(
                chunk_index=index,
                bookmarks=[bookmark.to_dict() for bookmark in chunk],
                status=ChunkStatus.PENDING.value,
            )
            for index, chunk in enumerate(chunked(bookmarks, self.chunk_size))
        ]
        job.total_chunks = len(job.chunks)

        with self._storage("create import job"):
            self.session.add(job)
            self.session.commit()

        logger.info(
            f"Created import job {job.id} for {owner_id}: {len(bookmarks)} bookmarks "
            f"in {job.total_chunks} chunks"
        )
        return job

    def get_job(self, job_id: str) -> ImportJob | None:
        with self._storage("load import job"):
            return self.session.get(ImportJob, job_id, populate_existing=True)

    def get_next_pending_chunk(
        self,
        job_id: str,
        lease: timedelta = DEFAULT_CLAIM_LEASE,
    ) -> ImportChunk | None:
        """Claim the lowest-index pending chunk nobody else is working on.

        A claim whose lease has expired (the request that took it died) can
        be taken over. Returns None when nothing is claimable right now; use
        ``has_pending_chunks`` to tell "all done" from "all busy".
        """
        now = utcnow()
        claimable = and_(
            ImportChunk.job_id == job_id,
            ImportChunk.status == ChunkStatus.PENDING.value,
            or_(ImportChunk.claimed_at.is_(None), ImportChunk.claimed_at < now - lease),
        )

        with self._storage("claim import chunk"):
            candidates = self.session.scalars(
                select(ImportChunk.id).where(claimable).order_by(ImportChunk.chunk_index).limit(5)
            ).all()
            for chunk_id in candidates:
                result = self.session.execute(
                    update(ImportChunk)
                    .where(ImportChunk.id == chunk_id, claimable)
                    .values(claimed_at=now)
                    .execution_options(**_NO_SYNC)
                )
                if result.rowcount == 1:
                    self.session.commit()
                    return self.session.get(ImportChunk, chunk_id, populate_existing=True)
            self.session.commit()
        return None

    def has_pending_chunks(self, job_id: str) -> bool:
        with self._storage("count pending chunks"):
            return bool(
                self.session.scalar(
                    select(
                        exists().where(
                            ImportChunk.job_id == job_id,
                            ImportChunk.status == ChunkStatus.PENDING.value,
                        )
                    )
                )
            )

    def complete_chunk(self, chunk_id: int, job_id: str, imported_delta: int, failed_delta: int) -> bool:
        """Mark a chunk done and add its counts to the job, exactly once.

        Returns False (and changes nothing) if the chunk was already done.
        """
        with self._storage("complete import chunk"):
            result = self.session.execute(
                update(ImportChunk)
                .where(
                    ImportChunk.id == chunk_id,
                    ImportChunk.job_id == job_id,
                    ImportChunk.status == ChunkStatus.PENDING.value,
                )
                .values(status=ChunkStatus.DONE.value, claimed_at=None)
                .execution_options(**_NO_SYNC)
            )
            if result.rowcount != 1:
                self.session.rollback()
                logger.info(f"Chunk {chunk_id} of job {job_id} already completed, ignoring")
                return False

            self.session.execute(
                update(ImportJob)
                .where(ImportJob.id == job_id)
                .values(
                    imported=ImportJob.imported + imported_delta,
                    failed=ImportJob.failed + failed_delta,
                    processed_chunks=ImportJob.processed_chunks + 1,
                    status=case(
                        (ImportJob.status == JobStatus.PENDING.value, JobStatus.PROCESSING.value),
                        else_=ImportJob.status,
                    ),
                    updated_at=utcnow(),
                )
                .execution_options(**_NO_SYNC)
            )
            self.session.commit()
        return True

    def _transition(self, job_id: str, allowed: Sequence[str], action: str, **values) -> bool:
        with self._storage(action):
            result = self.session.execute(
                update(ImportJob)
                .where(ImportJob.id == job_id, ImportJob.status.in_(list(allowed)))
                .values(updated_at=utcnow(), **values)
                .execution_options(**_NO_SYNC)
            )
            self.session.commit()
        return result.rowcount == 1

    def mark_job_processing(self, job_id: str) -> bool:
        return self._transition(
            job_id,
            [JobStatus.PENDING.value],
            "start import job",
            status=JobStatus.PROCESSING.value,
            started_at=utcnow(),
        )

    def mark_job_completed(self, job_id: str) -> bool:
        return self._transition(
            job_id,
            ACTIVE_JOB_STATUSES,
            "complete import job",
            status=JobStatus.COMPLETED.value,
            finished_at=utcnow(),
        )

    def mark_job_failed(self, job_id: str, message: str) -> bool:
        logger.error(f"Import job {job_id} failed: {message}")
        return self._transition(
            job_id,
            ACTIVE_JOB_STATUSES,
            "fail import job",
            status=JobStatus.FAILED.value,
            error_message=message,
            finished_at=utcnow(),
        )

    def _delete_jobs(self, *criteria) -> int:
        job_ids = select(ImportJob.id).where(*criteria)
        self.session.execute(
            delete(ImportChunk).where(ImportChunk.job_id.in_(job_ids)).execution_options(**_NO_SYNC)
        )
        result = self.session.execute(delete(ImportJob).where(*criteria).execution_options(**_NO_SYNC))
        self.session.commit()
        return result.rowcount or 0

    def delete_jobs_for_owner(self, owner_id: str, include_finished: bool = False) -> int:
        """Remove the owner's jobs (active ones only unless asked) with their chunks."""
        criteria = [ImportJob.owner_id == owner_id]
        if not include_finished:
            criteria.append(ImportJob.status.in_(ACTIVE_JOB_STATUSES))
        with self._storage("delete import jobs"):
            deleted = self._delete_jobs(*criteria)
        if deleted:
            logger.info(f"Deleted {deleted} previous import job(s) for {owner_id}")
        return deleted

    def cleanup_stale_jobs(self, older_than: timedelta) -> int:
        """Delete every job created before ``now - older_than``, whatever its status."""
        cutoff = utcnow() - older_than
        with self._storage("clean up stale import jobs"):
            deleted = self._delete_jobs(ImportJob.created_at < cutoff)
        if deleted:
            logger.info(f"Swept {deleted} stale import job(s) created before {cutoff.isoformat()}")
        return deleted
