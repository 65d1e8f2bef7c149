"""Advance an import job by one chunk per call.

The server keeps no state between requests, so the polling client owns the
loop: each ``POST /import/{job_id}/process`` runs ``process_next`` once. A call
either writes one chunk through the batch executor, or finds nothing left and
finalizes the job (tag records, then ``completed``). Calls on a completed job
return the final summary without writing anything.

Per-record write failures never fail the job. They are counted and the job
moves on. The job is marked ``failed`` only when the owner's remote session
cannot be restored.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import httpx

from bookmark_importer.core.exceptions import (
    AuthenticationError,
    JobFailedError,
    JobNotFoundError,
    RemoteAPIError,
)
from bookmark_importer.core.models import ANNOTATION_COLLECTION, BOOKMARK_COLLECTION, ImportedBookmark
from bookmark_importer.db.models.import_job import ImportChunk, ImportJob, JobStatus
from bookmark_importer.remote.records import RecordsClient, at_uri, create_op
from bookmark_importer.remote.session import SessionProvider
from bookmark_importer.services.batch_executor import DEFAULT_MAX_OPERATIONS, BatchExecutor, WriteItem
from bookmark_importer.services.job_store import DEFAULT_CLAIM_LEASE, JobStore
from bookmark_importer.services.progress_tracker import publish_progress
from bookmark_importer.services.tag_records import TagCreationReport, create_missing_tag_records

logger = logging.getLogger(__name__)

REAUTH_MESSAGE = "Session expired, please re-authenticate and try again"
RECORD_KEY_LENGTH = 13


@dataclass
class ProcessOutcome:
    job_id: str
    status: str
    done: bool
    imported: int = 0
    failed: int = 0
    total_imported: int = 0
    total_failed: int = 0
    remaining: int = 0
    busy: bool = False
    result: dict[str, Any] | None = None
    tags: TagCreationReport | None = field(default=None, repr=False)


def record_key(job_id: str, chunk_index: int, position: int) -> str:
    """Stable record key for one bookmark of one job.

    A chunk re-attempted after a crash maps to the same keys, so the remote
    store rejects the repeat instead of storing the bookmark twice.
    """
    digest = hashlib.sha256(f"{job_id}:{chunk_index}:{position}".encode()).digest()
    return base64.b32encode(digest).decode("ascii").lower()[:RECORD_KEY_LENGTH]


def bookmark_write_item(did: str, key: str, bookmark: ImportedBookmark, position: int) -> WriteItem:
    """Bookmark create plus, when there is text to keep, its annotation."""
    operations = [
        create_op(
            BOOKMARK_COLLECTION,
            key,
            {"subject": bookmark.url, "createdAt": bookmark.created_at, "tags": list(bookmark.tags)},
        )
    ]
    if bookmark.title or bookmark.description:
        annotation: dict[str, Any] = {
            "subject": at_uri(did, BOOKMARK_COLLECTION, key),
            "createdAt": bookmark.created_at,
        }
        if bookmark.title:
            annotation["title"] = bookmark.title
        if bookmark.description:
            annotation["description"] = bookmark.description
        operations.append(create_op(ANNOTATION_COLLECTION, key, annotation))
    return WriteItem.of(position, *operations)


def final_result(job: ImportJob) -> dict[str, Any]:
    return {
        "imported": job.imported,
        "skipped": job.skipped,
        "failed": job.failed,
        "total": job.total,
        "format": job.format,
    }


class ChunkProcessor:
    def __init__(
        self,
        store: JobStore,
        sessions: SessionProvider,
        *,
        max_operations: int = DEFAULT_MAX_OPERATIONS,
        claim_lease: timedelta = DEFAULT_CLAIM_LEASE,
        page_size: int = 100,
    ):
        self.store = store
        self.sessions = sessions
        self.max_operations = max_operations
        self.claim_lease = claim_lease
        self.page_size = page_size

    def process_next(self, job_id: str) -> ProcessOutcome:
        job = self._require_job(job_id)
        if job.status == JobStatus.COMPLETED.value:
            return self._outcome(job, done=True)
        if job.is_terminal:
            raise JobFailedError(job.error_message or "Import failed")

        # Every commit expires loaded rows, and a newer upload from the same
        # owner may delete this job at any point, so only plain values are kept.
        owner_id = job.owner_id

        session = self.sessions.restore(owner_id)
        if session is None:
            if self.store.mark_job_failed(job_id, REAUTH_MESSAGE):
                self._publish(job_id)
            raise AuthenticationError(REAUTH_MESSAGE)

        self.store.mark_job_processing(job_id)
        client = RecordsClient(session, page_size=self.page_size)

        chunk = self.store.get_next_pending_chunk(job_id, self.claim_lease)
        if chunk is None:
            if self.store.has_pending_chunks(job_id):
                logger.info(f"Import job {job_id}: all pending chunks are claimed, nothing to do")
                return self._outcome(self._require_job(job_id), done=False, busy=True)
            return self._finalize(job_id, client)

        chunk_id, chunk_index = chunk.id, chunk.chunk_index
        imported, failed = self._write_chunk(job_id, chunk, client)
        self.store.complete_chunk(chunk_id, job_id, imported, failed)

        job = self._publish(job_id)
        logger.info(
            f"Import job {job_id} chunk {chunk_index}: {imported} imported, {failed} failed, "
            f"{job.remaining_chunks} chunk(s) left"
        )
        return self._outcome(job, done=False, imported=imported, failed=failed)

    def _require_job(self, job_id: str) -> ImportJob:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Import job {job_id} not found")
        return job

    def _write_chunk(self, job_id: str, chunk: ImportChunk, client: RecordsClient) -> tuple[int, int]:
        items = []
        for position, data in enumerate(chunk.bookmarks):
            bookmark = ImportedBookmark.from_dict(data)
            key = record_key(job_id, chunk.chunk_index, position)
            items.append(bookmark_write_item(client.did, key, bookmark, position))

        executor = BatchExecutor(
            client.apply_writes,
            max_operations=self.max_operations,
            label=f"import {job_id} chunk {chunk.chunk_index}",
        )
        report = executor.run(items)
        return report.succeeded_count, report.failed_count

    def _finalize(self, job_id: str, client: RecordsClient) -> ProcessOutcome:
        tags = list(self._require_job(job_id).tags or [])
        tags_report = None
        if tags:
            # Tags go first: a crash before the job is marked completed just
            # re-runs this step, and it skips tags that already exist.
            try:
                tags_report = create_missing_tag_records(client, tags)
            except (RemoteAPIError, httpx.HTTPError) as exc:
                logger.error(f"Import job {job_id}: tag records not created: {exc}")
            else:
                logger.info(
                    f"Import job {job_id}: created {len(tags_report.created)} tag(s), "
                    f"{len(tags_report.failed)} failed"
                )

        self.store.mark_job_completed(job_id)
        job = self._publish(job_id)
        logger.info(
            f"Import job {job_id} completed: imported={job.imported} failed={job.failed} "
            f"skipped={job.skipped} total={job.total}"
        )
        outcome = self._outcome(job, done=True)
        outcome.tags = tags_report
        return outcome

    def _publish(self, job_id: str) -> ImportJob:
        job = self._require_job(job_id)
        publish_progress(job)
        return job

    @staticmethod
    def _outcome(job: ImportJob, *, done: bool, imported: int = 0, failed: int = 0, busy: bool = False) -> ProcessOutcome:
        return ProcessOutcome(
            job_id=job.id,
            status=job.status,
            done=done,
            imported=imported,
            failed=failed,
            total_imported=job.imported,
            total_failed=job.failed,
            remaining=job.remaining_chunks,
            busy=busy,
            result=final_result(job) if done else None,
        )
