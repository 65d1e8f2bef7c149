"""Chunked bookmark import endpoints.

``POST /import`` parses and stores the upload as a job, then the caller
advances it with ``POST /import/{job_id}/process`` until ``done``.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from bookmark_importer.api.dependencies.auth import get_session_provider, require_remote_session
from bookmark_importer.api.dependencies.db import get_job_store
from bookmark_importer.api.schemas.imports import (
    ImportProcessResponse,
    ImportResult,
    ImportStartResponse,
    ImportStatusResponse,
)
from bookmark_importer.core.config import Settings, get_settings
from bookmark_importer.core.exceptions import (
    AuthenticationError,
    ImportInputError,
    JobFailedError,
    JobNotFoundError,
    StorageError,
)
from bookmark_importer.db.models.import_job import ImportJob
from bookmark_importer.remote.session import RemoteSession, SessionProvider
from bookmark_importer.services.chunk_processor import ChunkProcessor
from bookmark_importer.services.import_preparation import prepare_import
from bookmark_importer.services.job_store import JobStore
from bookmark_importer.services.progress_tracker import fetch_progress, snapshot

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/import", tags=["import"])

RETRY_AFTER_SECONDS = "2"


def _retryable(exc: StorageError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(exc),
        headers={"Retry-After": RETRY_AFTER_SECONDS},
    )


def _read_upload(file: UploadFile | None, max_bytes: int) -> str:
    if file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")
    raw = file.file.read(max_bytes + 1)
    if len(raw) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the {max_bytes} byte upload limit",
        )
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be UTF-8 text")


def _owned_job(store: JobStore, job_id: str, owner_id: str) -> ImportJob:
    try:
        job = store.get_job(job_id)
    except StorageError as exc:
        raise _retryable(exc)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Import job not found")
    if job.owner_id != owner_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your import job")
    return job


@router.post(
    "",
    summary="Upload a bookmark export and create an import job",
    response_model=ImportStartResponse,
    response_model_exclude_none=True,
)
def start_import(
    file: UploadFile | None = File(None),
    session: RemoteSession = Depends(require_remote_session),
    store: JobStore = Depends(get_job_store),
    settings: Settings = Depends(get_settings),
) -> ImportStartResponse:
    """Parse, dedup against existing bookmarks, and store the rest as chunks.

    When nothing is left to import the final result is returned right away
    and no job is created.
    """
    content = _read_upload(file, settings.max_upload_bytes)
    try:
        prepared = prepare_import(content, session, store, settings)
    except ImportInputError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except StorageError as exc:
        raise _retryable(exc)
    except Exception as exc:
        logger.error(f"Import preparation failed for {session.did}: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to prepare import",
        )

    if prepared.job is None:
        return ImportStartResponse(
            result=ImportResult(
                imported=0,
                skipped=prepared.skipped,
                failed=0,
                total=prepared.total,
                format=prepared.format.value,
            ),
            dedupe_degraded=prepared.dedupe_degraded or None,
        )

    return ImportStartResponse(
        job_id=prepared.job.id,
        total=prepared.total,
        skipped=prepared.skipped,
        to_import=prepared.to_import,
        total_chunks=prepared.job.total_chunks,
        format=prepared.format.value,
        dedupe_degraded=prepared.dedupe_degraded or None,
    )


@router.post(
    "/{job_id}/process",
    summary="Write the next chunk of an import job",
    response_model=ImportProcessResponse,
    response_model_exclude_none=True,
)
def process_import_chunk(
    job_id: str,
    caller: RemoteSession = Depends(require_remote_session),
    sessions: SessionProvider = Depends(get_session_provider),
    store: JobStore = Depends(get_job_store),
    settings: Settings = Depends(get_settings),
) -> ImportProcessResponse:
    job = _owned_job(store, job_id, caller.did)
    processor = ChunkProcessor(
        store,
        sessions,
        max_operations=settings.max_writes_per_batch,
        claim_lease=timedelta(seconds=settings.chunk_claim_lease_seconds),
        page_size=settings.list_page_size,
    )
    try:
        outcome = processor.process_next(job.id)
    except AuthenticationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
    except JobFailedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Import job not found")
    except StorageError as exc:
        raise _retryable(exc)

    return ImportProcessResponse(
        done=outcome.done,
        imported=outcome.imported,
        failed=outcome.failed,
        total_imported=outcome.total_imported,
        total_failed=outcome.total_failed,
        remaining=outcome.remaining,
        busy=outcome.busy,
        result=ImportResult(**outcome.result) if outcome.result else None,
    )


@router.get(
    "/{job_id}",
    summary="Fetch the state of an import job",
    response_model=ImportStatusResponse,
)
def get_import_status(
    job_id: str,
    caller: RemoteSession = Depends(require_remote_session),
    store: JobStore = Depends(get_job_store),
) -> ImportStatusResponse:
    """Read the job from the store, or from the progress cache if the store is down."""
    try:
        job = store.get_job(job_id)
    except StorageError as exc:
        cached = fetch_progress(job_id)
        if not cached:
            raise _retryable(exc)
        if cached.get("owner_id") != caller.did:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your import job")
        logger.warning(f"Job store unavailable, serving cached progress for {job_id}")
        return _status_response(cached, stale=True)

    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Import job not found")
    if job.owner_id != caller.did:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your import job")
    return _status_response(snapshot(job))


def _status_response(data: dict, stale: bool = False) -> ImportStatusResponse:
    return ImportStatusResponse(
        job_id=data["job_id"],
        status=data["status"],
        format=data["format"],
        total=data["total"],
        skipped=data["skipped"],
        imported=data["imported"],
        failed=data["failed"],
        total_chunks=data["total_chunks"],
        processed_chunks=data["processed_chunks"],
        progress=data["progress"],
        error=data.get("error"),
        stale=stale,
    )
