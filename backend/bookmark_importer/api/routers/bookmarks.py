"""Bulk operations on bookmarks that already exist in the remote store."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from bookmark_importer.api.dependencies.auth import require_remote_session
from bookmark_importer.api.schemas.bulk import BulkOperationRequest, BulkOperationResponse
from bookmark_importer.core.config import Settings, get_settings
from bookmark_importer.remote.records import RecordsClient
from bookmark_importer.remote.session import RemoteSession
from bookmark_importer.services.bulk_operations import BulkAction, bulk_delete, bulk_update_tags

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bookmarks", tags=["bookmarks"])


@router.post(
    "/bulk",
    summary="Delete, tag or untag many bookmarks at once",
    response_model=BulkOperationResponse,
    response_model_exclude_none=True,
)
def bulk_operation(
    payload: BulkOperationRequest,
    session: RemoteSession = Depends(require_remote_session),
    settings: Settings = Depends(get_settings),
) -> BulkOperationResponse:
    if not payload.uris:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No bookmarks selected")

    client = RecordsClient(session, page_size=settings.list_page_size)
    try:
        if payload.action is BulkAction.DELETE:
            result = bulk_delete(client, payload.uris, max_operations=settings.max_writes_per_batch)
        else:
            tags = [tag.strip() for tag in payload.tags or [] if tag.strip()]
            if not tags:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No tags provided")
            result = bulk_update_tags(
                client,
                payload.uris,
                tags,
                payload.action,
                concurrency=settings.bulk_concurrency,
                max_operations=settings.max_writes_per_batch,
            )
    except HTTPException:
        raise
    except Exception as exc:
        logger.error(f"Bulk {payload.action.value} failed for {session.did}: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Bulk operation failed: {exc}",
        )

    return BulkOperationResponse(
        success=result.success,
        succeeded=result.succeeded,
        failed=result.failed,
        errors=result.errors or None,
        bookmarks=result.bookmarks,
    )
