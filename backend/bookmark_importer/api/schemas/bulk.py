"""Bulk bookmark operation payloads."""

from typing import Any

from pydantic import BaseModel, Field

from bookmark_importer.services.bulk_operations import BulkAction


class BulkOperationRequest(BaseModel):
    action: BulkAction
    uris: list[str] = Field(default_factory=list)
    tags: list[str] | None = None


class BulkOperationResponse(BaseModel):
    success: bool
    succeeded: int
    failed: int
    errors: list[str] | None = None
    bookmarks: list[dict[str, Any]] | None = None
