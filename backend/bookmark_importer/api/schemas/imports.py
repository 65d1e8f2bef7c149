"""Request/response payloads for the import endpoints."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImportResult(CamelModel):
    imported: int
    skipped: int
    failed: int
    total: int
    format: str


class ImportStartResponse(CamelModel):
    success: bool = True
    job_id: str | None = None
    total: int | None = None
    skipped: int | None = None
    to_import: int | None = None
    total_chunks: int | None = None
    format: str | None = None
    dedupe_degraded: bool | None = None
    result: ImportResult | None = Field(None, description="Present when nothing was left to import")


class ImportProcessResponse(CamelModel):
    success: bool = True
    done: bool
    imported: int = Field(..., description="Bookmarks written by this call")
    failed: int = Field(..., description="Bookmarks that failed in this call")
    total_imported: int
    total_failed: int
    remaining: int = Field(..., description="Chunks not yet processed")
    busy: bool = False
    result: ImportResult | None = None


class ImportStatusResponse(CamelModel):
    job_id: str
    status: str = Field(..., description="pending|processing|completed|failed")
    format: str
    total: int
    skipped: int
    imported: int
    failed: int
    total_chunks: int
    processed_chunks: int
    progress: float = Field(..., description="0-1 range for UI progress bars")
    error: str | None = None
    stale: bool = Field(False, description="Served from the progress cache because the job store was unavailable")
