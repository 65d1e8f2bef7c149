"""Durable import job state and its chunked bookmark payload."""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.types import DateTime

from bookmark_importer.db.base import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ChunkStatus(str, enum.Enum):
    PENDING = "pending"
    DONE = "done"


ACTIVE_JOB_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(255), nullable=False, index=True)
    format = Column(String(32), nullable=False)
    status = Column(String(32), nullable=False, default=JobStatus.PENDING.value)
    total = Column(Integer, nullable=False, default=0)
    skipped = Column(Integer, nullable=False, default=0)
    imported = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    total_chunks = Column(Integer, nullable=False, default=0)
    processed_chunks = Column(Integer, nullable=False, default=0)
    tags = Column(JSONType, nullable=False, default=list)
    error_message = Column(Text)
    meta = Column(JSONType)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    chunks = relationship(
        "ImportChunk",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ImportChunk.chunk_index",
    )

    @property
    def to_import(self) -> int:
        return self.total - self.skipped

    @property
    def remaining_chunks(self) -> int:
        return max(self.total_chunks - self.processed_chunks, 0)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class ImportChunk(Base):
    __tablename__ = "import_chunks"
    __table_args__ = (UniqueConstraint("job_id", "chunk_index", name="uq_import_chunks_job_index"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(
        String(36),
        ForeignKey("import_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chunk_index = Column(Integer, nullable=False)
    bookmarks = Column(JSONType, nullable=False, default=list)
    status = Column(String(16), nullable=False, default=ChunkStatus.PENDING.value)
    claimed_at = Column(DateTime(timezone=True))

    job = relationship("ImportJob", back_populates="chunks")
