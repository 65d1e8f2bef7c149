"""Database session and job store dependencies."""

from collections.abc import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from bookmark_importer.core.config import Settings, get_settings
from bookmark_importer.db.session import get_db
from bookmark_importer.services.job_store import JobStore


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a managed SQLAlchemy session."""
    yield from get_db()


def get_job_store(
    db: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> JobStore:
    return JobStore(db, chunk_size=settings.import_chunk_size)
