"""Periodic sweep of import jobs that outlived their TTL."""

from __future__ import annotations

import logging
from datetime import timedelta

from bookmark_importer.core.config import get_settings
from bookmark_importer.db.session import get_fresh_session
from bookmark_importer.services.job_store import JobStore
from bookmark_importer.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def sweep_stale_jobs(ttl_hours: int | None = None) -> int:
    """Delete jobs older than the TTL, whatever their status."""
    settings = get_settings()
    hours = ttl_hours if ttl_hours is not None else settings.job_ttl_hours
    session = get_fresh_session()
    try:
        return JobStore(session).cleanup_stale_jobs(timedelta(hours=hours))
    finally:
        session.close()


@celery_app.task(
    bind=True,
    name="bookmark_importer.workers.tasks.cleanup_stale_jobs",
    autoretry_for=(Exception,),
    retry_backoff=True,
    max_retries=3,
)
def cleanup_stale_jobs_task(self, ttl_hours: int | None = None) -> int:
    deleted = sweep_stale_jobs(ttl_hours)
    logger.info(f"Stale import sweep removed {deleted} job(s)")
    return deleted
