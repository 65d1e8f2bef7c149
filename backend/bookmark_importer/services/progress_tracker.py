"""Publish import progress snapshots to Redis for cheap status polling.

Snapshots are a cache in front of the job store, never the source of truth:
a Redis outage only costs the status endpoint a database read.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any

from redis.exceptions import RedisError

from bookmark_importer.core.config import get_settings
from bookmark_importer.db.models.import_job import ImportJob
from bookmark_importer.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

settings = get_settings()
redis_client = create_redis_client(settings.redis_url, decode_responses=True)
PROGRESS_PREFIX = "imports:progress:"
PROGRESS_TTL = timedelta(hours=settings.job_ttl_hours)


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


def progress_fraction(job: ImportJob) -> float:
    """Share of the job's bookmarks that are accounted for (0-1)."""
    if not job.total:
        return 1.0
    return max(0.0, min((job.imported + job.failed + job.skipped) / job.total, 1.0))


def snapshot(job: ImportJob) -> dict[str, Any]:
    return {
        "job_id": job.id,
        "owner_id": job.owner_id,
        "status": job.status,
        "format": job.format,
        "total": job.total,
        "skipped": job.skipped,
        "imported": job.imported,
        "failed": job.failed,
        "total_chunks": job.total_chunks,
        "processed_chunks": job.processed_chunks,
        "progress": progress_fraction(job),
        "error": job.error_message,
    }


def publish_progress(job: ImportJob) -> None:
    """Store the job's counters so pollers can skip the database."""
    try:
        redis_client.set(
            _key(job.id),
            json.dumps(snapshot(job)),
            ex=int(PROGRESS_TTL.total_seconds()),
        )
    except RedisError as exc:
        logger.debug(f"Progress snapshot for job {job.id} not published: {exc}")


def fetch_progress(job_id: str) -> dict[str, Any]:
    """Return the latest snapshot, or an empty dict if none is cached."""
    try:
        raw = redis_client.get(_key(job_id))
    except RedisError:
        return {}
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {}
