"""Simple health and readiness endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from bookmark_importer.core.config import get_settings
from bookmark_importer.db.session import engine
from bookmark_importer.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "bookmark-importer-api"


@router.get("/live", summary="Liveness probe")
async def live() -> dict[str, str]:
    """Indicates the API process is running."""
    return {"status": "ok", "service": SERVICE_NAME}


@router.get("/ready", summary="Readiness probe")
def ready() -> dict[str, Any]:
    """Check the job store and the progress cache.

    The job store is required. Redis only backs progress snapshots and the
    maintenance queue, so an outage there is reported but does not fail
    readiness.
    """
    checks: dict[str, Any] = {"status": "ok", "service": SERVICE_NAME, "checks": {}}

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        checks["checks"]["database"] = {"status": "healthy"}
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        checks["checks"]["database"] = {"status": "unhealthy", "message": str(e)}
        checks["status"] = "unhealthy"

    redis_client = create_redis_client(get_settings().redis_url, decode_responses=True)
    try:
        redis_client.ping()
        checks["checks"]["redis"] = {"status": "healthy"}
    except RedisError as e:
        logger.warning(f"Redis health check failed: {e}")
        checks["checks"]["redis"] = {"status": "degraded", "message": str(e)}
    finally:
        redis_client.close()

    if checks["status"] != "ok":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=checks)
    return checks
