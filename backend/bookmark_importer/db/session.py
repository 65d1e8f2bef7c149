"""Engine and session factory configuration."""

from collections.abc import Generator
import logging
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from bookmark_importer.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def _engine_kwargs(database_url: str) -> dict[str, Any]:
    """Pick pooling and connect args appropriate for the target backend."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            # One shared connection, otherwise every checkout sees an empty DB
            kwargs["poolclass"] = StaticPool
        return kwargs

    # pool_pre_ping: Test connections before using (handles stale connections)
    # pool_recycle: Recycle connections after 30 minutes (prevents timeout)
    return {
        "poolclass": QueuePool,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "pool_size": 5,
        "max_overflow": 10,
        "connect_args": {
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5,
        },
    }


def build_engine(database_url: str) -> Engine:
    return create_engine(database_url, echo=False, future=True, **_engine_kwargs(database_url))


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_fresh_session() -> Session:
    """Get a fresh database session, handling connection errors.

    Used by the Celery sweep, which runs long after the pool was created.
    """
    try:
        return SessionLocal()
    except (OperationalError, DisconnectionError) as e:
        logger.warning(f"Connection error creating session: {e}, retrying...")
        engine.dispose()
        return SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """Yield a transactional session for request/worker lifecycles."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """Create the import tables if they do not exist yet."""
    from bookmark_importer.db import models  # noqa: F401  registers tables on Base
    from bookmark_importer.db.base import Base

    Base.metadata.create_all(bind=bind or engine)
