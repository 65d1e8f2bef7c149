"""FastAPI application bootstrap."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from bookmark_importer.api.routers import bookmarks, health, imports
from bookmark_importer.core.config import get_settings
from bookmark_importer.core.logging_config import configure_logging
from bookmark_importer.db.session import init_db

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Instantiate the FastAPI app and include top-level routers."""
    settings = get_settings()
    configure_logging(settings.log_level)

    try:
        init_db()
    except SQLAlchemyError as e:
        logger.error(f"Could not create import tables: {e}")

    app = FastAPI(title=settings.app_name, version="0.1.0")

    logger.info(f"[CORS] Allowed origins: {settings.cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After"],
    )

    app.include_router(health.router)
    app.include_router(imports.router)
    app.include_router(bookmarks.router)

    return app


app = create_app()
