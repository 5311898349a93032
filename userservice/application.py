"""Application factory wiring settings, storage, use cases and HTTP layer."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI

from .api import create_app
from .config import Settings, load_settings
from .database import Database
from .repository import UserQueryService
from .service import UserService
from .transactions import SQLTransactionManager

logger = logging.getLogger("userservice.application")


def build_database(settings: Settings) -> Database:
    """Open the configured store and make sure its schema exists."""

    if settings.database_url:
        database = Database(url=settings.database_url, lock_timeout=settings.lock_timeout)
    else:
        database = Database(settings.database_path, lock_timeout=settings.lock_timeout)
    database.initialize()
    return database


def build_service(settings: Settings, database: Optional[Database] = None) -> UserService:
    if database is None:
        database = build_database(settings)
    return UserService(
        SQLTransactionManager(database),
        UserQueryService(database),
        audit=settings.audit,
        logger=logging.getLogger("userservice.service"),
    )


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    """Create the ASGI application from ``settings`` (loaded when omitted)."""

    if settings is None:
        settings = load_settings()

    database = build_database(settings)
    app = create_app(service=build_service(settings, database), settings=settings)
    app.state.database = database
    logger.info("User service ready (database: %s)", database.location)
    return app


__all__ = ["build_database", "build_service", "create_application"]
