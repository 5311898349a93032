"""Transactional CRUD service for user accounts."""

from __future__ import annotations

from typing import Any

from .config import Settings, load_settings
from .database import Database, resolve_database_path
from .models import UNSET, User, UserLog, UserLogAction, UserPage
from .service import UserService


def create_app(*args: Any, **kwargs: Any):
    """Factory function for the HTTP API around an existing service."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


def create_application(*args: Any, **kwargs: Any):
    """Factory function that builds the fully wired application."""

    from .application import create_application as _create_application

    return _create_application(*args, **kwargs)


__all__ = [
    "UNSET",
    "Database",
    "Settings",
    "User",
    "UserLog",
    "UserLogAction",
    "UserPage",
    "UserService",
    "create_app",
    "create_application",
    "load_settings",
    "resolve_database_path",
]
