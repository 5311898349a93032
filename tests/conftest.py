from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Iterator

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from userservice.database import Database
from userservice.memory import InMemoryUserStore
from userservice.repository import UserQueryService
from userservice.service import UserService
from userservice.transactions import SQLTransactionManager

POSTGRESQL_URL = os.environ.get(
    "USERSERVICE_TEST_DATABASE_URL",
    "host=localhost port=5432 dbname=userservice_test user=userservice password=userservice_test_pass",
)


def _can_connect_postgresql() -> bool:
    try:
        import psycopg

        conn = psycopg.connect(POSTGRESQL_URL, connect_timeout=3)
        conn.close()
    except Exception:
        return False
    return True


_pg_available: bool | None = None


def _is_pg_available() -> bool:
    global _pg_available
    if _pg_available is None:
        _pg_available = _can_connect_postgresql()
    return _pg_available


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip tests marked ``postgresql`` when no server is reachable."""

    for item in items:
        if "postgresql" in item.keywords and not _is_pg_available():
            item.add_marker(pytest.mark.skip(reason="PostgreSQL is not available"))


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "userservice.sqlite3", lock_timeout=5.0)
    db.initialize()
    return db


@pytest.fixture()
def service(database: Database) -> UserService:
    return UserService(SQLTransactionManager(database), UserQueryService(database))


@pytest.fixture()
def memory_service() -> UserService:
    store = InMemoryUserStore()
    return UserService(store, store)


@pytest.fixture(autouse=True)
def _reset_userservice_logger() -> Iterator[None]:
    yield
    root = logging.getLogger("userservice")
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.NOTSET)
    root.propagate = True


@pytest.fixture()
def postgresql_url() -> str:
    return POSTGRESQL_URL
