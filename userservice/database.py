"""Relational storage for users: connections, dialects, schema and transaction handles."""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator, List, Mapping, Optional, Sequence

from .errors import IntegrityViolation, OperationCancelled, PersistenceError

if TYPE_CHECKING:
    from .transactions import Cancellation

logger = logging.getLogger("userservice.database")


class Dialect(Enum):
    """SQL dialects supported by :class:`Database`."""

    SQLITE = ("sqlite", "?", "")
    POSTGRESQL = ("postgresql", "%s", " FOR UPDATE")

    def __init__(self, dialect_id: str, placeholder: str, lock_clause: str) -> None:
        self._dialect_id = dialect_id
        self._placeholder = placeholder
        self._lock_clause = lock_clause

    @property
    def placeholder(self) -> str:
        return self._placeholder

    @property
    def lock_clause(self) -> str:
        """Suffix that turns a SELECT into a row-locking SELECT.

        SQLite has no row locks; write transactions there start with
        ``BEGIN IMMEDIATE`` instead, which holds the database write lock for
        the whole transaction.
        """

        return self._lock_clause

    def serialize_datetime(self, value: datetime) -> object:
        if self is Dialect.SQLITE:
            return value.isoformat(timespec="microseconds")
        return value


_SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_logs (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    action TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_users_created_at ON users(created_at);
CREATE INDEX IF NOT EXISTS idx_user_logs_user_id ON user_logs(user_id);
"""

_POSTGRESQL_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT NOT NULL UNIQUE,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_logs (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        action TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_users_created_at ON users(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_user_logs_user_id ON user_logs(user_id)",
)


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the SQLite database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "userservice.sqlite3").resolve(strict=False)


def parse_datetime(value: object) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class Transaction:
    """Handle bound to one connection for the lifetime of one unit of work.

    Every statement of a use case goes through the same handle so that all
    reads and writes take part in the same transaction.
    """

    def __init__(
        self,
        connection: Any,
        dialect: Dialect,
        *,
        driver: "_Driver",
        lock_timeout: float,
        cancellation: Optional["Cancellation"] = None,
    ) -> None:
        self._connection = connection
        self._dialect = dialect
        self._driver = driver
        self._lock_timeout = lock_timeout
        self._cancellation = cancellation

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    def lock(self, sql: str) -> str:
        return sql + self._dialect.lock_clause

    def begin(self) -> None:
        """Open a write transaction."""

        self._check_cancelled()
        try:
            if self._dialect is Dialect.SQLITE:
                self._connection.execute("BEGIN IMMEDIATE")
            else:
                lock_timeout_ms = int(self._lock_timeout * 1000)
                self._connection.execute(f"SET LOCAL lock_timeout = '{lock_timeout_ms}ms'")
        except self._driver.errors as exc:
            raise self._translate(exc, "failed to begin transaction") from exc

    def commit(self) -> None:
        self._connection.commit()

    def rollback(self) -> None:
        self._connection.rollback()

    def execute(self, sql: str, params: Sequence[object] = ()) -> int:
        """Run a write statement and return the number of affected rows."""

        cursor = self._run(sql, params)
        try:
            return cursor.rowcount
        finally:
            cursor.close()

    def fetchone(self, sql: str, params: Sequence[object] = ()) -> Optional[Mapping[str, Any]]:
        cursor = self._run(sql, params)
        try:
            return cursor.fetchone()
        finally:
            cursor.close()

    def fetchall(self, sql: str, params: Sequence[object] = ()) -> List[Mapping[str, Any]]:
        cursor = self._run(sql, params)
        try:
            return list(cursor.fetchall())
        finally:
            cursor.close()

    def serialize_datetime(self, value: datetime) -> object:
        return self._dialect.serialize_datetime(value)

    def interrupt(self) -> None:
        """Abort the statement currently running on this connection."""

        if self._dialect is Dialect.SQLITE:
            self._connection.interrupt()
        else:
            self._connection.cancel()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _run(self, sql: str, params: Sequence[object]) -> Any:
        self._check_cancelled()
        if self._dialect.placeholder != "?":
            sql = sql.replace("?", self._dialect.placeholder)
        cursor = self._connection.cursor()
        try:
            cursor.execute(sql, tuple(params))
        except self._driver.errors as exc:
            cursor.close()
            raise self._translate(exc, "database statement failed") from exc
        return cursor

    def _check_cancelled(self) -> None:
        if self._cancellation is not None and self._cancellation.cancelled:
            raise OperationCancelled("operation cancelled before the statement was sent")

    def _translate(self, exc: BaseException, context: str) -> PersistenceError:
        if self._cancellation is not None and self._cancellation.cancelled:
            return OperationCancelled(f"{context}: operation cancelled ({exc})")
        if isinstance(exc, self._driver.cancelled_errors):
            return OperationCancelled(f"{context}: statement cancelled ({exc})")
        if isinstance(exc, self._driver.integrity_errors):
            diag = getattr(exc, "diag", None)
            return IntegrityViolation(f"{context}: {exc}", constraint=getattr(diag, "constraint_name", None))
        return PersistenceError(f"{context}: {exc}")


class _Driver:
    """Exception classes of the DB-API driver backing a :class:`Database`."""

    def __init__(
        self,
        errors: tuple[type[BaseException], ...],
        integrity_errors: tuple[type[BaseException], ...],
        cancelled_errors: tuple[type[BaseException], ...] = (),
    ) -> None:
        self.errors = errors
        self.integrity_errors = integrity_errors
        self.cancelled_errors = cancelled_errors


_SQLITE_DRIVER = _Driver(errors=(sqlite3.Error,), integrity_errors=(sqlite3.IntegrityError,))


class Database:
    """Process-wide entry point to the relational store.

    SQLite (the default) opens one connection per unit of work. PostgreSQL is
    used when ``url`` is given and draws connections from a
    ``psycopg_pool.ConnectionPool``.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        *,
        url: Optional[str] = None,
        lock_timeout: float = 5.0,
        pool_size: int = 10,
    ) -> None:
        self._path = path
        self._url = url
        self._lock_timeout = lock_timeout
        self._pool: Any = None

        if url:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg_pool import ConnectionPool

            self._dialect = Dialect.POSTGRESQL
            self._driver = _Driver(
                errors=(psycopg.Error,),
                integrity_errors=(psycopg.errors.IntegrityError,),
                cancelled_errors=(psycopg.errors.QueryCanceled,),
            )
            self._pool = ConnectionPool(
                url,
                min_size=1,
                max_size=pool_size,
                kwargs={"row_factory": dict_row},
                open=True,
            )
        elif path is not None:
            _ensure_directory(path)
            self._dialect = Dialect.SQLITE
            self._driver = _SQLITE_DRIVER
        else:
            raise ValueError("Either a SQLite path or a PostgreSQL URL must be provided")

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def location(self) -> str:
        if self._path is not None and self._dialect is Dialect.SQLITE:
            return str(self._path)
        return "postgresql"

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._path,
            timeout=self._lock_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        if self._pool is not None:
            with self._pool.connection() as conn:
                yield conn
            return

        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to open database connection: {exc}") from exc
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def session(self, cancellation: Optional["Cancellation"] = None) -> Iterator[Transaction]:
        """Yield a :class:`Transaction` bound to a fresh (or pooled) connection.

        The caller decides whether to call :meth:`Transaction.begin`; without
        it statements run unlocked, which is what the read path wants.
        """

        with self._connection() as conn:
            handle = Transaction(
                conn,
                self._dialect,
                driver=self._driver,
                lock_timeout=self._lock_timeout,
                cancellation=cancellation,
            )
            unregister = cancellation.register(handle.interrupt) if cancellation is not None else None
            try:
                yield handle
            finally:
                if unregister is not None:
                    unregister()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connection() as conn:
            if self._dialect is Dialect.SQLITE:
                conn.executescript(_SQLITE_SCHEMA)
            else:
                for statement in _POSTGRESQL_SCHEMA:
                    conn.execute(statement)
                conn.commit()
        logger.info("Database schema ready (%s)", self.location)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            self._pool = None


__all__ = ["Database", "Dialect", "Transaction", "parse_datetime", "resolve_database_path"]
