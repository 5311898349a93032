"""Persistence primitives for users.

The write side (:class:`SQLUserRepository`) is always bound to a transaction
handle and never opens a transaction of its own. The read side
(:class:`UserQueryService`) uses short unlocked sessions.
"""
from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Protocol

from .database import Database, Transaction, parse_datetime
from .errors import IntegrityViolation, PersistenceError, email_already_exists, user_not_found
from .models import User, UserLog, UserLogAction

logger = logging.getLogger("userservice.repository")

_USER_COLUMNS = "id, name, email, created_at, updated_at"


class UserRepository(Protocol):
    """Transaction-scoped write capabilities used by the use cases."""

    def insert(self, user: User) -> None: ...

    def update_row(self, user: User) -> None: ...

    def delete_row(self, user_id: str) -> None: ...

    def select_for_update(self, user_id: str) -> Optional[User]: ...

    def select_by_email_for_update(self, email: str) -> Optional[User]: ...

    def insert_log(self, log: UserLog) -> None: ...


class UserQueries(Protocol):
    """Unlocked read-only capabilities."""

    def find_by_id(self, user_id: str) -> Optional[User]: ...

    def find_by_email(self, email: str) -> Optional[User]: ...

    def find_all(self, limit: int, offset: int) -> List[User]: ...

    def count(self) -> int: ...

    def list_logs(self, user_id: str) -> List[UserLog]: ...


def _row_to_user(row: Mapping[str, Any]) -> User:
    return User(
        id=str(row["id"]),
        name=str(row["name"]),
        email=str(row["email"]),
        created_at=parse_datetime(row["created_at"]),
        updated_at=parse_datetime(row["updated_at"]),
    )


class SQLUserRepository:
    """Relational implementation of :class:`UserRepository`."""

    def __init__(self, handle: Transaction) -> None:
        self._handle = handle

    def insert(self, user: User) -> None:
        try:
            self._handle.execute(
                """
                INSERT INTO users (id, name, email, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    user.id,
                    user.name,
                    user.email,
                    self._handle.serialize_datetime(user.created_at),
                    self._handle.serialize_datetime(user.updated_at),
                ),
            )
        except IntegrityViolation as exc:
            if "email" in (exc.constraint or exc.message):
                raise email_already_exists(user.email) from exc
            raise PersistenceError(f"failed to insert user {user.id}: {exc.message}") from exc
        logger.debug("Inserted user %s", user.id)

    def update_row(self, user: User) -> None:
        try:
            affected = self._handle.execute(
                "UPDATE users SET name = ?, email = ?, updated_at = ? WHERE id = ?",
                (user.name, user.email, self._handle.serialize_datetime(user.updated_at), user.id),
            )
        except IntegrityViolation as exc:
            raise email_already_exists(user.email) from exc
        if affected == 0:
            raise user_not_found(user.id)
        logger.debug("Updated user %s", user.id)

    def delete_row(self, user_id: str) -> None:
        affected = self._handle.execute("DELETE FROM users WHERE id = ?", (user_id,))
        if affected == 0:
            raise user_not_found(user_id)
        logger.debug("Deleted user %s", user_id)

    def select_for_update(self, user_id: str) -> Optional[User]:
        row = self._handle.fetchone(
            self._handle.lock(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?"),
            (user_id,),
        )
        if row is None:
            return None
        return _row_to_user(row)

    def select_by_email_for_update(self, email: str) -> Optional[User]:
        row = self._handle.fetchone(
            self._handle.lock(f"SELECT {_USER_COLUMNS} FROM users WHERE email = ?"),
            (email,),
        )
        if row is None:
            return None
        return _row_to_user(row)

    def insert_log(self, log: UserLog) -> None:
        self._handle.execute(
            "INSERT INTO user_logs (id, user_id, action, created_at) VALUES (?, ?, ?, ?)",
            (log.id, log.user_id, log.action.value, self._handle.serialize_datetime(log.created_at)),
        )
        logger.debug("Recorded %s log %s for user %s", log.action.value, log.id, log.user_id)


class UserQueryService:
    """Unlocked read path over :class:`Database`."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def find_by_id(self, user_id: str) -> Optional[User]:
        with self._database.session() as handle:
            row = handle.fetchone(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,))
        if row is None:
            return None
        return _row_to_user(row)

    def find_by_email(self, email: str) -> Optional[User]:
        with self._database.session() as handle:
            row = handle.fetchone(f"SELECT {_USER_COLUMNS} FROM users WHERE email = ?", (email,))
        if row is None:
            return None
        return _row_to_user(row)

    def find_all(self, limit: int, offset: int) -> List[User]:
        with self._database.session() as handle:
            rows = handle.fetchall(
                f"SELECT {_USER_COLUMNS} FROM users ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
                (limit, offset),
            )
        return [_row_to_user(row) for row in rows]

    def count(self) -> int:
        with self._database.session() as handle:
            row = handle.fetchone("SELECT COUNT(*) AS total FROM users")
        if row is None:
            return 0
        return int(row["total"])

    def list_logs(self, user_id: str) -> List[UserLog]:
        """Return the audit trail recorded for ``user_id``, oldest first."""

        with self._database.session() as handle:
            rows = handle.fetchall(
                "SELECT id, user_id, action, created_at FROM user_logs WHERE user_id = ? ORDER BY created_at, id",
                (user_id,),
            )
        return [
            UserLog(
                id=str(row["id"]),
                user_id=str(row["user_id"]),
                action=UserLogAction(row["action"]),
                created_at=parse_datetime(row["created_at"]),
            )
            for row in rows
        ]


__all__ = ["SQLUserRepository", "UserQueries", "UserQueryService", "UserRepository"]
