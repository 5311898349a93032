"""In-memory user store with the same capabilities as the relational one.

Writers are serialised by a single lock and work on a private copy of the
data that only replaces the shared state on commit, so a failing unit of
work leaves nothing behind.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Dict, List, Optional, TypeVar

from .errors import PersistenceError, email_already_exists, user_not_found
from .models import User, UserLog
from .transactions import Cancellation, Work

T = TypeVar("T")


class _InMemoryRepository:
    def __init__(
        self,
        users: Dict[str, User],
        logs: List[UserLog],
        cancellation: Optional[Cancellation],
    ) -> None:
        self.users = users
        self.logs = logs
        self._cancellation = cancellation

    def _check(self) -> None:
        if self._cancellation is not None:
            self._cancellation.raise_if_cancelled()

    def insert(self, user: User) -> None:
        self._check()
        if user.id in self.users:
            raise PersistenceError(f"failed to insert user {user.id}: id already exists")
        if any(existing.email == user.email for existing in self.users.values()):
            raise email_already_exists(user.email)
        self.users[user.id] = replace(user)

    def update_row(self, user: User) -> None:
        self._check()
        if user.id not in self.users:
            raise user_not_found(user.id)
        for existing in self.users.values():
            if existing.id != user.id and existing.email == user.email:
                raise email_already_exists(user.email)
        self.users[user.id] = replace(user)

    def delete_row(self, user_id: str) -> None:
        self._check()
        if self.users.pop(user_id, None) is None:
            raise user_not_found(user_id)

    def select_for_update(self, user_id: str) -> Optional[User]:
        self._check()
        user = self.users.get(user_id)
        return replace(user) if user is not None else None

    def select_by_email_for_update(self, email: str) -> Optional[User]:
        self._check()
        for user in self.users.values():
            if user.email == email:
                return replace(user)
        return None

    def insert_log(self, log: UserLog) -> None:
        self._check()
        self.logs.append(log)


class InMemoryUserStore:
    """Transaction manager and query service backed by plain dictionaries."""

    def __init__(self) -> None:
        self._users: Dict[str, User] = {}
        self._logs: List[UserLog] = []
        self._lock = threading.Lock()

    def run_in_transaction(self, work: Work[T], *, cancellation: Optional[Cancellation] = None) -> T:
        with self._lock:
            working = _InMemoryRepository(
                {user_id: replace(user) for user_id, user in self._users.items()},
                list(self._logs),
                cancellation,
            )
            working._check()
            result = work(working)
            working._check()
            self._users = working.users
            self._logs = working.logs
            return result

    def find_by_id(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return replace(user) if user is not None else None

    def find_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            for user in self._users.values():
                if user.email == email:
                    return replace(user)
        return None

    def find_all(self, limit: int, offset: int) -> List[User]:
        with self._lock:
            ordered = sorted(self._users.values(), key=lambda user: user.id)
            ordered.sort(key=lambda user: user.created_at, reverse=True)
            return [replace(user) for user in ordered[offset : offset + limit]]

    def count(self) -> int:
        with self._lock:
            return len(self._users)

    def list_logs(self, user_id: str) -> List[UserLog]:
        with self._lock:
            return [log for log in self._logs if log.user_id == user_id]


__all__ = ["InMemoryUserStore"]
