"""Use cases for the user resource.

Create, Update and Delete each run inside a single transaction and lock the
rows they depend on before checking invariants, so a concurrent request for
the same id or email waits for this one to finish. Get and List use the
unlocked query path.
"""

from __future__ import annotations

import logging
from typing import Optional

from .errors import (
    ConflictError,
    NotFoundError,
    UserServiceError,
    ValidationError,
    email_already_exists,
    user_not_found,
)
from .models import UNSET, MaybeStr, User, UserLog, UserLogAction, UserPage, normalise_email
from .repository import UserQueries, UserRepository
from .transactions import Cancellation, TransactionManager


class UserService:
    """Orchestrates the user lifecycle on top of a transaction manager."""

    def __init__(
        self,
        transactions: TransactionManager,
        queries: UserQueries,
        *,
        audit: bool = True,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._transactions = transactions
        self._queries = queries
        self._audit = audit
        self._logger = logger or logging.getLogger("userservice.service")

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------
    def create_user(self, name: str, email: str, *, cancellation: Optional[Cancellation] = None) -> User:
        self._logger.debug("Creating user name=%r email=%r", name, email)
        normalised_email = normalise_email(email)

        def work(repository: UserRepository) -> User:
            if normalised_email and repository.select_by_email_for_update(normalised_email) is not None:
                raise email_already_exists(normalised_email)

            user = User.new(name, email)
            repository.insert(user)
            if self._audit:
                repository.insert_log(UserLog.record(user.id, UserLogAction.CREATED))
            return user

        user = self._run("create", work, cancellation, email=normalised_email)
        self._logger.info("User %s created (%s)", user.id, user.email)
        return user

    def update_user(
        self,
        user_id: str,
        name: MaybeStr = UNSET,
        email: MaybeStr = UNSET,
        *,
        cancellation: Optional[Cancellation] = None,
    ) -> User:
        """Apply a partial update; ``UNSET`` or blank fields keep their value."""

        self._logger.debug("Updating user %s name=%r email=%r", user_id, name, email)
        new_email = normalise_email(email) if email is not UNSET else ""

        def work(repository: UserRepository) -> User:
            user = repository.select_for_update(user_id)
            if user is None:
                raise user_not_found(user_id)

            if new_email and new_email != user.email:
                if repository.select_by_email_for_update(new_email) is not None:
                    raise email_already_exists(new_email)

            user.update(name, email)
            repository.update_row(user)
            return user

        user = self._run("update", work, cancellation, user_id=user_id)
        self._logger.info("User %s updated (%s)", user.id, user.email)
        return user

    def delete_user(self, user_id: str, *, cancellation: Optional[Cancellation] = None) -> None:
        self._logger.debug("Deleting user %s", user_id)

        def work(repository: UserRepository) -> None:
            if repository.select_for_update(user_id) is None:
                raise user_not_found(user_id)
            if self._audit:
                repository.insert_log(UserLog.record(user_id, UserLogAction.DELETED))
            repository.delete_row(user_id)

        self._run("delete", work, cancellation, user_id=user_id)
        self._logger.info("User %s deleted", user_id)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------
    def get_user(self, user_id: str) -> User:
        user = self._queries.find_by_id(user_id)
        if user is None:
            self._logger.debug("User %s not found", user_id)
            raise user_not_found(user_id)
        return user

    def list_users(self, limit: int, offset: int) -> UserPage:
        self._logger.debug("Listing users limit=%s offset=%s", limit, offset)
        users = self._queries.find_all(limit, offset)
        total = self._queries.count()
        return UserPage(users=users, total=total)

    def user_history(self, user_id: str) -> list[UserLog]:
        """Return the audit entries for ``user_id``; they outlive the user."""

        return self._queries.list_logs(user_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _run(self, operation: str, work, cancellation: Optional[Cancellation], **context: object):
        try:
            return self._transactions.run_in_transaction(work, cancellation=cancellation)
        except UserServiceError as exc:
            if isinstance(exc, (ValidationError, NotFoundError, ConflictError)):
                self._logger.warning("User %s rejected: %s %s", operation, exc, context)
            else:
                self._logger.error("User %s failed: %s %s", operation, exc, context)
            raise
        except Exception:
            self._logger.exception("User %s failed unexpectedly %s", operation, context)
            raise


__all__ = ["UserService"]
