"""Error taxonomy shared by the domain, persistence and HTTP layers."""
from __future__ import annotations

from typing import Optional


class UserServiceError(Exception):
    """Base class for every error raised by the user service.

    ``message`` is meant for logs; ``user_message`` is the only text that may
    be returned to API clients.
    """

    code = "INTERNAL_ERROR"
    default_user_message = "An unexpected error occurred"

    def __init__(self, message: str, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.user_message = user_message or self.default_user_message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(UserServiceError):
    code = "VALIDATION_ERROR"
    default_user_message = "The request is invalid"

    def __init__(self, field: str, message: str, user_message: Optional[str] = None) -> None:
        super().__init__(message, user_message)
        self.field = field

    def __str__(self) -> str:
        return f"{self.code}: {self.message} (field: {self.field})"


class NotFoundError(UserServiceError):
    code = "NOT_FOUND"
    default_user_message = "The requested resource was not found"

    def __init__(self, resource: str, message: str, user_message: Optional[str] = None) -> None:
        super().__init__(message, user_message)
        self.resource = resource


class ConflictError(UserServiceError):
    code = "CONFLICT"
    default_user_message = "The resource conflicts with an existing one"

    def __init__(self, resource: str, message: str, user_message: Optional[str] = None) -> None:
        super().__init__(message, user_message)
        self.resource = resource


class PersistenceError(UserServiceError):
    """The database rejected or failed an operation."""

    code = "PERSISTENCE_ERROR"
    default_user_message = "A storage error occurred"


class IntegrityViolation(PersistenceError):
    """A constraint such as a primary key or UNIQUE index rejected a write."""

    code = "INTEGRITY_ERROR"

    def __init__(self, message: str, *, constraint: Optional[str] = None) -> None:
        super().__init__(message)
        self.constraint = constraint


class TransactionError(PersistenceError):
    """Commit or rollback failed.

    When a rollback fails after the unit of work raised, ``original`` holds
    the error that caused the rollback and takes precedence over
    ``rollback_error``.
    """

    code = "TRANSACTION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        original: Optional[BaseException] = None,
        rollback_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.original = original
        self.rollback_error = rollback_error
        if isinstance(original, UserServiceError):
            self.user_message = original.user_message


class OperationCancelled(PersistenceError):
    code = "CANCELLED"
    default_user_message = "The request was cancelled before it completed"


# ----------------------------------------------------------------------
# User specific helpers
# ----------------------------------------------------------------------
def user_not_found(user_id: str) -> NotFoundError:
    return NotFoundError("user", f"user not found: {user_id}", "The requested user could not be found")


def email_already_exists(email: str) -> ConflictError:
    return ConflictError("user", f"email already exists: {email}", "This email address is already in use")


def name_required() -> ValidationError:
    return ValidationError("name", "name is required", "Name is required")


def email_required() -> ValidationError:
    return ValidationError("email", "email is required", "Email address is required")


__all__ = [
    "ConflictError",
    "IntegrityViolation",
    "NotFoundError",
    "OperationCancelled",
    "PersistenceError",
    "TransactionError",
    "UserServiceError",
    "ValidationError",
    "email_already_exists",
    "email_required",
    "name_required",
    "user_not_found",
]
