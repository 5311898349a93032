"""Domain models for user accounts and their audit trail."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Union

from ulid import ULID

from .errors import email_required, name_required


class _Unset(Enum):
    UNSET = "UNSET"

    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset.UNSET
"""Marker for a field that an update should leave untouched."""

MaybeStr = Union[str, _Unset]


class UserLogAction(str, Enum):
    """Actions recorded in the user audit log."""

    CREATED = "created"
    DELETED = "deleted"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalise_name(name: str) -> str:
    return name.strip()


def normalise_email(email: str) -> str:
    return email.strip().lower()


def new_user_id() -> str:
    return str(uuid.uuid4())


def new_log_id(now: datetime | None = None) -> str:
    """Return a time-ordered ULID string for an audit entry created at ``now``."""

    if now is None:
        return str(ULID())
    return str(ULID.from_datetime(now))


@dataclass
class User:
    """Represents a user account stored in the user database."""

    id: str
    name: str
    email: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def new(cls, name: str, email: str) -> "User":
        """Build a brand new user, assigning an id and timestamps.

        Raises :class:`~userservice.errors.ValidationError` scoped to
        ``name`` or ``email`` when either is blank.
        """

        normalised_name = normalise_name(name)
        if not normalised_name:
            raise name_required()
        normalised_email = normalise_email(email)
        if not normalised_email:
            raise email_required()

        now = _utcnow()
        return cls(
            id=new_user_id(),
            name=normalised_name,
            email=normalised_email,
            created_at=now,
            updated_at=now,
        )

    def update(self, name: MaybeStr = UNSET, email: MaybeStr = UNSET) -> "User":
        """Overwrite the supplied fields in place and refresh ``updated_at``.

        A field that is ``UNSET`` or blank is left unchanged, so an update can
        never clear the name or email.
        """

        if name is not UNSET and normalise_name(name):
            self.name = normalise_name(name)
        if email is not UNSET and normalise_email(email):
            self.email = normalise_email(email)

        now = _utcnow()
        if now <= self.updated_at:
            now = self.updated_at + timedelta(microseconds=1)
        self.updated_at = now
        return self


@dataclass(frozen=True)
class UserLog:
    """Immutable audit record for a user lifecycle event."""

    id: str
    user_id: str
    action: UserLogAction
    created_at: datetime

    @classmethod
    def record(cls, user_id: str, action: UserLogAction) -> "UserLog":
        now = _utcnow()
        return cls(id=new_log_id(now), user_id=user_id, action=action, created_at=now)


@dataclass(frozen=True)
class UserPage:
    """One page of users together with the total number of users."""

    users: List[User]
    total: int


__all__ = [
    "UNSET",
    "MaybeStr",
    "User",
    "UserLog",
    "UserLogAction",
    "UserPage",
    "new_log_id",
    "new_user_id",
    "normalise_email",
    "normalise_name",
]
