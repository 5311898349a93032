from __future__ import annotations

from datetime import timedelta

import pytest
from ulid import ULID

from userservice.errors import ValidationError
from userservice.models import UNSET, User, UserLog, UserLogAction, new_log_id


def test_new_user_assigns_identity_and_timestamps() -> None:
    user = User.new("  Alice  ", " Alice@Example.COM ")

    assert user.id
    assert user.name == "Alice"
    assert user.email == "alice@example.com"
    assert user.created_at == user.updated_at
    assert user.created_at.tzinfo is not None


def test_new_users_get_distinct_ids() -> None:
    first = User.new("Alice", "alice@example.com")
    second = User.new("Alice", "alice@example.com")
    assert first.id != second.id


@pytest.mark.parametrize(
    ("name", "email", "field"),
    [
        ("", "alice@example.com", "name"),
        ("   ", "alice@example.com", "name"),
        ("Alice", "", "email"),
        ("", "", "name"),
    ],
)
def test_new_user_requires_name_and_email(name: str, email: str, field: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        User.new(name, email)
    assert excinfo.value.field == field


def test_update_overwrites_supplied_fields() -> None:
    user = User.new("Alice", "alice@example.com")
    created_at = user.created_at

    user.update(name="Alicia", email="ALICIA@example.com")

    assert user.name == "Alicia"
    assert user.email == "alicia@example.com"
    assert user.created_at == created_at
    assert user.updated_at > created_at


def test_update_ignores_unset_and_blank_fields() -> None:
    user = User.new("Alice", "alice@example.com")
    previous = user.updated_at

    user.update()
    assert (user.name, user.email) == ("Alice", "alice@example.com")
    assert user.updated_at > previous

    previous = user.updated_at
    user.update(name="", email="  ")
    assert (user.name, user.email) == ("Alice", "alice@example.com")
    assert user.updated_at > previous


def test_update_moves_updated_at_forward_even_with_a_future_timestamp() -> None:
    user = User.new("Alice", "alice@example.com")
    future = user.updated_at + timedelta(hours=1)
    user.updated_at = future

    user.update(name=UNSET)

    assert user.updated_at > future


def test_log_record_uses_sortable_ids() -> None:
    log = UserLog.record("user-1", UserLogAction.CREATED)

    assert log.user_id == "user-1"
    assert log.action is UserLogAction.CREATED
    assert len(log.id) == 26

    earlier = new_log_id(log.created_at - timedelta(seconds=1))
    assert earlier < log.id


def test_log_ids_encode_their_timestamp() -> None:
    log = UserLog.record("user-1", UserLogAction.DELETED)

    decoded = ULID.from_str(log.id)
    assert str(decoded) == log.id
    assert abs(decoded.datetime - log.created_at) < timedelta(milliseconds=2)
