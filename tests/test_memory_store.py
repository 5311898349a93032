from __future__ import annotations

import pytest

from userservice.errors import ConflictError, NotFoundError, OperationCancelled
from userservice.memory import InMemoryUserStore
from userservice.models import User, UserLogAction
from userservice.service import UserService
from userservice.transactions import Cancellation


def test_memory_service_supports_the_full_lifecycle(memory_service: UserService) -> None:
    user = memory_service.create_user("Alice", "alice@example.com")
    assert memory_service.get_user(user.id) == user

    updated = memory_service.update_user(user.id, email="alicia@example.com")
    assert updated.email == "alicia@example.com"
    assert memory_service.get_user(user.id).email == "alicia@example.com"

    memory_service.delete_user(user.id)
    with pytest.raises(NotFoundError):
        memory_service.get_user(user.id)

    actions = [log.action for log in memory_service.user_history(user.id)]
    assert actions == [UserLogAction.CREATED, UserLogAction.DELETED]


def test_memory_conflicts_match_the_sql_store(memory_service: UserService) -> None:
    memory_service.create_user("Alice", "alice@example.com")
    bob = memory_service.create_user("Bob", "bob@example.com")

    with pytest.raises(ConflictError):
        memory_service.create_user("Carol", "alice@example.com")
    with pytest.raises(ConflictError):
        memory_service.update_user(bob.id, email="alice@example.com")

    assert memory_service.list_users(10, 0).total == 2


def test_failed_work_leaves_store_untouched() -> None:
    store = InMemoryUserStore()
    user = User.new("Alice", "alice@example.com")

    def work(repository):
        repository.insert(user)
        raise RuntimeError("failure after insert")

    with pytest.raises(RuntimeError):
        store.run_in_transaction(work)

    assert store.find_by_id(user.id) is None
    assert store.count() == 0


def test_results_are_copies() -> None:
    store = InMemoryUserStore()
    user = User.new("Alice", "alice@example.com")
    store.run_in_transaction(lambda repository: repository.insert(user))

    fetched = store.find_by_id(user.id)
    assert fetched is not None
    fetched.name = "Mallory"
    assert store.find_by_id(user.id).name == "Alice"


def test_cancellation_discards_work() -> None:
    store = InMemoryUserStore()
    cancellation = Cancellation()

    def work(repository):
        repository.insert(User.new("Alice", "alice@example.com"))
        cancellation.cancel()

    with pytest.raises(OperationCancelled):
        store.run_in_transaction(work, cancellation=cancellation)
    assert store.count() == 0
