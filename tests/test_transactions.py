from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, List

import pytest

from userservice.database import Database
from userservice.errors import OperationCancelled, PersistenceError, TransactionError, email_already_exists
from userservice.models import User
from userservice.repository import UserQueryService
from userservice.transactions import Cancellation, SQLTransactionManager


class _FakeHandle:
    def __init__(
        self, *, fail_begin: bool = False, fail_rollback: bool = False, fail_commit: bool = False
    ) -> None:
        self.calls: List[str] = []
        self._fail_begin = fail_begin
        self._fail_rollback = fail_rollback
        self._fail_commit = fail_commit

    def begin(self) -> None:
        self.calls.append("begin")
        if self._fail_begin:
            raise PersistenceError("database is locked")

    def commit(self) -> None:
        self.calls.append("commit")
        if self._fail_commit:
            raise PersistenceError("disk I/O error")

    def rollback(self) -> None:
        self.calls.append("rollback")
        if self._fail_rollback:
            raise PersistenceError("connection lost")


class _FakeDatabase:
    def __init__(self, handle: _FakeHandle) -> None:
        self.handle = handle

    @contextmanager
    def session(self, cancellation=None) -> Iterator[_FakeHandle]:
        yield self.handle


def _manager(handle: _FakeHandle) -> SQLTransactionManager:
    return SQLTransactionManager(_FakeDatabase(handle), repository_factory=lambda handle: handle)  # type: ignore[arg-type]


def test_successful_work_commits_once() -> None:
    handle = _FakeHandle()
    assert _manager(handle).run_in_transaction(lambda repository: 42) == 42
    assert handle.calls == ["begin", "commit"]


def test_failing_work_rolls_back_and_propagates_unchanged() -> None:
    handle = _FakeHandle()
    error = email_already_exists("alice@example.com")

    def work(repository):
        raise error

    with pytest.raises(type(error)) as excinfo:
        _manager(handle).run_in_transaction(work)

    assert excinfo.value is error
    assert handle.calls == ["begin", "rollback"]


def test_rollback_failure_reports_both_errors() -> None:
    handle = _FakeHandle(fail_rollback=True)
    original = ValueError("boom")

    def work(repository):
        raise original

    with pytest.raises(TransactionError) as excinfo:
        _manager(handle).run_in_transaction(work)

    error = excinfo.value
    assert error.original is original
    assert isinstance(error.rollback_error, PersistenceError)
    assert "failed to rollback" in error.message
    assert "original error: boom" in error.message
    assert error.__cause__ is original


def test_rollback_failure_keeps_the_user_message_of_the_original() -> None:
    handle = _FakeHandle(fail_rollback=True)
    original = email_already_exists("alice@example.com")

    def work(repository):
        raise original

    with pytest.raises(TransactionError) as excinfo:
        _manager(handle).run_in_transaction(work)

    assert excinfo.value.user_message == original.user_message


def test_commit_failure_is_a_transaction_error() -> None:
    handle = _FakeHandle(fail_commit=True)
    with pytest.raises(TransactionError):
        _manager(handle).run_in_transaction(lambda repository: None)
    assert handle.calls == ["begin", "commit"]


def test_begin_failure_rolls_back_the_session() -> None:
    handle = _FakeHandle(fail_begin=True)
    ran: List[bool] = []

    with pytest.raises(PersistenceError, match="database is locked"):
        _manager(handle).run_in_transaction(lambda repository: ran.append(True))

    assert ran == []
    assert handle.calls == ["begin", "rollback"]


def test_work_failure_after_insert_leaves_no_row(database: Database) -> None:
    manager = SQLTransactionManager(database)
    user = User.new("Alice", "alice@example.com")

    def work(repository):
        repository.insert(user)
        raise RuntimeError("failure after insert")

    with pytest.raises(RuntimeError):
        manager.run_in_transaction(work)

    assert UserQueryService(database).find_by_id(user.id) is None


def test_cancelled_before_start_writes_nothing(database: Database) -> None:
    manager = SQLTransactionManager(database)
    cancellation = Cancellation()
    cancellation.cancel()
    ran: List[bool] = []

    def work(repository):
        ran.append(True)

    with pytest.raises(OperationCancelled):
        manager.run_in_transaction(work, cancellation=cancellation)
    assert ran == []


def test_cancellation_mid_transaction_rolls_back(database: Database) -> None:
    manager = SQLTransactionManager(database)
    cancellation = Cancellation()
    first = User.new("Alice", "alice@example.com")
    second = User.new("Bob", "bob@example.com")

    def work(repository):
        repository.insert(first)
        cancellation.cancel()
        repository.insert(second)

    with pytest.raises(OperationCancelled):
        manager.run_in_transaction(work, cancellation=cancellation)

    assert UserQueryService(database).count() == 0


def test_cancellation_runs_registered_callbacks_once() -> None:
    cancellation = Cancellation()
    calls: List[str] = []
    cancellation.register(lambda: calls.append("first"))
    unregister = cancellation.register(lambda: calls.append("second"))
    unregister()

    cancellation.cancel()
    cancellation.cancel()

    assert calls == ["first"]
    assert cancellation.cancelled
    with pytest.raises(OperationCancelled):
        cancellation.raise_if_cancelled()


def test_unregistered_callback_is_skipped_while_cancel_is_running() -> None:
    cancellation = Cancellation()
    entered = threading.Event()
    release = threading.Event()
    calls: List[str] = []

    def slow_interrupt() -> None:
        calls.append("first")
        entered.set()
        release.wait(timeout=5)

    cancellation.register(slow_interrupt)
    unregister = cancellation.register(lambda: calls.append("second"))

    canceller = threading.Thread(target=cancellation.cancel)
    canceller.start()
    assert entered.wait(timeout=5)

    unregister()
    release.set()
    canceller.join(timeout=5)

    assert not canceller.is_alive()
    assert calls == ["first"]


def test_unregister_waits_for_a_running_interrupt() -> None:
    cancellation = Cancellation()
    entered = threading.Event()
    release = threading.Event()
    events: List[str] = []

    def slow_interrupt() -> None:
        entered.set()
        release.wait(timeout=5)
        events.append("interrupt finished")

    unregister = cancellation.register(slow_interrupt)
    canceller = threading.Thread(target=cancellation.cancel)
    canceller.start()
    assert entered.wait(timeout=5)

    def release_connection() -> None:
        unregister()
        events.append("unregistered")

    releaser = threading.Thread(target=release_connection)
    releaser.start()
    releaser.join(timeout=0.2)
    assert releaser.is_alive()

    release.set()
    releaser.join(timeout=5)
    canceller.join(timeout=5)

    assert events == ["interrupt finished", "unregistered"]
