"""Transaction boundary for the write path."""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Protocol, TypeVar

from .database import Database, Transaction
from .errors import OperationCancelled, TransactionError
from .repository import SQLUserRepository, UserRepository

logger = logging.getLogger("userservice.transactions")

T = TypeVar("T")

Work = Callable[[UserRepository], T]


class Cancellation:
    """Thread-safe cancellation signal passed down a single use-case call.

    Callbacks registered by in-flight database handles are invoked once when
    :meth:`cancel` is called so that a blocked statement is interrupted. Once
    the function returned by :meth:`register` has returned, its callback is
    neither running nor will it run, so a handle can safely give its
    connection back after unregistering. Callbacks must not unregister
    themselves.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._running: Optional[Callable[[], None]] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            pending = list(self._callbacks)

        for callback in pending:
            with self._lock:
                if callback not in self._callbacks:
                    continue
                self._running = callback
            try:
                callback()
            except Exception:  # pragma: no cover - driver specific failures
                logger.exception("Failed to interrupt database operation")
            finally:
                with self._lock:
                    self._running = None
                    self._idle.notify_all()

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""

        with self._lock:
            self._callbacks.append(callback)

        def unregister() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)
                while self._running is not None and self._running == callback:
                    self._idle.wait()

        return unregister

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled("operation cancelled")


class TransactionManager(Protocol):
    def run_in_transaction(self, work: Work[T], *, cancellation: Optional[Cancellation] = None) -> T: ...


class SQLTransactionManager:
    """Run a unit of work atomically against :class:`Database`.

    Exactly one of commit or rollback happens per call. Errors raised by the
    unit of work propagate unchanged; a failing rollback is reported as a
    :class:`TransactionError` that keeps the original error as its cause.
    """

    def __init__(
        self,
        database: Database,
        *,
        repository_factory: Callable[[Transaction], UserRepository] = SQLUserRepository,
    ) -> None:
        self._database = database
        self._repository_factory = repository_factory

    def run_in_transaction(self, work: Work[T], *, cancellation: Optional[Cancellation] = None) -> T:
        with self._database.session(cancellation) as handle:
            try:
                handle.begin()
                result = work(self._repository_factory(handle))
            except BaseException as exc:
                self._rollback(handle, exc)
                raise

            try:
                handle.commit()
            except Exception as exc:
                if cancellation is not None and cancellation.cancelled:
                    raise OperationCancelled(f"commit interrupted by cancellation: {exc}") from exc
                raise TransactionError(f"failed to commit transaction: {exc}") from exc
            return result

    def _rollback(self, handle: Transaction, original: BaseException) -> None:
        try:
            handle.rollback()
        except Exception as rollback_exc:
            logger.error(
                "Rollback failed after %s: %s",
                type(original).__name__,
                rollback_exc,
            )
            raise TransactionError(
                f"failed to rollback: {rollback_exc} (original error: {original})",
                original=original,
                rollback_error=rollback_exc,
            ) from original
        logger.debug("Rolled back transaction after %s", type(original).__name__)


__all__ = ["Cancellation", "SQLTransactionManager", "TransactionManager", "Work"]
