"""
Locking and Unit of Work

Per-entity re-entrant locks keyed by account id or deposit number. Keys are
always acquired in sorted order, and each acquisition is bounded by a timeout
so contention surfaces as OperationTimedOut instead of a hang.

A UnitOfWork combines the locks with ``storage.atomic()`` and a deadline that
is checked before the outermost commit.

Entity locks always come before the storage unit lock. An operation names
every account and deposit it will touch in its outermost acquisition, and
nested units only re-enter locks the thread already holds.
"""

import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from .errors import OperationTimedOut
from .logging_config import get_logger, log_action
from .storage import StorageInterface


logger = get_logger("retail_banking.locking")


class LockManager:
    """Registry of per-entity re-entrant locks"""

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def acquire(self, *keys: Optional[str], timeout: Optional[float] = None) -> Iterator[List[str]]:
        """
        Hold the locks for every key (None keys are ignored)

        Raises:
            OperationTimedOut: If any lock cannot be acquired within the timeout;
                locks already taken are released first
        """
        ordered = sorted({key for key in keys if key})
        wait = self.timeout_seconds if timeout is None else timeout
        held: List[threading.RLock] = []

        try:
            for key in ordered:
                lock = self._lock_for(key)
                if not lock.acquire(timeout=wait):
                    log_action(logger, "warning", f"Timed out waiting for lock on {key}",
                               action="lock_timeout", resource=key)
                    raise OperationTimedOut(f"Could not lock {key} within {wait} seconds")
                held.append(lock)
            yield ordered
        finally:
            for lock in reversed(held):
                lock.release()


class UnitOfWork:
    """
    Locks + atomic storage unit + deadline

    Usage:
        with uow(account.id, other.id):
            ...mutations...
    """

    def __init__(self, storage: StorageInterface, lock_manager: LockManager,
                 timeout_seconds: float = 30.0):
        self.storage = storage
        self.lock_manager = lock_manager
        self.timeout_seconds = timeout_seconds

    @contextmanager
    def __call__(self, *lock_keys: Optional[str]):
        with self.lock_manager.acquire(*lock_keys):
            deadline = time.monotonic() + self.timeout_seconds
            with self.storage.atomic():
                yield self
                if time.monotonic() > deadline:
                    raise OperationTimedOut(
                        f"Unit of work exceeded {self.timeout_seconds} seconds and was rolled back"
                    )
