"""
Tests for per-entity locks and units of work
"""

import threading
import pytest

from retail_banking.errors import OperationTimedOut
from retail_banking.locking import LockManager, UnitOfWork
from retail_banking.storage import InMemoryStorage


class TestLockManager:

    def setup_method(self):
        self.locks = LockManager(timeout_seconds=0.2)

    def test_acquire_returns_sorted_keys(self):
        with self.locks.acquire("b", None, "a", "b") as held:
            assert held == ["a", "b"]

    def test_reentrant_on_same_thread(self):
        with self.locks.acquire("acct-1"):
            with self.locks.acquire("acct-1", "acct-2") as held:
                assert held == ["acct-1", "acct-2"]

    def test_timeout_when_held_by_other_thread(self):
        holding = threading.Event()
        release = threading.Event()

        def holder():
            with self.locks.acquire("acct-1"):
                holding.set()
                release.wait(2)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            assert holding.wait(2)
            with pytest.raises(OperationTimedOut):
                with self.locks.acquire("acct-0", "acct-1"):
                    pass
            # acct-0 was released when acct-1 timed out
            with self.locks.acquire("acct-0", timeout=0):
                pass
        finally:
            release.set()
            thread.join()


class TestUnitOfWork:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.uow = UnitOfWork(self.storage, LockManager(timeout_seconds=0.2), timeout_seconds=30.0)

    def test_commits_on_success(self):
        with self.uow("acct-1"):
            self.storage.save("t", "r1", {"id": "r1"})
        assert self.storage.exists("t", "r1")

    def test_rolls_back_on_error(self):
        with pytest.raises(ValueError):
            with self.uow("acct-1"):
                self.storage.save("t", "r1", {"id": "r1"})
                raise ValueError("boom")
        assert not self.storage.exists("t", "r1")

    def test_deadline_expiry_rolls_back(self):
        uow = UnitOfWork(self.storage, LockManager(), timeout_seconds=-1)
        with pytest.raises(OperationTimedOut):
            with uow("acct-1"):
                self.storage.save("t", "r1", {"id": "r1"})
        assert not self.storage.exists("t", "r1")

    def test_concurrent_units_serialise_counter(self):
        self.storage.save("counters", "c", {"id": "c", "value": 0})

        def bump():
            for _ in range(50):
                with self.uow("c"):
                    record = self.storage.load("counters", "c")
                    record["value"] += 1
                    self.storage.save("counters", "c", record)

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert self.storage.load("counters", "c")["value"] == 200
