"""
Tests for storage backends, atomic units and unique constraints
"""

import pytest
import tempfile
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from retail_banking.currency import money
from retail_banking.errors import PersistenceFailure
from retail_banking.storage import InMemoryStorage, SQLiteStorage, StorageRecord, to_storable


test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


class Boom(Exception):
    pass


def _backends(temp_dir):
    return [InMemoryStorage(), SQLiteStorage(Path(temp_dir) / "test.db")]


class TestStorageBasics:
    """CRUD behaviour shared by both backends"""

    def test_basic_operations(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            for storage in _backends(temp_dir):
                storage.save("test_table", "record_1", test_data)
                assert storage.load("test_table", "record_1") == test_data
                assert storage.exists("test_table", "record_1")
                assert not storage.exists("test_table", "missing")
                assert storage.load("test_table", "missing") is None

                storage.save("test_table", "record_2", {"id": "record_2", "name": "Other"})
                assert len(storage.load_all("test_table")) == 2
                assert storage.count("test_table") == 2

                results = storage.find("test_table", {"name": "Test Record"})
                assert len(results) == 1
                assert results[0]["id"] == "test_001"

                storage.clear_table("test_table")
                assert storage.count("test_table") == 0
                storage.close()

    def test_save_overwrites_existing_record(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            for storage in _backends(temp_dir):
                storage.save("t", "r1", {"id": "r1", "value": 1})
                storage.save("t", "r1", {"id": "r1", "value": 2})
                assert storage.count("t") == 1
                assert storage.load("t", "r1")["value"] == 2
                storage.close()

    def test_loaded_records_are_copies(self):
        storage = InMemoryStorage()
        storage.save("t", "r1", {"id": "r1", "nested": {"a": 1}})
        loaded = storage.load("t", "r1")
        loaded["nested"]["a"] = 99
        assert storage.load("t", "r1")["nested"]["a"] == 1


class TestAtomicUnits:
    """Nested all-or-nothing units"""

    def test_exception_rolls_back_everything(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            for storage in _backends(temp_dir):
                storage.save("t", "kept", {"id": "kept"})

                with pytest.raises(Boom):
                    with storage.atomic():
                        storage.save("t", "r1", {"id": "r1"})
                        storage.save("t", "kept", {"id": "kept", "changed": True})
                        raise Boom()

                assert not storage.exists("t", "r1")
                assert "changed" not in storage.load("t", "kept")
                storage.close()

    def test_nested_unit_joins_outer(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            for storage in _backends(temp_dir):
                with pytest.raises(Boom):
                    with storage.atomic():
                        with storage.atomic():
                            storage.save("t", "inner", {"id": "inner"})
                        assert storage.in_transaction
                        raise Boom()

                assert not storage.exists("t", "inner")
                assert not storage.in_transaction
                storage.close()

    def test_commit_persists(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            for storage in _backends(temp_dir):
                with storage.atomic():
                    storage.save("t", "r1", {"id": "r1"})
                    with storage.atomic():
                        storage.save("t", "r2", {"id": "r2"})
                assert storage.count("t") == 2
                storage.close()

    def test_swallowed_inner_failure_rolls_back_outer(self):
        storage = InMemoryStorage()

        with pytest.raises(PersistenceFailure):
            with storage.atomic():
                storage.save("t", "r1", {"id": "r1"})
                try:
                    with storage.atomic():
                        raise Boom()
                except Boom:
                    pass

        assert not storage.exists("t", "r1")

        # The storage is usable again afterwards
        with storage.atomic():
            storage.save("t", "r2", {"id": "r2"})
        assert storage.exists("t", "r2")

    def test_sqlite_rollback_survives_reopen(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "rollback.db"
            storage = SQLiteStorage(db_path)
            storage.save("accounts", "a1", {"id": "a1", "balance": "100.00"})

            with pytest.raises(Boom):
                with storage.atomic():
                    storage.save("accounts", "a1", {"id": "a1", "balance": "0.00"})
                    storage.save("transactions", "t1", {"id": "t1"})
                    raise Boom()
            storage.close()

            reopened = SQLiteStorage(db_path)
            assert reopened.load("accounts", "a1")["balance"] == "100.00"
            assert reopened.count("transactions") == 0
            reopened.close()


class TestUniqueConstraints:
    """Secondary unique constraints on business identifiers"""

    def test_duplicate_value_rejected(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            for storage in _backends(temp_dir):
                storage.add_unique_constraint("accounts", "account_number")
                storage.save("accounts", "a1", {"id": "a1", "account_number": "1001234567"})

                with pytest.raises(PersistenceFailure):
                    storage.save("accounts", "a2", {"id": "a2", "account_number": "1001234567"})

                assert storage.count("accounts") == 1
                assert storage.field_exists("accounts", "account_number", "1001234567")
                assert not storage.field_exists("accounts", "account_number", "2000000000")
                storage.close()

    def test_same_record_may_keep_its_value(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            for storage in _backends(temp_dir):
                storage.add_unique_constraint("accounts", "account_number")
                storage.save("accounts", "a1", {"id": "a1", "account_number": "100", "balance": "1"})
                storage.save("accounts", "a1", {"id": "a1", "account_number": "100", "balance": "2"})
                assert storage.load("accounts", "a1")["balance"] == "2"
                storage.close()

    def test_violation_inside_unit_rolls_back(self):
        storage = InMemoryStorage()
        storage.add_unique_constraint("fixed_deposits", "fd_number")
        storage.save("fixed_deposits", "f1", {"id": "f1", "fd_number": "2024000001"})

        with pytest.raises(PersistenceFailure):
            with storage.atomic():
                storage.save("accounts", "a1", {"id": "a1"})
                storage.save("fixed_deposits", "f2", {"id": "f2", "fd_number": "2024000001"})

        assert not storage.exists("accounts", "a1")


class TestStorable:
    """Domain value conversion"""

    def test_to_storable(self):
        now = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
        converted = to_storable({
            "amount": money("10.5"),
            "rate": Decimal("7.25"),
            "when": now,
            "items": [money(1)],
        })
        assert converted == {
            "amount": "10.50",
            "rate": "7.25",
            "when": now.isoformat(),
            "items": ["1.00"],
        }

    def test_parse_datetime_assumes_utc(self):
        parsed = StorageRecord.parse_datetime("2024-01-15T10:00:00")
        assert parsed.tzinfo == timezone.utc
        assert StorageRecord.parse_datetime(None) is None
