"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Writes can be grouped into atomic units with ``storage.atomic()``. Units nest:
an inner unit joins the outermost one, only the outermost commits, and an
exception anywhere rolls back everything written since the outermost began.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Set, Union
from decimal import Decimal
from datetime import date, datetime, timezone
from enum import Enum
import sqlite3
import json
import threading
from dataclasses import dataclass, fields, is_dataclass
from pathlib import Path
from contextlib import contextmanager

from .currency import Money
from .errors import PersistenceFailure


def to_storable(value: Any) -> Any:
    """Convert domain values into JSON-safe primitives"""
    if isinstance(value, Money):
        return str(value.amount)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_storable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {k: to_storable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_storable(v) for v in value]
    return value


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {f.name: to_storable(getattr(self, f.name)) for f in fields(self)}

    @staticmethod
    def parse_datetime(value: Optional[str]) -> Optional[datetime]:
        if value is None:
            return None
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @staticmethod
    def parse_decimal(value: Optional[str]) -> Optional[Decimal]:
        return Decimal(value) if value is not None else None


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self):
        # Serialises units of work; re-entrant so units can nest on one thread
        self._unit_lock = threading.RLock()
        self._depth = 0
        self._rollback_only = False
        self._unique_constraints: Dict[str, Set[str]] = {}

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save (insert or replace) a record"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose fields equal every filter value"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def add_unique_constraint(self, table: str, field_name: str) -> None:
        """Reject saves that would give two records the same value for field_name"""
        self._unique_constraints.setdefault(table, set()).add(field_name)

    def unique_fields(self, table: str) -> Set[str]:
        return self._unique_constraints.get(table, set())

    def field_exists(self, table: str, field_name: str, value: Any) -> bool:
        """Check whether any record in table already has field_name == value"""
        return bool(self.find(table, {field_name: value}))

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def begin_transaction(self) -> None:
        """Backend hook: start the outermost unit"""
        pass

    def commit(self) -> None:
        """Backend hook: make the outermost unit durable"""
        pass

    def rollback(self) -> None:
        """Backend hook: discard everything since begin_transaction"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations (nestable)"""
        with self._unit_lock:
            outermost = self._depth == 0
            if outermost:
                self._rollback_only = False
                self.begin_transaction()
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._rollback_only = False
                    self.rollback()
                else:
                    self._rollback_only = True
                raise

            self._depth -= 1
            if outermost:
                if self._rollback_only:
                    # An inner unit failed and its error was swallowed by the caller
                    self._rollback_only = False
                    self.rollback()
                    raise PersistenceFailure("Unit of work rolled back after an inner failure")
                try:
                    self.commit()
                except PersistenceFailure:
                    self.rollback()
                    raise


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = self._unit_lock
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None

    @staticmethod
    def _copy(value: Any) -> Any:
        # Deep copy through JSON to prevent external mutation
        return json.loads(json.dumps(value, default=str))

    def _ensure_table(self, table: str) -> None:
        if table not in self._data:
            self._data[table] = {}

    def _check_unique(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        for field_name in self.unique_fields(table):
            value = data.get(field_name)
            if value is None:
                continue
            for other_id, other in self._data[table].items():
                if other_id != record_id and other.get(field_name) == value:
                    raise PersistenceFailure(
                        f"Unique constraint violated: {table}.{field_name}={value}"
                    )

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._copy(data)
            self._check_unique(table, record_id, record)
            self._data[table][record_id] = record

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return self._copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [self._copy(record) for record in self._data[table].values()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                if all(key in record and record[key] == value for key, value in filters.items()):
                    results.append(self._copy(record))
            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def begin_transaction(self) -> None:
        self._snapshot = self._copy(self._data)

    def commit(self) -> None:
        self._snapshot = None

    def rollback(self) -> None:
        if self._snapshot is not None:
            self._data = self._snapshot
            self._snapshot = None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        super().__init__()
        self.db_path = str(db_path)
        try:
            # isolation_level=None: transactions are opened explicitly by atomic()
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
            self._connection.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Cannot open database {self.db_path}: {e}") from e
        self._lock = self._unit_lock
        self._tables: Set[str] = set()

    @contextmanager
    def _driver_errors(self, operation: str):
        try:
            yield
        except sqlite3.IntegrityError as e:
            raise PersistenceFailure(f"Unique constraint violated during {operation}: {e}") from e
        except sqlite3.Error as e:
            raise PersistenceFailure(f"SQLite {operation} failed: {e}") from e

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        with self._driver_errors("create table"):
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            for field_name in self.unique_fields(table):
                self._create_unique_index(table, field_name)
        self._tables.add(table)

    def _create_unique_index(self, table: str, field_name: str) -> None:
        self._connection.execute(f"""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_{field_name}
            ON {table}(json_extract(data, '$.{field_name}'))
        """)

    def add_unique_constraint(self, table: str, field_name: str) -> None:
        with self._lock:
            super().add_unique_constraint(table, field_name)
            if table in self._tables:
                with self._driver_errors("create index"):
                    self._create_unique_index(table, field_name)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            with self._driver_errors("save"):
                self._connection.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        data = excluded.data,
                        updated_at = excluded.updated_at
                """, (record_id, data_json, now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            with self._driver_errors("load"):
                row = self._connection.execute(
                    f"SELECT data FROM {table} WHERE id = ?", (record_id,)
                ).fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            with self._driver_errors("load_all"):
                rows = self._connection.execute(
                    f"SELECT data FROM {table} ORDER BY created_at, rowid"
                ).fetchall()
            return [json.loads(row['data']) for row in rows]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            with self._driver_errors("exists"):
                row = self._connection.execute(
                    f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)
                ).fetchone()
            return row is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        return [
            record for record in self.load_all(table)
            if all(key in record and record[key] == value for key, value in filters.items())
        ]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            with self._driver_errors("count"):
                row = self._connection.execute(f"SELECT COUNT(*) AS count FROM {table}").fetchone()
            return row['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            with self._driver_errors("clear"):
                self._connection.execute(f"DELETE FROM {table}")

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._driver_errors("begin"):
            self._connection.execute("BEGIN IMMEDIATE")

    def commit(self) -> None:
        """Commit current transaction"""
        with self._driver_errors("commit"):
            self._connection.execute("COMMIT")

    def rollback(self) -> None:
        """Rollback current transaction"""
        if self._connection.in_transaction:
            with self._driver_errors("rollback"):
                self._connection.execute("ROLLBACK")
        # Tables created inside the rolled back unit are gone again
        self._tables.clear()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
