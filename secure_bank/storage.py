"""
Storage Backend Module

Storage gateway for the four banking entities (users, accounts, transactions,
sessions). Exposes a fixed set of typed operations: predicate lookups,
ordered scans with limit, insert/update returning the row, delete, an
atomic storage-side balance increment, and a transaction scope.

Implementations: in-memory (testing) and SQLite (persistence). Monetary
values cross this boundary as Decimal-compatible strings.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union
from decimal import Decimal
from datetime import date, datetime
from enum import Enum
import copy
import logging
import sqlite3
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .errors import ConflictError, InternalError
from .money import quantize

logger = logging.getLogger(__name__)


# Column layout per table (id is always the storage-assigned integer key)
TABLE_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "users": (
        "id", "email", "password", "first_name", "last_name", "phone_number",
        "date_of_birth", "ssn", "ssn_hash", "address", "city", "state",
        "zip_code", "created_at",
    ),
    "accounts": (
        "id", "user_id", "account_number", "account_type", "balance",
        "status", "created_at",
    ),
    "transactions": (
        "id", "account_id", "type", "amount", "description", "status",
        "created_at", "processed_at",
    ),
    "sessions": (
        "id", "user_id", "token", "expires_at", "created_at",
    ),
    "schema_migrations": (
        "id", "version", "name", "checksum", "applied_at",
    ),
}

UNIQUE_CONSTRAINTS: Dict[str, List[Tuple[str, ...]]] = {
    "users": [("email",), ("ssn_hash",)],
    "accounts": [("account_number",), ("user_id", "account_type")],
    "transactions": [],
    "sessions": [("token",)],
    "schema_migrations": [("version",)],
}

SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT UNIQUE NOT NULL,
    password TEXT NOT NULL,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    phone_number TEXT NOT NULL,
    date_of_birth TEXT NOT NULL,
    ssn TEXT NOT NULL,
    ssn_hash TEXT UNIQUE,
    address TEXT NOT NULL,
    city TEXT NOT NULL,
    state TEXT NOT NULL,
    zip_code TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    account_number TEXT UNIQUE NOT NULL,
    account_type TEXT NOT NULL,
    balance NUMERIC DEFAULT 0 NOT NULL,
    status TEXT DEFAULT 'pending' NOT NULL,
    created_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_user_type
    ON accounts(user_id, account_type);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    type TEXT NOT NULL,
    amount NUMERIC NOT NULL,
    description TEXT,
    status TEXT DEFAULT 'pending' NOT NULL,
    created_at TEXT NOT NULL,
    processed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_transactions_account
    ON transactions(account_id, id);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    token TEXT UNIQUE NOT NULL,
    expires_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS schema_migrations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    version INTEGER UNIQUE NOT NULL,
    name TEXT NOT NULL,
    checksum TEXT NOT NULL,
    applied_at TEXT NOT NULL
);
"""


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: int
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            result[key] = to_storage_value(value)
        return result


def to_storage_value(value: Any) -> Any:
    """Convert a Python value to its stored representation"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def check_columns(table: str, columns: Sequence[str]) -> None:
    """Reject unknown tables and columns before they reach SQL"""
    known = TABLE_COLUMNS.get(table)
    if known is None:
        raise InternalError(f"Unknown table: {table}")
    for column in columns:
        if column not in known:
            raise InternalError(f"Unknown column {table}.{column}")


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create tables and indexes if missing (idempotent)"""
        pass

    @abstractmethod
    def find_one(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """First record matching all equality filters (lowest id)"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Optional[Dict[str, Any]] = None,
             order_by: str = "id", descending: bool = False,
             limit: Optional[int] = None, max_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Ordered scan of records matching equality filters and id <= max_id"""
        pass

    @abstractmethod
    def insert(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a record and return it with its assigned id"""
        pass

    @abstractmethod
    def update(self, table: str, record_id: int, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update a record and return it, or None if it does not exist"""
        pass

    @abstractmethod
    def delete(self, table: str, filters: Dict[str, Any]) -> int:
        """Delete records matching filters, returning how many were removed"""
        pass

    @abstractmethod
    def increment_balance(self, account_id: int, amount: Decimal) -> Optional[Dict[str, Any]]:
        """
        Atomically set balance = ROUND(balance + amount, 2) inside the engine
        and return the updated account row.
        """
        pass

    @abstractmethod
    def has_column(self, table: str, column: str) -> bool:
        """Check whether the physical table has a column"""
        pass

    @abstractmethod
    def add_column(self, table: str, column: str, column_type: str, unique: bool = False) -> None:
        """Add a column to an existing table"""
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        pass

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """
        Run a unit of work atomically.

        The backend lock is held for the whole block so no other unit of
        work interleaves; any exception rolls everything back and re-raises.
        """
        with self._lock:
            self.begin_transaction()
            try:
                yield
            except BaseException:
                self.rollback()
                raise
            else:
                self.commit()


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[int, Dict[str, Any]]] = {}
        self._sequences: Dict[str, int] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._snapshot = None
        self.ensure_schema()

    def ensure_schema(self) -> None:
        with self._lock:
            for table in TABLE_COLUMNS:
                self._data.setdefault(table, {})
                self._sequences.setdefault(table, 0)

    def _table(self, table: str) -> Dict[int, Dict[str, Any]]:
        check_columns(table, ())
        return self._data[table]

    @staticmethod
    def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
        return all(record.get(key) == to_storage_value(value) for key, value in filters.items())

    def _check_unique(self, table: str, record: Dict[str, Any]) -> None:
        for columns in UNIQUE_CONSTRAINTS.get(table, []):
            values = [record.get(column) for column in columns]
            if any(value is None for value in values):
                continue
            for other in self._data[table].values():
                if other["id"] != record["id"] and all(other.get(c) == v for c, v in zip(columns, values)):
                    raise ConflictError(f"Duplicate value for {table}.{'/'.join(columns)}")

    def find_one(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = self.find(table, filters, limit=1)
        return rows[0] if rows else None

    def find(self, table: str, filters: Optional[Dict[str, Any]] = None,
             order_by: str = "id", descending: bool = False,
             limit: Optional[int] = None, max_id: Optional[int] = None) -> List[Dict[str, Any]]:
        filters = filters or {}
        check_columns(table, list(filters) + [order_by])
        with self._lock:
            rows = [
                record for record in self._table(table).values()
                if self._matches(record, filters) and (max_id is None or record["id"] <= max_id)
            ]
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by), r["id"]), reverse=descending)
            if limit is not None:
                rows = rows[:limit]
            # Copy to prevent external mutation
            return [dict(row) for row in rows]

    def insert(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        check_columns(table, list(data))
        with self._lock:
            records = self._table(table)
            record_id = self._sequences[table] + 1
            record = {column: None for column in TABLE_COLUMNS[table]}
            record.update({key: to_storage_value(value) for key, value in data.items()})
            record["id"] = record_id
            self._check_unique(table, record)
            records[record_id] = record
            self._sequences[table] = record_id
            return dict(record)

    def update(self, table: str, record_id: int, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        check_columns(table, list(changes))
        with self._lock:
            records = self._table(table)
            existing = records.get(record_id)
            if existing is None:
                return None
            record = dict(existing)
            record.update({key: to_storage_value(value) for key, value in changes.items()})
            record["id"] = record_id
            self._check_unique(table, record)
            records[record_id] = record
            return dict(record)

    def delete(self, table: str, filters: Dict[str, Any]) -> int:
        check_columns(table, list(filters))
        with self._lock:
            records = self._table(table)
            doomed = [rid for rid, record in records.items() if self._matches(record, filters)]
            for rid in doomed:
                del records[rid]
            return len(doomed)

    def increment_balance(self, account_id: int, amount: Decimal) -> Optional[Dict[str, Any]]:
        with self._lock:
            account = self._table("accounts").get(account_id)
            if account is None:
                return None
            account["balance"] = str(quantize(Decimal(str(account["balance"])) + amount))
            return dict(account)

    def has_column(self, table: str, column: str) -> bool:
        return column in TABLE_COLUMNS.get(table, ())

    def add_column(self, table: str, column: str, column_type: str, unique: bool = False) -> None:
        # Records are schemaless dicts; nothing to alter
        pass

    def begin_transaction(self) -> None:
        with self._lock:
            if self._depth == 0:
                self._snapshot = (copy.deepcopy(self._data), dict(self._sequences))
            self._depth += 1

    def commit(self) -> None:
        with self._lock:
            self._depth -= 1
            if self._depth == 0:
                self._snapshot = None

    def rollback(self) -> None:
        with self._lock:
            self._depth -= 1
            # Nested scopes roll back with the outermost one
            if self._depth == 0 and self._snapshot is not None:
                self._data, self._sequences = self._snapshot
                self._snapshot = None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Autocommit mode; transactions are opened explicitly in begin_transaction()
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0

        with self._lock:
            self._connection.execute("PRAGMA foreign_keys = ON")
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    def ensure_schema(self) -> None:
        with self._lock:
            for statement in SQLITE_SCHEMA.split(";"):
                if statement.strip():
                    self._execute(statement)

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._connection.execute(sql, [to_storage_value(p) for p in params])
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise ConflictError(f"Duplicate value ({e})")
            raise InternalError(f"Integrity error: {e}")
        except sqlite3.Error as e:
            logger.error(f"SQLite error: {e}")
            raise InternalError(f"Storage error: {e}")

    @staticmethod
    def _where(filters: Dict[str, Any]) -> Tuple[List[str], List[Any]]:
        conditions, params = [], []
        for key, value in filters.items():
            if value is None:
                conditions.append(f"{key} IS NULL")
            else:
                conditions.append(f"{key} = ?")
                params.append(value)
        return conditions, params

    def find_one(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = self.find(table, filters, limit=1)
        return rows[0] if rows else None

    def find(self, table: str, filters: Optional[Dict[str, Any]] = None,
             order_by: str = "id", descending: bool = False,
             limit: Optional[int] = None, max_id: Optional[int] = None) -> List[Dict[str, Any]]:
        filters = filters or {}
        check_columns(table, list(filters) + [order_by])
        conditions, params = self._where(filters)
        if max_id is not None:
            conditions.append("id <= ?")
            params.append(max_id)

        sql = f"SELECT * FROM {table}"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        direction = "DESC" if descending else "ASC"
        sql += f" ORDER BY {order_by} {direction}, id {direction}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        with self._lock:
            return [dict(row) for row in self._execute(sql, params).fetchall()]

    def _load(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        row = self._execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return dict(row) if row else None

    def insert(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        columns = [column for column in data if column != "id"]
        check_columns(table, columns)
        placeholders = ", ".join("?" for _ in columns)
        with self._lock:
            cursor = self._execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                [data[column] for column in columns],
            )
            row = self._load(table, cursor.lastrowid)
            if row is None:
                raise InternalError(f"Insert into {table} returned no row")
            return row

    def update(self, table: str, record_id: int, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        columns = [column for column in changes if column != "id"]
        check_columns(table, columns)
        if not columns:
            with self._lock:
                return self._load(table, record_id)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        with self._lock:
            cursor = self._execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?",
                [changes[column] for column in columns] + [record_id],
            )
            if cursor.rowcount == 0:
                return None
            return self._load(table, record_id)

    def delete(self, table: str, filters: Dict[str, Any]) -> int:
        check_columns(table, list(filters))
        conditions, params = self._where(filters)
        sql = f"DELETE FROM {table}"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        with self._lock:
            return self._execute(sql, params).rowcount

    def increment_balance(self, account_id: int, amount: Decimal) -> Optional[Dict[str, Any]]:
        with self._lock:
            cursor = self._execute(
                "UPDATE accounts SET balance = ROUND(balance + ?, 2) WHERE id = ?",
                (str(amount), account_id),
            )
            if cursor.rowcount == 0:
                return None
            return self._load("accounts", account_id)

    def has_column(self, table: str, column: str) -> bool:
        check_columns(table, ())
        with self._lock:
            rows = self._execute(f"PRAGMA table_info({table})").fetchall()
            return any(row["name"] == column for row in rows)

    def add_column(self, table: str, column: str, column_type: str, unique: bool = False) -> None:
        check_columns(table, (column,))
        with self._lock:
            # SQLite cannot add a UNIQUE column; enforce it with an index instead
            self._execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
            if unique:
                self._execute(
                    f"CREATE UNIQUE INDEX IF NOT EXISTS idx_{table}_{column} ON {table}({column})"
                )

    def begin_transaction(self) -> None:
        with self._lock:
            if self._depth == 0:
                self._execute("BEGIN IMMEDIATE")
            self._depth += 1

    def commit(self) -> None:
        with self._lock:
            self._depth -= 1
            if self._depth == 0:
                self._execute("COMMIT")

    def rollback(self) -> None:
        with self._lock:
            self._depth -= 1
            if self._depth == 0:
                self._execute("ROLLBACK")

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_path: str) -> StorageInterface:
    """Pick a backend: ":memory:" gets the in-memory store, anything else SQLite"""
    if database_path == ":memory:":
        return InMemoryStorage()
    return SQLiteStorage(database_path)
