"""
Relational backend for fieldstore.

This module wraps one SQLite connection and provides:
- Data operations (select/insert/update/delete/merge) over dict records
- Nested transactions (BEGIN IMMEDIATE at the outer level, SAVEPOINTs inside)
- A schema API (create/drop/rename tables, add/drop indexes, introspection)

Invariants:
    - Identifiers are always quoted, values are always bound parameters
    - A transaction level that raises is rolled back before re-raising
    - Index names are table-qualified on disk (<table>__<index>), because
      SQLite index names are global to the database
    - Foreign keys are recorded in TableSpec but not emitted as constraints;
      referenced tables may belong to collaborators that do not exist here

How to change safely:
    - Keep all SQL generation in this module
    - Never build SQL from values; only from quoted identifiers

Example:
    >>> db = Database(":memory:")
    >>> db.connect()
    >>> with db.transaction():
    ...     new_id = db.insert("article", {"title": "Hello"})
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from ..schema.types import ColumnSpec, ColumnType, ForeignKeySpec, IndexColumn

logger = logging.getLogger(__name__)

Conditions = dict[str, Any]

_SQL_TYPES = {
    ColumnType.INT: "INTEGER",
    ColumnType.FLOAT: "REAL",
    ColumnType.NUMERIC: "NUMERIC",
    ColumnType.TEXT: "TEXT",
    ColumnType.BLOB: "BLOB",
}


def quote(identifier: str) -> str:
    """Quote an SQL identifier."""
    return '"' + identifier.replace('"', '""') + '"'


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return repr(value)
    return "'" + str(value).replace("'", "''") + "'"


def _index_column_name(entry: IndexColumn) -> str:
    return entry[0] if isinstance(entry, tuple) else entry


@dataclass
class TableSpec:
    """Definition of one relational table.

    Attributes:
        columns: Column name -> definition, in table order
        primary_key: Primary key columns
        indexes: Index name -> indexed columns
        unique_keys: Unique key name -> columns
        foreign_keys: Name -> foreign key (metadata only)
        description: Human-readable description
    """

    columns: dict[str, ColumnSpec] = field(default_factory=dict)
    primary_key: tuple[str, ...] = ()
    indexes: dict[str, tuple[IndexColumn, ...]] = field(default_factory=dict)
    unique_keys: dict[str, tuple[str, ...]] = field(default_factory=dict)
    foreign_keys: dict[str, ForeignKeySpec] = field(default_factory=dict)
    description: str = ""


def _column_sql(name: str, spec: ColumnSpec, serial_pk: bool) -> str:
    if spec.type is ColumnType.SERIAL:
        if not serial_pk:
            raise ValueError(f"Serial column '{name}' must be the only primary key column")
        return f"{quote(name)} INTEGER PRIMARY KEY AUTOINCREMENT"
    if spec.type in (ColumnType.VARCHAR, ColumnType.CHAR):
        sql_type = f"{spec.type.value.upper()}({spec.length or 255})"
    else:
        sql_type = _SQL_TYPES[spec.type]
    parts = [quote(name), sql_type]
    if spec.not_null:
        parts.append("NOT NULL")
    if spec.default is not None:
        parts.append(f"DEFAULT {_literal(spec.default)}")
    return " ".join(parts)


def create_table_sql(name: str, spec: TableSpec) -> str:
    """Render the CREATE TABLE statement for a table spec."""
    serial = [c for c, s in spec.columns.items() if s.type is ColumnType.SERIAL]
    if len(serial) > 1:
        raise ValueError(f"Table '{name}' declares more than one serial column")
    if serial and spec.primary_key and tuple(spec.primary_key) != (serial[0],):
        raise ValueError(f"Table '{name}': serial column '{serial[0]}' must be the primary key")

    lines = [_column_sql(c, s, serial_pk=True) for c, s in spec.columns.items()]
    if spec.primary_key and not serial:
        lines.append("PRIMARY KEY (" + ", ".join(quote(c) for c in spec.primary_key) + ")")
    for columns in spec.unique_keys.values():
        lines.append("UNIQUE (" + ", ".join(quote(c) for c in columns) + ")")
    return f"CREATE TABLE {quote(name)} (\n    " + ",\n    ".join(lines) + "\n)"


def _where(conditions: Conditions | None) -> tuple[str, list[Any]]:
    """Build a WHERE clause.

    A list/tuple value becomes IN (...); an empty one matches nothing.
    None becomes IS NULL.
    """
    if not conditions:
        return "", []
    clauses = []
    params: list[Any] = []
    for column, value in conditions.items():
        if isinstance(value, (list, tuple, set, frozenset)):
            values = list(value)
            if not values:
                clauses.append("0")
                continue
            clauses.append(f"{quote(column)} IN ({', '.join('?' for _ in values)})")
            params.extend(values)
        elif value is None:
            clauses.append(f"{quote(column)} IS NULL")
        else:
            clauses.append(f"{quote(column)} = ?")
            params.append(value)
    return " WHERE " + " AND ".join(clauses), params


class Database:
    """SQLite connection with dict-based data operations.

    Thread safety:
        One Database is used by one thread at a time. The core is
        synchronous and holds no locks of its own.

    Attributes:
        path: Database file path, or ":memory:"
    """

    def __init__(
        self,
        path: str = ":memory:",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
        foreign_keys: bool = True,
    ) -> None:
        """Initialize the database wrapper.

        Args:
            path: SQLite database file, or ":memory:"
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
            foreign_keys: Enable foreign key enforcement
        """
        self.path = path
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self.foreign_keys = foreign_keys
        self._conn: sqlite3.Connection | None = None
        self._depth = 0

    def connect(self) -> sqlite3.Connection:
        """Open the connection (idempotent) and apply PRAGMAs."""
        if self._conn is not None:
            return self._conn

        conn = sqlite3.connect(
            self.path,
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        conn.execute(f"PRAGMA cache_size = {int(self.cache_size_pages)}")
        if self.wal_mode and self.path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute(f"PRAGMA foreign_keys = {'ON' if self.foreign_keys else 'OFF'}")

        self._conn = conn
        logger.debug("Opened database", extra={"path": self.path})
        return conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._depth = 0
            logger.debug("Closed database", extra={"path": self.path})

    def __enter__(self) -> Database:
        self.connect()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def connection(self) -> sqlite3.Connection:
        return self.connect()

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """Run a block in a transaction.

        The outermost level uses BEGIN IMMEDIATE/COMMIT/ROLLBACK, nested
        levels use savepoints. Any exception rolls back the current level
        and is re-raised.
        """
        conn = self.connection
        depth = self._depth
        savepoint = f"sp_{depth}"
        if depth == 0:
            conn.execute("BEGIN IMMEDIATE")
        else:
            conn.execute(f"SAVEPOINT {savepoint}")
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth = depth
            if depth == 0:
                conn.execute("ROLLBACK")
            else:
                conn.execute(f"ROLLBACK TO {savepoint}")
                conn.execute(f"RELEASE {savepoint}")
            raise
        self._depth = depth
        if depth == 0:
            conn.execute("COMMIT")
        else:
            conn.execute(f"RELEASE {savepoint}")

    # ------------------------------------------------------------------
    # Data operations
    # ------------------------------------------------------------------

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        return self.connection.execute(sql, tuple(params))

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a raw SELECT and return rows as dicts."""
        return [dict(row) for row in self.execute(sql, params).fetchall()]

    def select(
        self,
        table: str,
        conditions: Conditions | None = None,
        fields: Sequence[str] | None = None,
        order_by: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Select rows matching exact-value conditions."""
        columns = ", ".join(quote(f) for f in fields) if fields else "*"
        where, params = _where(conditions)
        sql = f"SELECT {columns} FROM {quote(table)}{where}"
        if order_by:
            sql += " ORDER BY " + ", ".join(quote(c) for c in order_by)
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return self.query(sql, params)

    def select_one(self, table: str, conditions: Conditions | None = None) -> dict[str, Any] | None:
        rows = self.select(table, conditions, limit=1)
        return rows[0] if rows else None

    def count(self, table: str, conditions: Conditions | None = None) -> int:
        where, params = _where(conditions)
        row = self.execute(f"SELECT COUNT(*) FROM {quote(table)}{where}", params).fetchone()
        return int(row[0])

    def insert(self, table: str, record: dict[str, Any]) -> int:
        """Insert one row.

        Returns:
            The rowid of the new row
        """
        if record:
            columns = ", ".join(quote(c) for c in record)
            placeholders = ", ".join("?" for _ in record)
            sql = f"INSERT INTO {quote(table)} ({columns}) VALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {quote(table)} DEFAULT VALUES"
        cursor = self.execute(sql, list(record.values()))
        return int(cursor.lastrowid)

    def insert_many(self, table: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> int:
        """Insert several rows sharing the same columns.

        Returns:
            Number of rows inserted
        """
        if not rows:
            return 0
        column_sql = ", ".join(quote(c) for c in columns)
        placeholders = ", ".join("?" for _ in columns)
        self.connection.executemany(
            f"INSERT INTO {quote(table)} ({column_sql}) VALUES ({placeholders})",
            [tuple(r) for r in rows],
        )
        return len(rows)

    def update(self, table: str, fields: dict[str, Any], conditions: Conditions | None = None) -> int:
        """Update rows.

        Returns:
            Number of affected rows
        """
        if not fields:
            return 0
        assignments = ", ".join(f"{quote(c)} = ?" for c in fields)
        where, params = _where(conditions)
        cursor = self.execute(
            f"UPDATE {quote(table)} SET {assignments}{where}",
            list(fields.values()) + params,
        )
        return cursor.rowcount

    def delete(self, table: str, conditions: Conditions | None = None) -> int:
        """Delete rows.

        Returns:
            Number of deleted rows
        """
        where, params = _where(conditions)
        cursor = self.execute(f"DELETE FROM {quote(table)}{where}", params)
        return cursor.rowcount

    def merge(self, table: str, keys: dict[str, Any], fields: dict[str, Any]) -> str:
        """Update the row identified by keys, or insert it.

        Returns:
            "update" or "insert"
        """
        if self.count(table, keys):
            self.update(table, fields, keys)
            return "update"
        self.insert(table, {**keys, **fields})
        return "insert"

    def schema(self) -> Schema:
        return Schema(self)


class Schema:
    """Schema operations on a Database."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def index_name(table: str, name: str) -> str:
        """On-disk name of a table's index."""
        return f"{table}__{name}"

    def table_exists(self, table: str) -> bool:
        rows = self._db.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
        )
        return bool(rows)

    def index_exists(self, table: str, name: str) -> bool:
        rows = self._db.query(
            "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = ? AND name = ?",
            (table, self.index_name(table, name)),
        )
        return bool(rows)

    def field_names(self, table: str) -> list[str]:
        """Column names of a table, in table order."""
        return [row["name"] for row in self._db.query(f"PRAGMA table_info({quote(table)})")]

    def create_table(self, name: str, spec: TableSpec) -> None:
        """Create a table with its indexes.

        Raises:
            sqlite3.OperationalError: If the table already exists
        """
        self._db.execute(create_table_sql(name, spec))
        for index_name, columns in spec.indexes.items():
            self.add_index(name, index_name, columns)
        logger.debug("Created table", extra={"table": name, "columns": list(spec.columns)})

    def drop_table(self, name: str) -> bool:
        """Drop a table if it exists.

        Returns:
            Whether the table existed
        """
        if not self.table_exists(name):
            return False
        self._db.execute(f"DROP TABLE {quote(name)}")
        logger.debug("Dropped table", extra={"table": name})
        return True

    def rename_table(self, old: str, new: str) -> None:
        """Rename a table, carrying its indexes over to the new name."""
        indexes = self._named_indexes(old)
        for name in indexes:
            self._db.execute(f"DROP INDEX {quote(self.index_name(old, name))}")
        self._db.execute(f"ALTER TABLE {quote(old)} RENAME TO {quote(new)}")
        for name, columns in indexes.items():
            self.add_index(new, name, columns)
        logger.debug("Renamed table", extra={"table": old, "new_table": new})

    def add_index(self, table: str, name: str, columns: Sequence[IndexColumn]) -> None:
        column_sql = ", ".join(quote(_index_column_name(c)) for c in columns)
        self._db.execute(
            f"CREATE INDEX {quote(self.index_name(table, name))} ON {quote(table)} ({column_sql})"
        )

    def drop_index(self, table: str, name: str) -> bool:
        if not self.index_exists(table, name):
            return False
        self._db.execute(f"DROP INDEX {quote(self.index_name(table, name))}")
        return True

    def _named_indexes(self, table: str) -> dict[str, list[str]]:
        """Indexes created through add_index, by logical name."""
        prefix = f"{table}__"
        indexes: dict[str, list[str]] = {}
        for row in self._db.query(f"PRAGMA index_list({quote(table)})"):
            if row["origin"] != "c" or not row["name"].startswith(prefix):
                continue
            info = self._db.query(f"PRAGMA index_info({quote(row['name'])})")
            indexes[row["name"][len(prefix):]] = [
                r["name"] for r in sorted(info, key=lambda r: r["seqno"])
            ]
        return indexes
