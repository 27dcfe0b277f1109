"""DuckDB connection wrapper shared by the repositories."""

import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import duckdb

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent.parent / "sql" / "schema.sql"

MEMORY = ":memory:"


class Database:
    """A single DuckDB connection with the application schema applied.

    DuckDB connections are not safe for concurrent use, so every statement
    runs under a re-entrant lock; :meth:`transaction` holds the lock for the
    whole unit of work.
    """

    def __init__(self, database_path: Path | str = MEMORY, create_dirs: bool = True):
        """Open the database and apply the schema.

        Args:
            database_path: Path to the DuckDB file, or ':memory:'
            create_dirs: Create the parent directory of a file database
        """
        self.database_path = str(database_path)
        if self.database_path != MEMORY and create_dirs:
            Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = duckdb.connect(self.database_path)
        self._lock = threading.RLock()
        self.apply_schema()
        logger.info(f"Opened database: {self.database_path}")

    def apply_schema(self) -> None:
        """Create any missing tables.

        Raises:
            FileNotFoundError: If the packaged schema file is missing
        """
        if not SCHEMA_PATH.exists():
            raise FileNotFoundError(f"SQL schema file not found: {SCHEMA_PATH}")

        with self._lock:
            self._conn.execute(SCHEMA_PATH.read_text())
        logger.debug(f"Applied schema file: {SCHEMA_PATH.name}")

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        with self._lock:
            self._conn.execute(sql, params or [])

    def fetch_all(
        self, sql: str, params: Sequence[Any] | None = None
    ) -> list[dict[str, Any]]:
        """Run a query and return rows as column-name dictionaries."""
        with self._lock:
            cursor = self._conn.execute(sql, params or [])
            columns = [d[0] for d in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def fetch_one(
        self, sql: str, params: Sequence[Any] | None = None
    ) -> dict[str, Any] | None:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_value(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        with self._lock:
            row = self._conn.execute(sql, params or []).fetchone()
        return row[0] if row else None

    def insert(self, table: str, row: dict[str, Any]) -> None:
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        self.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
            list(row.values()),
        )

    def update(self, table: str, key: dict[str, Any], values: dict[str, Any]) -> None:
        """Update non-key columns of the rows matching ``key``."""
        if not values:
            return
        assignments = ", ".join(f"{column} = ?" for column in values)
        conditions = " AND ".join(f"{column} = ?" for column in key)
        self.execute(
            f"UPDATE {table} SET {assignments} WHERE {conditions}",
            [*values.values(), *key.values()],
        )

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Run a block atomically; rolls back if it raises."""
        with self._lock:
            self._conn.execute("BEGIN TRANSACTION")
            try:
                yield self
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def table_counts(self) -> dict[str, int]:
        """Row counts of the application tables."""
        tables = self.fetch_all(
            """
            SELECT table_name FROM information_schema.tables
            WHERE table_schema = 'main'
            ORDER BY table_name
            """
        )
        return {
            t["table_name"]: self.fetch_value(
                f"SELECT COUNT(*) FROM {t['table_name']}"
            )
            for t in tables
        }

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.debug(f"Closed database: {self.database_path}")
