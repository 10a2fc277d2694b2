"""Key-value persistence on SQLite using raw SQL.

The store is an opaque string map: get/set/remove. Callers serialize
their own values (the expense list is a JSON array). Connection management
uses a single connection with WAL mode, like the rest of the database layer.
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


class PersistenceError(Exception):
    """Raised when the underlying storage cannot be read or written."""

    def __init__(self, operation: str, key: str | None, cause: Exception):
        self.operation = operation
        self.key = key
        super().__init__(f"Persistence {operation} failed for key '{key}': {cause}")


class KeyValueStore:
    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @classmethod
    def open(cls, db_path: str = ":memory:") -> KeyValueStore:
        """Connect and apply pending migrations."""
        store = cls(db_path)
        store.apply_migrations(MIGRATIONS_DIR)
        return store

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ── Migrations ──────────────────────────────────────────

    def apply_migrations(self, migrations_dir: Path):
        """Apply all pending SQL migrations in order.

        Each migration runs in a transaction: if the SQL fails, the
        schema_version row is not inserted, allowing retry on next startup.
        """
        self.conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version ("
            "  version INTEGER PRIMARY KEY,"
            "  description TEXT,"
            "  applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"
            ")"
        )
        self.conn.commit()

        row = self.conn.execute(
            "SELECT MAX(version) FROM schema_version"
        ).fetchone()
        current = row[0] or 0

        for sql_file in sorted(migrations_dir.glob("*.sql")):
            version = int(sql_file.name.split("_")[0])
            if version > current:
                try:
                    self.conn.execute("BEGIN")
                    # executescript auto-commits, so we split statements manually
                    for statement in sql_file.read_text().split(";"):
                        statement = statement.strip()
                        if statement:
                            self.conn.execute(statement)
                    self.conn.execute(
                        "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                        (version, sql_file.stem),
                    )
                    self.conn.commit()
                except Exception:
                    self.conn.rollback()
                    raise

    # ── Key-value operations ────────────────────────────────

    def get(self, key: str) -> str | None:
        try:
            with self._lock:
                row = self.conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError("get", key, e) from e
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            with self._lock:
                self.conn.execute(
                    "INSERT INTO kv_store (key, value) VALUES (?, ?)"
                    " ON CONFLICT(key) DO UPDATE SET"
                    "   value = excluded.value, updated_at = CURRENT_TIMESTAMP",
                    (key, value),
                )
                self.conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError("set", key, e) from e

    def remove(self, key: str) -> None:
        try:
            with self._lock:
                self.conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                self.conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError("remove", key, e) from e

    def keys(self) -> list[str]:
        with self._lock:
            rows = self.conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        return [r["key"] for r in rows]
