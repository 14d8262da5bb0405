"""
Local collection store (SQLite).

Implements the same Backend contract as RestBackend on a single SQLite file,
so the board runs offline, in development and under test without a hosted
backend. Errors are reported with the Postgres codes the remote store would
use (23505 unique violation, 23503 foreign-key violation).
"""
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .errors import BackendError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

SCHEMA = {
    "categories": ("id", "name", "description", "color", "created_by", "created_at", "updated_at"),
    "profiles": ("id", "email", "full_name", "role", "avatar_url", "created_at", "updated_at"),
    "task_statuses": ("id", "value", "label", "color", "position", "is_default", "created_at"),
    "tasks": ("id", "title", "description", "status", "priority", "category_id",
              "created_by", "due_date", "created_at", "updated_at"),
    "task_assignees": ("id", "task_id", "user_id", "created_at"),
}

BOOLEAN_COLUMNS = {"is_default"}


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteBackend:
    """SQLite-backed implementation of the Backend contract."""

    def __init__(self, db_path: Optional[str] = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "companyos" / "board.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS categories (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    color TEXT NOT NULL DEFAULT '#3B82F6',
                    created_by TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL,
                    full_name TEXT NOT NULL DEFAULT '',
                    role TEXT NOT NULL DEFAULT 'employee',
                    avatar_url TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_statuses (
                    id TEXT PRIMARY KEY,
                    value TEXT NOT NULL UNIQUE,
                    label TEXT NOT NULL,
                    color TEXT NOT NULL DEFAULT 'bg-gray-100 text-gray-800 dark:bg-gray-900 dark:text-gray-200',
                    position INTEGER NOT NULL DEFAULT 0,
                    is_default INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)
            # status is free text: columns are user-defined
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'todo',
                    priority INTEGER NOT NULL DEFAULT 2,
                    category_id TEXT NOT NULL,
                    created_by TEXT,
                    due_date TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE CASCADE
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_assignees (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (task_id, user_id),
                    FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE,
                    FOREIGN KEY (user_id) REFERENCES profiles(id) ON DELETE CASCADE
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_category ON tasks(category_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_assignees_task ON task_assignees(task_id)")
            conn.commit()

    # ── Verbs ────────────────────────────────────────────────────────────────

    def select(self, table, filters=None, order=None, descending=False):
        columns = self._columns(table)
        where, args = self._where(table, filters)
        sql = f"SELECT * FROM {table}{where}"
        if order:
            self._check_column(table, order)
            sql += f" ORDER BY {order} {'DESC' if descending else 'ASC'}"
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(sql, args).fetchall()
        except sqlite3.Error as e:
            raise self._error(e, f"select {table}") from e
        return [self._row_out(row, columns) for row in rows]

    def insert(self, table, rows):
        columns = self._columns(table)
        prepared = []
        for row in rows:
            data = dict(row)
            for key in data:
                self._check_column(table, key)
            data.setdefault("id", uuid.uuid4().hex)
            now = _now()
            if "created_at" in columns:
                data.setdefault("created_at", now)
            if "updated_at" in columns:
                data.setdefault("updated_at", now)
            prepared.append(data)
        if not prepared:
            return []

        try:
            with _connect(self.db_path) as conn:
                for data in prepared:
                    keys = list(data.keys())
                    placeholders = ", ".join("?" for _ in keys)
                    conn.execute(
                        f"INSERT INTO {table} ({', '.join(keys)}) VALUES ({placeholders})",
                        [self._value_in(data[k]) for k in keys],
                    )
                conn.commit()
        except sqlite3.Error as e:
            raise self._error(e, f"insert {table}") from e
        return self.select(table, {"id": [d["id"] for d in prepared]})

    def update(self, table, match, fields):
        if not match:
            raise ValueError("update() requires a match filter")
        columns = self._columns(table)
        data = dict(fields)
        if "updated_at" in columns:
            data.setdefault("updated_at", _now())
        for key in data:
            self._check_column(table, key)
        assignments = ", ".join(f"{k} = ?" for k in data)
        where, args = self._where(table, match)
        try:
            with _connect(self.db_path) as conn:
                ids = [r["id"] for r in conn.execute(f"SELECT id FROM {table}{where}", args)]
                if ids:
                    conn.execute(
                        f"UPDATE {table} SET {assignments}{where}",
                        [self._value_in(v) for v in data.values()] + args,
                    )
                conn.commit()
        except sqlite3.Error as e:
            raise self._error(e, f"update {table}") from e
        return self.select(table, {"id": ids}) if ids else []

    def delete(self, table, match):
        if not match:
            raise ValueError("delete() requires a match filter")
        doomed = self.select(table, match)
        where, args = self._where(table, match)
        try:
            with _connect(self.db_path) as conn:
                conn.execute(f"DELETE FROM {table}{where}", args)
                conn.commit()
        except sqlite3.Error as e:
            raise self._error(e, f"delete {table}") from e
        return doomed

    def close(self) -> None:
        # Connections are per-call; nothing to release
        pass

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _columns(self, table: str):
        if table not in SCHEMA:
            raise BackendError(f"relation \"{table}\" does not exist", "42P01")
        return SCHEMA[table]

    def _check_column(self, table: str, column: str) -> None:
        if column not in self._columns(table):
            raise BackendError(f"column {table}.{column} does not exist", "42703")

    def _where(self, table: str, filters: Optional[Dict[str, Any]]):
        clauses, args = [], []
        for column, value in (filters or {}).items():
            self._check_column(table, column)
            if isinstance(value, (list, tuple, set, frozenset)):
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                args.extend(self._value_in(v) for v in values)
            elif value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                args.append(self._value_in(value))
        if not clauses:
            return "", args
        return " WHERE " + " AND ".join(clauses), args

    @staticmethod
    def _value_in(value: Any) -> Any:
        if isinstance(value, bool):
            return 1 if value else 0
        if hasattr(value, "isoformat"):  # date / datetime
            return value.isoformat()
        return value

    @staticmethod
    def _row_out(row: sqlite3.Row, columns) -> Row:
        data = {k: row[k] for k in columns}
        for key in BOOLEAN_COLUMNS & data.keys():
            data[key] = bool(data[key])
        return data

    @staticmethod
    def _error(exc: sqlite3.Error, context: str) -> BackendError:
        message = str(exc)
        code = None
        if isinstance(exc, sqlite3.IntegrityError):
            if "UNIQUE" in message:
                code = "23505"
            elif "FOREIGN KEY" in message:
                code = "23503"
            elif "NOT NULL" in message:
                code = "23502"
        logger.warning(f"{context} failed: {message}")
        return BackendError(message, code)
