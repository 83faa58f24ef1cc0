"""SQLite-backed task store, the default backend."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import closing, contextmanager
from datetime import UTC, datetime
from pathlib import Path

from playbook_api.app.models import (
    RUNNABLE_STATUSES,
    Inventory,
    Playbook,
    Task,
    TaskDetail,
    TaskStatus,
    User,
)
from playbook_api.app.storage.base import (
    DEFAULT_USER_ID,
    TASK_DETAIL_COLUMNS,
    TASK_DETAIL_JOINS,
    row_to_inventory,
    row_to_playbook,
    row_to_task,
    row_to_task_detail,
    row_to_user,
)

SQLITE_URL_PREFIX = "sqlite:///"


def sqlite_path_from_url(database_url: str) -> Path:
    """Resolve `sqlite:///relative.db` or `sqlite:////abs/path.db` to a file path."""
    if not database_url.startswith(SQLITE_URL_PREFIX):
        raise ValueError(f"Not a SQLite database URL: {database_url!r}")
    raw_path = database_url[len(SQLITE_URL_PREFIX) :]
    if not raw_path or raw_path == ":memory:":
        raise ValueError("SQLite storage needs a file path; in-memory databases are not shared")
    return Path(raw_path)


class SQLiteTaskStorage:
    """Thread-safe SQLite storage, one connection and transaction per operation."""

    def __init__(self, database_url: str, *, default_user: str = "admin") -> None:
        self.database_url = database_url
        self.path = sqlite_path_from_url(database_url)
        self.default_user = default_user
        self._lock = threading.Lock()

    def migrate(self) -> None:
        """Create tables if missing and seed the default user."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock, self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    password TEXT NOT NULL DEFAULT ''
                );
                CREATE TABLE IF NOT EXISTS inventories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    path TEXT NOT NULL,
                    creator TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS playbooks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    path TEXT NOT NULL,
                    creator TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    playbook_id INTEGER NOT NULL REFERENCES playbooks(id),
                    inventory_id INTEGER NOT NULL REFERENCES inventories(id),
                    user_id INTEGER NOT NULL REFERENCES users(id),
                    error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
                """)
            conn.execute(
                "INSERT OR IGNORE INTO users (id, name, password) VALUES (?, ?, ?)",
                (DEFAULT_USER_ID, self.default_user, ""),
            )

    def get_user(self, user_id: int) -> User | None:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return row_to_user(row) if row is not None else None

    def create_playbook(self, *, name: str, path: str, creator: str) -> Playbook:
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO playbooks (name, path, creator) VALUES (?, ?, ?)",
                (name, path, creator),
            )
            row = conn.execute(
                "SELECT * FROM playbooks WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
        return row_to_playbook(row)

    def get_playbook(self, playbook_id: int) -> Playbook | None:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT * FROM playbooks WHERE id = ?", (playbook_id,)).fetchone()
        return row_to_playbook(row) if row is not None else None

    def create_inventory(self, *, name: str, path: str, creator: str) -> Inventory:
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO inventories (name, path, creator) VALUES (?, ?, ?)",
                (name, path, creator),
            )
            row = conn.execute(
                "SELECT * FROM inventories WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
        return row_to_inventory(row)

    def get_inventory(self, inventory_id: int) -> Inventory | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM inventories WHERE id = ?", (inventory_id,)
            ).fetchone()
        return row_to_inventory(row) if row is not None else None

    def create_task(
        self,
        *,
        task_id: str,
        name: str,
        playbook_id: int,
        inventory_id: int,
        user_id: int = DEFAULT_USER_ID,
    ) -> Task:
        now = _utc_now_iso()
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO tasks (
                    task_id,
                    name,
                    status,
                    playbook_id,
                    inventory_id,
                    user_id,
                    error,
                    created_at,
                    updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (task_id, name, "pending", playbook_id, inventory_id, user_id, None, now, now),
            )
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return row_to_task(row)

    def get_task(self, task_id: str) -> Task | None:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE task_id = ?", (task_id,)).fetchone()
        return row_to_task(row) if row is not None else None

    def get_task_detail(self, task_id: str) -> TaskDetail | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                f"SELECT {TASK_DETAIL_COLUMNS} {TASK_DETAIL_JOINS} WHERE t.task_id = ?",
                (task_id,),
            ).fetchone()
        return row_to_task_detail(row) if row is not None else None

    def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        error: str | None = None,
    ) -> Task:
        """Update status, error, and timestamp only; foreign keys stay untouched."""
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "UPDATE tasks SET status = ?, error = ?, updated_at = ? WHERE task_id = ?",
                (status, error, _utc_now_iso(), task_id),
            )
            if cursor.rowcount == 0:
                raise KeyError(f"Task {task_id} does not exist")
            row = conn.execute("SELECT * FROM tasks WHERE task_id = ?", (task_id,)).fetchone()
        return row_to_task(row)

    def claim_task(self, task_id: str) -> Task | None:
        placeholders = ", ".join("?" for _ in RUNNABLE_STATUSES)
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                f"""
                UPDATE tasks
                SET status = 'running', error = NULL, updated_at = ?
                WHERE task_id = ? AND status IN ({placeholders})
                """,
                (_utc_now_iso(), task_id, *RUNNABLE_STATUSES),
            )
            if cursor.rowcount != 1:
                return None
            row = conn.execute("SELECT * FROM tasks WHERE task_id = ?", (task_id,)).fetchone()
        return row_to_task(row)

    def fail_running_tasks(self, error: str) -> int:
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "UPDATE tasks SET status = 'failed', error = ?, updated_at = ? "
                "WHERE status = 'running'",
                (error, _utc_now_iso()),
            )
            return cursor.rowcount

    def list_tasks(self, limit: int = 10) -> list[TaskDetail]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                f"SELECT {TASK_DETAIL_COLUMNS} {TASK_DETAIL_JOINS} ORDER BY t.id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [row_to_task_detail(row) for row in rows]

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection that commits on success and always closes."""
        with closing(sqlite3.connect(self.path, timeout=30.0)) as conn:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            with conn:
                yield conn


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()
