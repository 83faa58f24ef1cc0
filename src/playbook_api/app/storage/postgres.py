"""PostgreSQL-backed task store with automatic table migration."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

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


class PostgresTaskStorage:
    """Persist users, playbooks, inventories, and tasks in PostgreSQL."""

    def __init__(self, database_url: str, *, default_user: str = "admin") -> None:
        if not database_url:
            raise ValueError("database_url is required")
        self.database_url = database_url
        self.default_user = default_user
        self._lock = threading.Lock()
        self._psycopg, self._dict_row = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id BIGSERIAL PRIMARY KEY,
                    name TEXT NOT NULL,
                    password TEXT NOT NULL DEFAULT ''
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS inventories (
                    id BIGSERIAL PRIMARY KEY,
                    name TEXT NOT NULL,
                    path TEXT NOT NULL,
                    creator TEXT NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS playbooks (
                    id BIGSERIAL PRIMARY KEY,
                    name TEXT NOT NULL,
                    path TEXT NOT NULL,
                    creator TEXT NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id BIGSERIAL PRIMARY KEY,
                    task_id TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    playbook_id BIGINT NOT NULL REFERENCES playbooks(id),
                    inventory_id BIGINT NOT NULL REFERENCES inventories(id),
                    user_id BIGINT NOT NULL REFERENCES users(id),
                    error TEXT,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_status
                ON tasks(status)
                """)
            conn.execute(
                """
                INSERT INTO users (id, name, password)
                VALUES (%s, %s, %s)
                ON CONFLICT (id) DO NOTHING
                """,
                (DEFAULT_USER_ID, self.default_user, ""),
            )
            # Explicit id insert above does not advance the sequence.
            conn.execute("""
                SELECT setval(
                    pg_get_serial_sequence('users', 'id'),
                    GREATEST((SELECT MAX(id) FROM users), 1)
                )
                """)
            conn.commit()

    def get_user(self, user_id: int) -> User | None:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = %s", (user_id,)).fetchone()
        return row_to_user(row) if row is not None else None

    def create_playbook(self, *, name: str, path: str, creator: str) -> Playbook:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "INSERT INTO playbooks (name, path, creator) VALUES (%s, %s, %s) RETURNING *",
                (name, path, creator),
            ).fetchone()
            conn.commit()
        return row_to_playbook(row)

    def get_playbook(self, playbook_id: int) -> Playbook | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM playbooks WHERE id = %s", (playbook_id,)
            ).fetchone()
        return row_to_playbook(row) if row is not None else None

    def create_inventory(self, *, name: str, path: str, creator: str) -> Inventory:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "INSERT INTO inventories (name, path, creator) VALUES (%s, %s, %s) RETURNING *",
                (name, path, creator),
            ).fetchone()
            conn.commit()
        return row_to_inventory(row)

    def get_inventory(self, inventory_id: int) -> Inventory | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM inventories WHERE id = %s", (inventory_id,)
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
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            row = conn.execute(
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
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (task_id, name, "pending", playbook_id, inventory_id, user_id, None, now, now),
            ).fetchone()
            conn.commit()
        return row_to_task(row)

    def get_task(self, task_id: str) -> Task | None:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE task_id = %s", (task_id,)).fetchone()
        return row_to_task(row) if row is not None else None

    def get_task_detail(self, task_id: str) -> TaskDetail | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                f"SELECT {TASK_DETAIL_COLUMNS} {TASK_DETAIL_JOINS} WHERE t.task_id = %s",
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
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                UPDATE tasks
                SET status = %s,
                    error = %s,
                    updated_at = %s
                WHERE task_id = %s
                RETURNING *
                """,
                (status, error, datetime.now(tz=UTC), task_id),
            ).fetchone()
            conn.commit()
        if row is None:
            raise KeyError(f"Task {task_id} does not exist")
        return row_to_task(row)

    def claim_task(self, task_id: str) -> Task | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                UPDATE tasks
                SET status = 'running',
                    error = NULL,
                    updated_at = %s
                WHERE task_id = %s AND status = ANY(%s)
                RETURNING *
                """,
                (datetime.now(tz=UTC), task_id, list(RUNNABLE_STATUSES)),
            ).fetchone()
            conn.commit()
        return row_to_task(row) if row is not None else None

    def fail_running_tasks(self, error: str) -> int:
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE tasks
                SET status = 'failed',
                    error = %s,
                    updated_at = %s
                WHERE status = 'running'
                """,
                (error, datetime.now(tz=UTC)),
            )
            changed = cursor.rowcount
            conn.commit()
        return changed

    def list_tasks(self, limit: int = 10) -> list[TaskDetail]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                f"SELECT {TASK_DETAIL_COLUMNS} {TASK_DETAIL_JOINS} ORDER BY t.id DESC LIMIT %s",
                (limit,),
            ).fetchall()
        return [row_to_task_detail(row) for row in rows]

    def _connect(self) -> Any:
        """Open a psycopg connection that yields dict-like rows."""
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        """Import psycopg with a friendly install hint on failure."""
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError as exc:  # pragma: no cover - exercised only without dependency
            raise RuntimeError(
                "PostgreSQL backend requires psycopg. Install with: "
                'python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row
