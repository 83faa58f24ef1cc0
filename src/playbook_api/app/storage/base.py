"""Repository interfaces for the task store and row mapping shared by backends."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from playbook_api.app.models import Inventory, Playbook, Task, TaskDetail, TaskStatus, User

DEFAULT_USER_ID = 1


class UserRepository(Protocol):
    def get_user(self, user_id: int) -> User | None: ...


class PlaybookRepository(Protocol):
    def create_playbook(self, *, name: str, path: str, creator: str) -> Playbook: ...

    def get_playbook(self, playbook_id: int) -> Playbook | None: ...


class InventoryRepository(Protocol):
    def create_inventory(self, *, name: str, path: str, creator: str) -> Inventory: ...

    def get_inventory(self, inventory_id: int) -> Inventory | None: ...


class TaskRepository(Protocol):
    def create_task(
        self,
        *,
        task_id: str,
        name: str,
        playbook_id: int,
        inventory_id: int,
        user_id: int = DEFAULT_USER_ID,
    ) -> Task: ...

    def get_task(self, task_id: str) -> Task | None: ...

    def get_task_detail(self, task_id: str) -> TaskDetail | None: ...

    def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        error: str | None = None,
    ) -> Task: ...

    def claim_task(self, task_id: str) -> Task | None:
        """Atomically move a runnable task to running; None if missing or already running."""
        ...

    def fail_running_tasks(self, error: str) -> int:
        """Mark every running task failed with `error`; returns how many changed."""
        ...

    def list_tasks(self, limit: int = 10) -> list[TaskDetail]: ...


class TaskStorage(
    UserRepository, PlaybookRepository, InventoryRepository, TaskRepository, Protocol
):
    def migrate(self) -> None: ...


# Columns selected by every task detail query, aliased so one flat row maps back
# onto four records.
TASK_DETAIL_COLUMNS = """
    t.id AS t_id, t.task_id AS t_task_id, t.name AS t_name, t.status AS t_status,
    t.playbook_id AS t_playbook_id, t.inventory_id AS t_inventory_id,
    t.user_id AS t_user_id, t.error AS t_error,
    t.created_at AS t_created_at, t.updated_at AS t_updated_at,
    p.id AS p_id, p.name AS p_name, p.path AS p_path, p.creator AS p_creator,
    i.id AS i_id, i.name AS i_name, i.path AS i_path, i.creator AS i_creator,
    u.id AS u_id, u.name AS u_name, u.password AS u_password
"""

TASK_DETAIL_JOINS = """
    FROM tasks t
    JOIN playbooks p ON p.id = t.playbook_id
    JOIN inventories i ON i.id = t.inventory_id
    LEFT JOIN users u ON u.id = t.user_id
"""


def parse_datetime(raw: Any) -> datetime:
    """Parse datetime value from database driver output."""
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, str):
        return datetime.fromisoformat(raw)
    raise TypeError(f"Unsupported datetime value: {type(raw)!r}")


def row_to_task(row: Any, prefix: str = "") -> Task:
    return Task(
        id=row[f"{prefix}id"],
        task_id=str(row[f"{prefix}task_id"]),
        name=row[f"{prefix}name"],
        status=row[f"{prefix}status"],
        playbook_id=row[f"{prefix}playbook_id"],
        inventory_id=row[f"{prefix}inventory_id"],
        user_id=row[f"{prefix}user_id"],
        error=row[f"{prefix}error"],
        created_at=parse_datetime(row[f"{prefix}created_at"]),
        updated_at=parse_datetime(row[f"{prefix}updated_at"]),
    )


def row_to_playbook(row: Any, prefix: str = "") -> Playbook:
    return Playbook(
        id=row[f"{prefix}id"],
        name=row[f"{prefix}name"],
        path=row[f"{prefix}path"],
        creator=row[f"{prefix}creator"],
    )


def row_to_inventory(row: Any, prefix: str = "") -> Inventory:
    return Inventory(
        id=row[f"{prefix}id"],
        name=row[f"{prefix}name"],
        path=row[f"{prefix}path"],
        creator=row[f"{prefix}creator"],
    )


def row_to_user(row: Any, prefix: str = "") -> User:
    return User(
        id=row[f"{prefix}id"],
        name=row[f"{prefix}name"],
        password=row[f"{prefix}password"] or "",
    )


def row_to_task_detail(row: Any) -> TaskDetail:
    """Map one joined row to a task with its associations."""
    user = row_to_user(row, "u_") if row["u_id"] is not None else None
    return TaskDetail(
        task=row_to_task(row, "t_"),
        playbook=row_to_playbook(row, "p_"),
        inventory=row_to_inventory(row, "i_"),
        user=user,
    )
