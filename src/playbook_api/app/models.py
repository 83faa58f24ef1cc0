"""Pydantic records shared across API, storage, executor, and dispatcher.

Terms used in this file:
- Record: a plain typed row as read from the task store.
- Detail: a task joined with the playbook, inventory, and user it references.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

# Task lifecycle states used by storage + API responses.
TaskStatus = Literal["pending", "running", "succeeded", "failed"]

# Allowed moves between lifecycle states. A terminal task only goes back to
# "running" when an operator triggers a new run.
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"running"}),
    "running": frozenset({"succeeded", "failed"}),
    "succeeded": frozenset({"running"}),
    "failed": frozenset({"running"}),
}

# States a worker may claim a task from.
RUNNABLE_STATUSES: tuple[str, ...] = tuple(
    status for status, targets in STATUS_TRANSITIONS.items() if "running" in targets
)


class User(BaseModel):
    id: int
    name: str
    # Placeholder only; no authentication flow reads it.
    password: str = ""


class Playbook(BaseModel):
    """Materialized automation script owned by one task."""

    id: int
    name: str
    path: str
    creator: str


class Inventory(BaseModel):
    """Materialized host list owned by one task."""

    id: int
    name: str
    path: str
    creator: str


class Task(BaseModel):
    """Canonical task row shape returned by storage and the API."""

    id: int
    # Opaque public identifier, also the name of the artifact directory.
    task_id: str
    name: str
    status: TaskStatus = "pending"
    playbook_id: int
    inventory_id: int
    user_id: int
    error: str | None = None
    created_at: datetime
    updated_at: datetime


class TaskDetail(BaseModel):
    """Task row plus its resolved associations."""

    task: Task
    playbook: Playbook
    inventory: Inventory
    user: User | None = None


class CreateTaskRequest(BaseModel):
    """Request body for POST /task."""

    name: str = Field(min_length=1)
    playbook: str
    inventory: str


class TaskDetailResponse(BaseModel):
    """Response body for GET /task/{task_id}."""

    task: Task | None = None
    playbook: str = ""
    inventory: str = ""
    error: str | None = None
