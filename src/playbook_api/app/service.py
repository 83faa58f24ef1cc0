"""Operations the HTTP layer performs against the store, artifacts, and dispatcher."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from pydantic import ValidationError

from .artifacts import ArtifactStore
from .dispatcher import TaskDispatcher
from .models import Task, TaskDetail, TaskDetailResponse
from .storage import TaskStorage

logger = logging.getLogger(__name__)


class TaskNotFoundError(KeyError):
    pass


class TaskService:
    def __init__(
        self,
        *,
        storage: TaskStorage,
        artifacts: ArtifactStore,
        dispatcher: TaskDispatcher,
        creator: str = "admin",
    ) -> None:
        self.storage = storage
        self.artifacts = artifacts
        self.dispatcher = dispatcher
        self.creator = creator

    def create_task(self, *, name: str, playbook: str, inventory: str) -> Task:
        """Write both artifacts first; rows are only inserted once they exist.

        OSError from the artifact writes propagates and nothing is stored.
        """
        task_id = str(uuid.uuid4())
        playbook_path = self.artifacts.write_playbook(task_id, playbook)
        inventory_path = self.artifacts.write_inventory(task_id, inventory)

        playbook_row = self.storage.create_playbook(
            name=name, path=str(playbook_path), creator=self.creator
        )
        inventory_row = self.storage.create_inventory(
            name=name, path=str(inventory_path), creator=self.creator
        )
        task = self.storage.create_task(
            task_id=task_id,
            name=name,
            playbook_id=playbook_row.id,
            inventory_id=inventory_row.id,
        )
        logger.info("task_create event=created task_id=%s name=%s", task_id, name)
        return task

    def list_recent(self, limit: int) -> list[TaskDetail]:
        return self.storage.list_tasks(limit)

    def describe(self, task_id: str) -> TaskDetailResponse:
        """Task metadata plus raw artifact text; read failures become text."""
        detail = self.storage.get_task_detail(task_id)
        if detail is None:
            return TaskDetailResponse(error=f"Task {task_id} not found")
        return TaskDetailResponse(
            task=detail.task,
            playbook=self._read_or_error(detail.playbook.path),
            inventory=self._read_or_error(detail.inventory.path),
        )

    def result(self, task_id: str) -> dict[str, Any]:
        try:
            results = self.artifacts.read_result(task_id)
        except (OSError, ValidationError) as exc:
            return {"error": str(exc)}
        return results.model_dump(mode="json")

    def trigger_run(self, task_id: str) -> None:
        """Queue a run; blocks until the dispatcher accepts the id."""
        if self.storage.get_task(task_id) is None:
            raise TaskNotFoundError(task_id)
        self.dispatcher.enqueue(task_id)

    def _read_or_error(self, path: str) -> str:
        try:
            return self.artifacts.read_text(path)
        except OSError as exc:
            return str(exc)
