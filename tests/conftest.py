from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from playbook_api.app.models import Task
from playbook_api.app.results import PlaybookResults
from playbook_api.app.settings import Settings
from playbook_api.app.storage import SQLiteTaskStorage
from playbook_api.main import create_app

SAMPLE_RESULTS: dict[str, Any] = {
    "custom_stats": {},
    "global_custom_stats": {},
    "plays": [
        {
            "play": {"id": "play-1", "name": "servers", "duration": {"start": "s", "end": "e"}},
            "tasks": [
                {
                    "task": {"id": "task-1", "name": "ping"},
                    "hosts": {
                        "host1": {
                            "action": "ping",
                            "changed": False,
                            "ping": "pong",
                        }
                    },
                },
                {
                    "task": {"id": "task-2", "name": "uptime"},
                    "hosts": {
                        "host1": {
                            "action": "command",
                            "changed": True,
                            "cmd": ["uptime"],
                            "rc": 0,
                            "stdout": "up 3 days",
                            "stderr": "",
                        }
                    },
                },
            ],
        }
    ],
    "stats": {
        "host1": {
            "changed": 1,
            "failures": 0,
            "ignored": 0,
            "ok": 2,
            "rescued": 0,
            "skipped": 0,
            "unreachable": 0,
        }
    },
}


class FakeRunner:
    """Test-only runner that never starts a process."""

    def __init__(self) -> None:
        self.calls: list[tuple[Path, Path, float]] = []
        self.error: Exception | None = None
        self.results = PlaybookResults.model_validate(SAMPLE_RESULTS)
        # Set to make every run wait until the test releases it.
        self.gate: threading.Event | None = None
        self.on_run: Callable[[Path, Path], None] | None = None

    def run(self, playbook_path: Path, inventory_path: Path, timeout_s: float) -> PlaybookResults:
        self.calls.append((playbook_path, inventory_path, timeout_s))
        if self.on_run is not None:
            self.on_run(playbook_path, inventory_path)
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.error is not None:
            raise self.error
        return self.results


def wait_for_status(
    storage: Any,
    task_id: str,
    statuses: set[str],
    timeout_s: float = 5.0,
) -> Task:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        task = storage.get_task(task_id)
        if task is not None and task.status in statuses:
            return task
        time.sleep(0.02)
    raise AssertionError(f"Task {task_id} did not reach {sorted(statuses)} in {timeout_s}s")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'data.db'}",
        data_dir=tmp_path / "data",
        execution_timeout_s=5.0,
        worker_count=2,
        queue_capacity=0,
    )


@pytest.fixture
def storage(settings: Settings) -> SQLiteTaskStorage:
    store = SQLiteTaskStorage(settings.database_url)
    store.migrate()
    return store


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def client(settings: Settings, fake_runner: FakeRunner) -> Iterator[TestClient]:
    app = create_app(settings_override=settings, runner=fake_runner)
    with TestClient(app) as test_client:
        yield test_client
