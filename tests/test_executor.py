from __future__ import annotations

from pathlib import Path

from playbook_api.app.artifacts import ArtifactStore
from playbook_api.app.executor import PlaybookExecutor
from playbook_api.app.models import TaskDetail
from playbook_api.app.runner import PlaybookExecutionError, PlaybookTimeoutError
from playbook_api.app.storage import SQLiteTaskStorage
from conftest import FakeRunner


def _materialize(
    storage: SQLiteTaskStorage, artifacts: ArtifactStore, task_id: str
) -> TaskDetail:
    playbook_path = artifacts.write_playbook(task_id, "- name: ping\n  ping:")
    inventory_path = artifacts.write_inventory(task_id, "host1 ansible_host=10.0.0.5")
    playbook = storage.create_playbook(name="ping", path=str(playbook_path), creator="admin")
    inventory = storage.create_inventory(name="ping", path=str(inventory_path), creator="admin")
    storage.create_task(
        task_id=task_id, name="ping", playbook_id=playbook.id, inventory_id=inventory.id
    )
    detail = storage.get_task_detail(task_id)
    assert detail is not None
    return detail


def test_successful_run_writes_result_document(
    storage: SQLiteTaskStorage, fake_runner: FakeRunner, tmp_path: Path
) -> None:
    artifacts = ArtifactStore(tmp_path / "data")
    executor = PlaybookExecutor(artifacts=artifacts, runner=fake_runner, timeout_s=42.0)
    detail = _materialize(storage, artifacts, "t-1")

    outcome = executor.execute(detail)

    assert outcome.succeeded
    assert outcome.error is None
    assert outcome.results is fake_runner.results
    assert fake_runner.calls == [
        (artifacts.playbook_path("t-1"), artifacts.inventory_path("t-1"), 42.0)
    ]
    assert artifacts.read_result("t-1").stats["host1"].ok == 2


def test_failed_run_leaves_no_result(
    storage: SQLiteTaskStorage, fake_runner: FakeRunner, tmp_path: Path
) -> None:
    artifacts = ArtifactStore(tmp_path / "data")
    executor = PlaybookExecutor(artifacts=artifacts, runner=fake_runner)
    detail = _materialize(storage, artifacts, "t-1")
    fake_runner.error = PlaybookExecutionError("ansible-playbook exited with code 2")

    outcome = executor.execute(detail)

    assert not outcome.succeeded
    assert outcome.error == "ansible-playbook exited with code 2"
    assert not artifacts.result_path("t-1").exists()


def test_timeout_is_reported_as_failure(
    storage: SQLiteTaskStorage, fake_runner: FakeRunner, tmp_path: Path
) -> None:
    artifacts = ArtifactStore(tmp_path / "data")
    executor = PlaybookExecutor(artifacts=artifacts, runner=fake_runner)
    detail = _materialize(storage, artifacts, "t-1")
    fake_runner.error = PlaybookTimeoutError("ansible-playbook timed out after 1s and was killed")

    outcome = executor.execute(detail)

    assert not outcome.succeeded
    assert outcome.error is not None and "timed out" in outcome.error


def test_missing_playbook_fails_without_starting_runner(
    storage: SQLiteTaskStorage, fake_runner: FakeRunner, tmp_path: Path
) -> None:
    artifacts = ArtifactStore(tmp_path / "data")
    executor = PlaybookExecutor(artifacts=artifacts, runner=fake_runner)
    detail = _materialize(storage, artifacts, "t-1")
    artifacts.playbook_path("t-1").unlink()

    outcome = executor.execute(detail)

    assert not outcome.succeeded
    assert outcome.error is not None and outcome.error.startswith("playbook file not found")
    assert fake_runner.calls == []
    assert not artifacts.result_path("t-1").exists()


def test_failed_rerun_removes_previous_result(
    storage: SQLiteTaskStorage, fake_runner: FakeRunner, tmp_path: Path
) -> None:
    artifacts = ArtifactStore(tmp_path / "data")
    executor = PlaybookExecutor(artifacts=artifacts, runner=fake_runner)
    detail = _materialize(storage, artifacts, "t-1")
    assert executor.execute(detail).succeeded
    assert artifacts.result_path("t-1").is_file()

    fake_runner.error = PlaybookExecutionError("ansible-playbook exited with code 2")
    outcome = executor.execute(detail)

    assert not outcome.succeeded
    assert not artifacts.result_path("t-1").exists()
