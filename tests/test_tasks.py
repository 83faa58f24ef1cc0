from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from playbook_api.app.dispatcher import INTERRUPTED_ERROR
from playbook_api.app.runner import PlaybookExecutionError
from playbook_api.app.settings import Settings
from playbook_api.app.storage import SQLiteTaskStorage
from playbook_api.main import create_app
from conftest import FakeRunner, wait_for_status

PING_TASK = {
    "name": "ping-test",
    "playbook": "- name: ping\n  ping:",
    "inventory": "host1 ansible_host=10.0.0.5",
}


def _create(client: TestClient, **overrides: str) -> dict:
    response = client.post("/task", json={**PING_TASK, **overrides})
    assert response.status_code == 200
    return response.json()


def test_create_task_materializes_artifacts(client: TestClient) -> None:
    task = _create(client)

    assert task["status"] == "pending"
    assert task["name"] == "ping-test"
    assert task["error"] is None

    task_dir = Path(client.app.state.settings.data_dir) / task["task_id"]
    assert (task_dir / "site.yaml").read_text(encoding="utf-8") == (
        "- hosts: servers\n  gather_facts: false\n  tasks:\n  - name: ping\n    ping:\n"
    )
    assert (task_dir / "inventory.ini").read_text(encoding="utf-8") == (
        "[servers]\nhost1 ansible_host=10.0.0.5"
    )
    assert not (task_dir / "result.json").exists()


def test_create_task_requires_name(client: TestClient) -> None:
    response = client.post("/task", json={**PING_TASK, "name": ""})
    assert response.status_code == 422

    response = client.post("/task", json={"name": "no bodies"})
    assert response.status_code == 422


def test_create_task_reports_artifact_write_failure(client: TestClient) -> None:
    data_dir = Path(client.app.state.settings.data_dir)
    data_dir.rmdir()
    data_dir.write_text("not a directory", encoding="utf-8")

    response = client.post("/task", json=PING_TASK)

    assert response.status_code == 400
    assert "Failed to write task artifacts" in response.json()["detail"]
    assert client.app.state.storage.list_tasks(10) == []


def test_task_detail_returns_metadata_and_artifact_text(client: TestClient) -> None:
    task = _create(client)

    response = client.get(f"/task/{task['task_id']}")

    assert response.status_code == 200
    payload = response.json()
    assert payload["error"] is None
    assert payload["task"]["task_id"] == task["task_id"]
    assert payload["playbook"].startswith("- hosts: servers\n")
    assert "  - name: ping\n" in payload["playbook"]
    assert payload["inventory"] == "[servers]\nhost1 ansible_host=10.0.0.5"


def test_task_detail_unknown_task_reports_error(client: TestClient) -> None:
    response = client.get("/task/does-not-exist")

    assert response.status_code == 200
    payload = response.json()
    assert payload["task"] is None
    assert "not found" in payload["error"]


def test_run_task_executes_and_stores_result(client: TestClient, fake_runner: FakeRunner) -> None:
    task = _create(client)
    task_id = task["task_id"]

    response = client.get(f"/runTask/{task_id}", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "/"
    finished = wait_for_status(client.app.state.storage, task_id, {"succeeded", "failed"})
    assert finished.status == "succeeded"
    assert finished.error is None

    playbook_path, inventory_path, timeout_s = fake_runner.calls[0]
    assert playbook_path.name == "site.yaml"
    assert inventory_path.name == "inventory.ini"
    assert timeout_s == client.app.state.settings.execution_timeout_s

    result = client.get(f"/result/{task_id}").json()
    assert result["plays"][0]["tasks"][1]["hosts"]["host1"]["stdout"] == "up 3 days"
    assert result["stats"]["host1"]["ok"] == 2


def test_failed_run_keeps_error_and_has_no_result(
    client: TestClient, fake_runner: FakeRunner
) -> None:
    fake_runner.error = PlaybookExecutionError(
        "ansible-playbook exited with code 3 (one or more hosts were unreachable)"
    )
    task_id = _create(client)["task_id"]

    client.get(f"/runTask/{task_id}", follow_redirects=False)
    finished = wait_for_status(client.app.state.storage, task_id, {"succeeded", "failed"})

    assert finished.status == "failed"
    assert "unreachable" in finished.error
    assert "error" in client.get(f"/result/{task_id}").json()
    assert "unreachable" in client.get("/").text


def test_run_with_missing_playbook_file_fails(client: TestClient, fake_runner: FakeRunner) -> None:
    task_id = _create(client)["task_id"]
    (Path(client.app.state.settings.data_dir) / task_id / "site.yaml").unlink()

    client.get(f"/runTask/{task_id}", follow_redirects=False)
    finished = wait_for_status(client.app.state.storage, task_id, {"succeeded", "failed"})

    assert finished.status == "failed"
    assert "playbook file not found" in finished.error
    assert fake_runner.calls == []
    assert not (Path(client.app.state.settings.data_dir) / task_id / "result.json").exists()


def test_run_unknown_task_returns_404(client: TestClient) -> None:
    response = client.get("/runTask/does-not-exist", follow_redirects=False)
    assert response.status_code == 404


def test_result_before_any_run_reports_error(client: TestClient) -> None:
    task_id = _create(client)["task_id"]

    payload = client.get(f"/result/{task_id}").json()

    assert set(payload) == {"error"}
    assert payload["error"]


def test_run_after_shutdown_is_rejected(client: TestClient) -> None:
    task_id = _create(client)["task_id"]
    client.app.state.dispatcher.close()

    response = client.get(f"/runTask/{task_id}", follow_redirects=False)

    assert response.status_code == 503


def test_create_task_accepts_form_fields(client: TestClient) -> None:
    response = client.post(
        "/task",
        data={
            "name": "form-task",
            "playbook": "- name: ping\r\n  ping:",
            "inventory": "host1 ansible_host=10.0.0.5",
        },
    )

    assert response.status_code == 200
    task = response.json()
    assert task["name"] == "form-task"
    assert task["status"] == "pending"
    site = Path(client.app.state.settings.data_dir) / task["task_id"] / "site.yaml"
    assert site.read_text(encoding="utf-8").endswith("  - name: ping\n    ping:\n")


def test_create_task_rejects_incomplete_form_and_bad_json(client: TestClient) -> None:
    response = client.post("/task", data={"name": "form-task", "playbook": "- ping:"})
    assert response.status_code == 422

    response = client.post(
        "/task", content=b"{not json", headers={"content-type": "application/json"}
    )
    assert response.status_code == 422
    assert client.app.state.storage.list_tasks(10) == []


def test_startup_fails_tasks_left_running(
    settings: Settings, storage: SQLiteTaskStorage, fake_runner: FakeRunner
) -> None:
    playbook = storage.create_playbook(name="left", path="/missing/site.yaml", creator="admin")
    inventory = storage.create_inventory(name="left", path="/missing/inv.ini", creator="admin")
    storage.create_task(
        task_id="t-left", name="left", playbook_id=playbook.id, inventory_id=inventory.id
    )
    storage.update_task("t-left", status="running")

    with TestClient(create_app(settings_override=settings, runner=fake_runner)):
        task = storage.get_task("t-left")

    assert task.status == "failed"
    assert task.error == INTERRUPTED_ERROR
