"""On-disk artifacts for each task.

Every task owns one directory under the data root named after its task id:

    <root>/<task_id>/site.yaml       playbook built from the submitted steps
    <root>/<task_id>/inventory.ini   host list built from the submitted targets
    <root>/<task_id>/result.json     execution report, written after a run
"""

from __future__ import annotations

from pathlib import Path

from .results import PlaybookResults, dump_results

HOST_GROUP = "servers"
PLAYBOOK_FILENAME = "site.yaml"
INVENTORY_FILENAME = "inventory.ini"
RESULT_FILENAME = "result.json"

PLAYBOOK_HEADER = f"- hosts: {HOST_GROUP}\n  gather_facts: false\n  tasks:\n"
INVENTORY_HEADER = f"[{HOST_GROUP}]\n"


def render_playbook(body: str) -> str:
    """Nest submitted task steps under the fixed single-play skeleton."""
    normalized = body.replace("\r", "")
    lines = [f"  {line}\n" for line in normalized.split("\n")]
    return PLAYBOOK_HEADER + "".join(lines)


def render_inventory(body: str) -> str:
    return INVENTORY_HEADER + body


class ArtifactStore:
    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def task_dir(self, task_id: str) -> Path:
        return self.root / task_id

    def playbook_path(self, task_id: str) -> Path:
        return self.task_dir(task_id) / PLAYBOOK_FILENAME

    def inventory_path(self, task_id: str) -> Path:
        return self.task_dir(task_id) / INVENTORY_FILENAME

    def result_path(self, task_id: str) -> Path:
        return self.task_dir(task_id) / RESULT_FILENAME

    def write_playbook(self, task_id: str, body: str) -> Path:
        path = self.playbook_path(task_id)
        _write_file(path, render_playbook(body))
        return path

    def write_inventory(self, task_id: str, body: str) -> Path:
        path = self.inventory_path(task_id)
        _write_file(path, render_inventory(body))
        return path

    def write_result(self, task_id: str, results: PlaybookResults) -> Path:
        path = self.result_path(task_id)
        _write_file(path, dump_results(results))
        return path

    def clear_result(self, task_id: str) -> None:
        self.result_path(task_id).unlink(missing_ok=True)

    def read_result(self, task_id: str) -> PlaybookResults:
        """Load a stored report; raises OSError or pydantic.ValidationError."""
        raw = self.result_path(task_id).read_text(encoding="utf-8")
        return PlaybookResults.model_validate_json(raw)

    @staticmethod
    def read_text(path: str | Path) -> str:
        return Path(path).read_text(encoding="utf-8")


def _write_file(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8", newline="")
