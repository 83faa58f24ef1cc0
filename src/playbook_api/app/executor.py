from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path

from .artifacts import ArtifactStore
from .models import TaskDetail
from .results import PlaybookResults
from .runner import PlaybookExecutionError, PlaybookRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionOutcome:
    succeeded: bool
    error: str | None = None
    results: PlaybookResults | None = None
    duration_ms: float = 0.0


class PlaybookExecutor:
    """Run one task's materialized artifacts and store the report next to them."""

    def __init__(
        self,
        *,
        artifacts: ArtifactStore,
        runner: PlaybookRunner,
        timeout_s: float = 1800.0,
    ) -> None:
        self.artifacts = artifacts
        self.runner = runner
        self.timeout_s = timeout_s

    def execute(self, detail: TaskDetail) -> ExecutionOutcome:
        task_id = detail.task.task_id
        started_perf = time.perf_counter()
        try:
            results = self._run(detail)
        except PlaybookExecutionError as exc:
            logger.warning("task_execute event=failed task_id=%s reason=%s", task_id, exc)
            return ExecutionOutcome(
                succeeded=False,
                error=str(exc) or type(exc).__name__,
                duration_ms=_duration_ms(started_perf),
            )
        return ExecutionOutcome(
            succeeded=True,
            results=results,
            duration_ms=_duration_ms(started_perf),
        )

    def _run(self, detail: TaskDetail) -> PlaybookResults:
        # A report left by an earlier run must not outlive a failed re-run.
        try:
            self.artifacts.clear_result(detail.task.task_id)
        except OSError as exc:
            raise PlaybookExecutionError(f"Failed to clear previous result: {exc}") from exc

        playbook_path = Path(detail.playbook.path)
        inventory_path = Path(detail.inventory.path)
        for label, path in (("playbook", playbook_path), ("inventory", inventory_path)):
            if not path.is_file():
                raise PlaybookExecutionError(f"{label} file not found: {path}")

        results = self.runner.run(playbook_path, inventory_path, self.timeout_s)
        try:
            self.artifacts.write_result(detail.task.task_id, results)
        except OSError as exc:
            raise PlaybookExecutionError(f"Failed to write result: {exc}") from exc
        return results


def _duration_ms(started_at: float) -> float:
    return round((time.perf_counter() - started_at) * 1000.0, 2)
