"""Worker pool that runs queued tasks.

Lifecycle of one queued task id, as seen by a worker:
1) claim the task, moving it to running unless it is already running,
2) load its playbook and inventory,
3) execute the playbook,
4) mark it succeeded, or failed with the error message (retried once).

A failure at any step is logged and the worker moves on to the next id.
Nothing is persisted about the queue itself: ids still queued when the
process stops are not resumed, and tasks a previous process left running
are marked failed at startup.
"""

from __future__ import annotations

import logging
import threading
import time

from .executor import ExecutionOutcome, PlaybookExecutor
from .models import TaskStatus
from .storage import TaskStorage
from .work_queue import QueueClosedError, WorkQueue

logger = logging.getLogger(__name__)

__all__ = ["QueueClosedError", "TaskDispatcher"]

INTERRUPTED_ERROR = "Interrupted before completion"
RECORD_ATTEMPTS = 2


class TaskDispatcher:
    def __init__(
        self,
        *,
        storage: TaskStorage,
        executor: PlaybookExecutor,
        worker_count: int = 2,
        queue_capacity: int = 0,
    ) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        self.storage = storage
        self.executor = executor
        self.worker_count = worker_count
        self.queue: WorkQueue[str] = WorkQueue(capacity=queue_capacity)
        self._workers: list[threading.Thread] = []
        self._started = False
        self._start_lock = threading.Lock()

    def start(self) -> None:
        with self._start_lock:
            if self._started:
                return
            for index in range(self.worker_count):
                worker = threading.Thread(
                    target=self._worker_loop,
                    args=(index,),
                    name=f"playbook-worker-{index}",
                    daemon=True,
                )
                worker.start()
                self._workers.append(worker)
            self._started = True
        logger.info(
            "dispatcher event=started workers=%d queue_capacity=%d",
            self.worker_count,
            self.queue.capacity,
        )

    def enqueue(self, task_id: str) -> None:
        """Hand a task id to the workers; blocks while the queue is full."""
        logger.info("dispatcher event=enqueue task_id=%s", task_id)
        self.queue.put(task_id)

    def close(self) -> None:
        """Stop accepting new runs; queued ids are still drained."""
        logger.warning("dispatcher event=closing pending=%d", len(self.queue))
        self.queue.close()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for workers to exit; return True when all of them have."""
        deadline = None if timeout is None else time.monotonic() + timeout
        for worker in self._workers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            worker.join(remaining)
        return not any(worker.is_alive() for worker in self._workers)

    def shutdown(self, timeout: float | None = None) -> bool:
        self.close()
        stopped = self.join(timeout)
        if not stopped:
            logger.warning("dispatcher event=shutdown_timeout timeout_s=%s", timeout)
        return stopped

    def _worker_loop(self, index: int) -> None:
        try:
            while True:
                task_id = self.queue.get()
                if task_id is None:
                    return
                try:
                    self.process(task_id)
                except Exception:  # noqa: BLE001
                    logger.exception(
                        "task_run event=worker_error worker=%d task_id=%s", index, task_id
                    )
        finally:
            logger.info("dispatcher event=worker_stopped worker=%d", index)

    def process(self, task_id: str) -> ExecutionOutcome | None:
        """Run one task through its lifecycle; returns None if it never started."""
        # The claim is a single conditional UPDATE, so two triggers for the same
        # id cannot both start a run.
        claimed = self.storage.claim_task(task_id)
        if claimed is None:
            current = self.storage.get_task(task_id)
            if current is None:
                logger.error("task_run event=not_found task_id=%s", task_id)
            else:
                logger.warning(
                    "task_run event=skipped task_id=%s status=%s", task_id, current.status
                )
            return None

        logger.info("task_run event=start task_id=%s name=%s", task_id, claimed.name)
        try:
            detail = self.storage.get_task_detail(task_id)
            if detail is None:
                raise KeyError(f"Task {task_id} disappeared after claim")
            outcome = self.executor.execute(detail)
        except Exception as exc:  # noqa: BLE001
            logger.exception("task_run event=executor_error task_id=%s", task_id)
            outcome = ExecutionOutcome(succeeded=False, error=str(exc) or type(exc).__name__)

        self._record_outcome(task_id, outcome)
        return outcome

    def recover_interrupted(self) -> int:
        """Fail tasks left running by a previous process so they can be re-run."""
        count = self.storage.fail_running_tasks(INTERRUPTED_ERROR)
        if count:
            logger.warning("dispatcher event=recovered_interrupted count=%d", count)
        return count

    def _record_outcome(self, task_id: str, outcome: ExecutionOutcome) -> None:
        status: TaskStatus = "succeeded" if outcome.succeeded else "failed"
        error = None if outcome.succeeded else outcome.error
        for attempt in range(1, RECORD_ATTEMPTS + 1):
            try:
                self.storage.update_task(task_id, status=status, error=error)
                break
            except Exception:  # noqa: BLE001
                if attempt == RECORD_ATTEMPTS:
                    # Left running until the next startup fails it.
                    logger.exception(
                        "task_run event=stuck task_id=%s status=running wanted=%s",
                        task_id,
                        status,
                    )
                    return
                logger.warning(
                    "task_run event=record_retry task_id=%s attempt=%d", task_id, attempt
                )
        logger.info(
            "task_run event=completed task_id=%s status=%s duration_ms=%s",
            task_id,
            status,
            outcome.duration_ms,
        )
