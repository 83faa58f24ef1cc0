"""FastAPI application wiring for the playbook console.

Terms used in this file:
- Lifespan: startup/shutdown hook; creates the schema, starts the workers,
  and drains them when the server stops.
- app.state: shared runtime objects (settings, storage, dispatcher, service).
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from .app.artifacts import ArtifactStore
from .app.dispatcher import QueueClosedError, TaskDispatcher
from .app.executor import PlaybookExecutor
from .app.models import CreateTaskRequest, Task, TaskDetailResponse
from .app.runner import AnsiblePlaybookRunner, PlaybookRunner
from .app.service import TaskNotFoundError, TaskService
from .app.settings import Settings, get_settings
from .app.storage import TaskStorage, build_storage
from .app.ui import render_create_page, render_index

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def create_app(
    *,
    settings_override: Settings | None = None,
    storage: TaskStorage | None = None,
    runner: PlaybookRunner | None = None,
) -> FastAPI:
    """Application factory.

    `storage` and `runner` replace the configured database and the real
    ansible-playbook binary, which keeps tests free of external processes.
    """
    settings = settings_override or get_settings()
    task_storage = storage or build_storage(
        settings.database_url, default_user=settings.default_user
    )
    artifacts = ArtifactStore(settings.data_dir.resolve())
    playbook_runner = runner or AnsiblePlaybookRunner(
        binary=settings.ansible_playbook_bin,
        ssh_private_key_file=settings.ssh_private_key_file,
        ssh_user=settings.ssh_user,
        ssh_port=settings.ssh_port,
    )
    executor = PlaybookExecutor(
        artifacts=artifacts,
        runner=playbook_runner,
        timeout_s=settings.execution_timeout_s,
    )
    dispatcher = TaskDispatcher(
        storage=task_storage,
        executor=executor,
        worker_count=settings.worker_count,
        queue_capacity=settings.queue_capacity,
    )
    service = TaskService(
        storage=task_storage,
        artifacts=artifacts,
        dispatcher=dispatcher,
        creator=settings.default_user,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Schema errors are fatal: the server must not start without tables.
        task_storage.migrate()
        artifacts.root.mkdir(parents=True, exist_ok=True)
        dispatcher.recover_interrupted()
        dispatcher.start()
        logger.info(
            "app event=started database_url=%s data_dir=%s",
            settings.database_url,
            artifacts.root,
        )
        try:
            yield
        finally:
            # In-flight runs finish; queued ids are drained before workers exit.
            # Joining runs off the event loop and is bounded by one full run.
            await run_in_threadpool(
                dispatcher.shutdown,
                settings.execution_timeout_s + settings.shutdown_grace_s,
            )
            logger.info("app event=stopped")

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.storage = task_storage
    app.state.artifacts = artifacts
    app.state.executor = executor
    app.state.dispatcher = dispatcher
    app.state.service = service

    def _service(request: Request) -> TaskService:
        return request.app.state.service

    @app.get("/health")
    @app.get("/healthz")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/", response_class=HTMLResponse)
    def index(request: Request) -> str:
        tasks = _service(request).list_recent(settings.recent_task_limit)
        return render_index(tasks, app_name=settings.app_name)

    @app.get("/task", response_class=HTMLResponse)
    def create_form() -> str:
        return render_create_page(app_name=settings.app_name)

    @app.post("/task", response_model=Task)
    async def create_task(request: Request) -> Task:
        """Create a task from a JSON body or from `name`/`playbook`/`inventory` form fields."""
        payload = await _read_create_request(request)
        try:
            return await run_in_threadpool(
                _service(request).create_task,
                name=payload.name,
                playbook=payload.playbook,
                inventory=payload.inventory,
            )
        except OSError as exc:
            logger.error("task_create event=artifact_error name=%s reason=%s", payload.name, exc)
            raise HTTPException(
                status_code=400, detail=f"Failed to write task artifacts: {exc}"
            ) from exc

    @app.get("/task/{task_id}", response_model=TaskDetailResponse)
    def show_task(task_id: str, request: Request) -> TaskDetailResponse:
        return _service(request).describe(task_id)

    # GET so the index page can link to it directly.
    @app.get("/runTask/{task_id}")
    def run_task(task_id: str, request: Request) -> RedirectResponse:
        try:
            _service(request).trigger_run(task_id)
        except TaskNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Task not found") from exc
        except QueueClosedError as exc:
            raise HTTPException(status_code=503, detail="Server is shutting down") from exc
        return RedirectResponse(url="/", status_code=302)

    @app.get("/result/{task_id}")
    def show_result(task_id: str, request: Request) -> dict[str, Any]:
        return _service(request).result(task_id)

    return app


async def _read_create_request(request: Request) -> CreateTaskRequest:
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith(FORM_CONTENT_TYPES):
            form = await request.form()
            data: Any = {key: value for key, value in form.items() if isinstance(value, str)}
        else:
            data = await request.json()
        return CreateTaskRequest.model_validate(data)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"Invalid request body: {exc}") from exc


# Module-level app for `uvicorn playbook_api.main:app`.
app = create_app()
