# src/tqe/api/routes.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from tqe.domain.errors import NotFoundError, TQEBaseError
from tqe.domain.models import ErrorResponse, QueueView, TaskListResponse, TaskRecord
from tqe.domain.states import QueueMode
from tqe.engine import EngineContext
from tqe.logging import get_logger
from tqe.storage import QueueStore, TaskRepo

from .deps import get_ctx, get_queue, get_tasks

_LOG = get_logger(__name__)
router = APIRouter()


def _error_response(err: TQEBaseError, http_status: int) -> JSONResponse:
    payload = ErrorResponse(
        error=err.message,
        code=err.code,
        details=err.details or {},
    ).model_dump()
    return JSONResponse(status_code=http_status, content=payload)


@router.get("/healthz")
def healthz() -> dict:
    return {"ok": True}


@router.get("/queue", response_model=QueueView)
def get_queue_view(
    queue: QueueStore = Depends(get_queue),
    ctx: EngineContext = Depends(get_ctx),
):
    """
    Pending items in queue order, entries the engine cannot parse, per-mode running
    markers and lock holders. Never writes queue.json.
    """
    items, invalid = queue.peek()
    return QueueView(
        items=items,
        invalid=invalid,
        running={m.value: queue.running(m) for m in QueueMode},
        locks={m.value: ctx.lock(m).owner_pid() for m in QueueMode},
    )


@router.get("/tasks/{task_id}", response_model=TaskRecord)
def get_task(
    task_id: str,
    tasks: TaskRepo = Depends(get_tasks),
):
    try:
        return tasks.get(task_id)
    except NotFoundError as e:
        return _error_response(e, 404)


@router.get("/tasks", response_model=TaskListResponse)
def list_tasks(
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    tasks: TaskRepo = Depends(get_tasks),
):
    records, total = tasks.list_tasks(limit=limit, offset=offset)
    return TaskListResponse(tasks=records, total=total)


@router.get("/tasks/{task_id}/logs")
def get_task_logs(
    task_id: str,
    limit: int = Query(default=20, ge=1, le=1000),
    tasks: TaskRepo = Depends(get_tasks),
):
    """Names of the newest log artifacts, oldest first."""
    try:
        files = tasks.list_logs(task_id, limit=limit)
    except NotFoundError as e:
        return _error_response(e, 404)
    return {"taskId": task_id, "logsDir": str(tasks.log_dir(task_id)), "files": [p.name for p in files]}
