# src/tqe/engine/producer.py
"""
Producer-side commands: the ways work gets into the queue.

These run outside the worker (CLI, other tooling). They write the same documents the
worker reads, so they should not be run for a task the worker is currently dispatching.
"""
from __future__ import annotations

import re
import unicodedata
from typing import Iterable, Optional

from tqe.domain.errors import NotFoundError, ValidationError
from tqe.domain.models import CiWaitItem, ExternalRef, RunItem, TaskInput, TaskRecord, Ticket
from tqe.domain.states import CiStatus, TaskStatus
from tqe.logging import get_logger
from tqe.storage.common import file_stamp

from .context import EngineContext

_LOG = get_logger(__name__)


def create_task(
    ctx: EngineContext,
    task_id: str,
    *,
    task_type: str = "info",
    key: Optional[str] = None,
    text: Optional[str] = None,
    stage: Optional[str] = None,
) -> TaskRecord:
    record = TaskRecord(
        id=task_id,
        type=task_type,
        status=TaskStatus.PLANNED,
        stage=stage,
        ticket=Ticket(key=key) if key else None,
        input=TaskInput(text=text.strip()) if text else None,
    )
    ctx.tasks.create(record)
    _LOG.info("Created task %s (type=%s)", task_id, task_type)
    return record


def enqueue_tasks(ctx: EngineContext, task_ids: Iterable[str]) -> list[str]:
    """
    Appends a run item per task id and marks each task `queued`.

    Every id must refer to an existing task record; nothing is enqueued otherwise.
    """
    ids = [tid for tid in task_ids if tid]
    if not ids:
        raise ValidationError("no task ids given")
    missing = [tid for tid in ids if ctx.tasks.read(tid) is None]
    if missing:
        raise NotFoundError("One or more tasks do not exist", details={"missing": missing})

    ctx.queue.ensure_initialized()
    now = ctx.clock()
    for tid in ids:
        ctx.queue.enqueue(RunItem(task_id=tid, enqueued_at=now))
        ctx.tasks.set_status(tid, TaskStatus.QUEUED, by="enqueue")
    return ids


TEXT_TASK_PREFIX = "TXT"


def slugify(text: str, max_len: int = 40) -> str:
    ascii_text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_text.lower()).strip("-")[:max_len].strip("-")
    return slug or "task"


def split_free_text(text: str) -> list[str]:
    """`;` separates tasks: "fix login; update docs" is two tasks."""
    return [part.strip() for part in text.split(";") if part.strip()]


def create_text_task(ctx: EngineContext, text: str) -> TaskRecord:
    """
    Creates an `info` task whose description is `text`. Ids look like
    TXT-<timestamp>-<slug>; a numeric suffix keeps them unique.
    """
    base = f"{TEXT_TASK_PREFIX}-{file_stamp(ctx.clock())}-{slugify(text)}"
    task_id = base
    n = 1
    while ctx.store.exists(ctx.tasks.task_path(task_id)):
        n += 1
        task_id = f"{base}-{n}"
    return create_task(ctx, task_id, task_type="info", text=text, stage="initialized")


def enqueue_inputs(ctx: EngineContext, inputs: Iterable[str]) -> tuple[list[str], list[str]]:
    """
    CLI form of enqueue. Each input is split on `;`; a part naming an existing task is
    enqueued as is, anything else becomes a new free-text task first.

    Returns (enqueued ids, ids of tasks created on the way).
    """
    parts = [part for raw in inputs for part in split_free_text(raw)]
    if not parts:
        raise ValidationError("nothing to enqueue")

    ids: list[str] = []
    created: list[str] = []
    for part in parts:
        if ctx.tasks.read(part) is not None:
            ids.append(part)
            continue
        record = create_text_task(ctx, part)
        created.append(record.id)
        ids.append(record.id)
    return enqueue_tasks(ctx, ids), created


def dequeue_task(ctx: EngineContext, task_id: str) -> int:
    """
    Removes every pending item of a task. If anything was removed the task goes back to
    `planned`. Returns the number of removed items.
    """
    removed = ctx.queue.remove_task(task_id)
    if removed:
        ctx.tasks.set_status(task_id, TaskStatus.PLANNED, by="dequeue")
    return removed


def mark_ci_wait(ctx: EngineContext, task_id: str, pr_id: str, pr_url: Optional[str] = None) -> CiWaitItem:
    """
    Links a PR to the task, marks it `ci_wait` and enqueues an immediately due ci-wait item.
    """
    if not pr_id:
        raise ValidationError("PR id is required", details={"taskId": task_id})
    record = ctx.tasks.get(task_id)
    now = ctx.clock()
    ref = record.external_ref or ExternalRef()
    url = pr_url or ref.url or ctx.pr_url(pr_id)

    record.status = TaskStatus.CI_WAIT
    record.stage = "ci"
    record.external_ref = ref.model_copy(update={"id": pr_id, "url": url, "ci_status": CiStatus.RUNNING})
    ctx.tasks.write(task_id, record)
    ctx.tasks.append_run(task_id, "ci_wait", status=TaskStatus.CI_WAIT.value, pr_id=pr_id, pr_url=url)

    ctx.queue.ensure_initialized()
    item = CiWaitItem(task_id=task_id, pr_id=pr_id, pr_url=url, enqueued_at=now)
    ctx.queue.enqueue(item)
    return item
