"""CLI entrypoint for the task queue engine."""

from __future__ import annotations

import json
from typing import Any, Optional

import click

from tqe.config import Settings, load_settings
from tqe.domain.errors import TQEBaseError
from tqe.domain.states import QueueMode
from tqe.engine import EngineContext, WorkerLoop
from tqe.engine.producer import create_task, dequeue_task, enqueue_inputs, mark_ci_wait
from tqe.engine.worker import stop_on_signals
from tqe.logging import configure_logging, get_logger

_LOG = get_logger(__name__)


def _settings(mode: Optional[str] = None) -> Settings:
    try:
        settings = load_settings(mode)
    except ValueError as e:
        raise click.ClickException(f"invalid configuration: {e}") from e
    configure_logging(settings.log_level)
    return settings


def _context(mode: Optional[str] = None) -> EngineContext:
    return EngineContext.from_settings(_settings(mode))


def _emit(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _fail(err: TQEBaseError) -> click.ClickException:
    detail = f" {json.dumps(err.details)}" if err.details else ""
    return click.ClickException(f"{err.code}: {err.message}{detail}")


@click.group()
@click.version_option(version="0.1.0", prog_name="tqe")
def cli() -> None:
    """Durable single-host task queue: workers, producers and status."""


@cli.command()
@click.option(
    "--mode",
    type=click.Choice([m.value for m in QueueMode]),
    default=None,
    help="Operating mode (default: TQE_MODE or run).",
)
@click.option("--drain", is_flag=True, help="Exit once no eligible item is left instead of polling forever.")
def worker(mode: Optional[str], drain: bool) -> None:
    """Run the queue worker for one operating mode.

    Exits 0 when another worker of the same mode already holds the lock.
    """
    ctx = _context(mode)
    loop = WorkerLoop(ctx, QueueMode(ctx.settings.mode))
    try:
        with stop_on_signals(loop):
            summary = loop.run(drain=drain)
    except OSError as e:
        _LOG.exception("Worker aborted on a storage error.")
        raise click.ClickException(f"worker aborted: {e}") from e
    _emit(summary.as_dict())


@cli.command()
def init() -> None:
    """Create the queue directory and default documents."""
    ctx = _context()
    try:
        ctx.queue.ensure_initialized()
    except OSError as e:
        raise click.ClickException(f"cannot initialize queue at {ctx.settings.queue_root}: {e}") from e
    _emit({"ok": True, "queueRoot": str(ctx.settings.queue_root), "tasksRoot": str(ctx.settings.tasks_root)})


@cli.command()
@click.argument("task_id")
@click.option("--type", "task_type", default="info", show_default=True, help="Task type, e.g. tracker or info.")
@click.option("--key", default=None, help="Ticket key passed to the generation command.")
@click.option("--text", default=None, help="Free-text description.")
@click.option("--stage", default=None, help="Initial workflow stage label.")
def create(task_id: str, task_type: str, key: Optional[str], text: Optional[str], stage: Optional[str]) -> None:
    """Create a task record (status planned)."""
    ctx = _context()
    try:
        record = create_task(ctx, task_id, task_type=task_type, key=key, text=text, stage=stage)
    except TQEBaseError as e:
        raise _fail(e) from e
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="TASK_ID") from e
    _emit(record.to_document())


@cli.command()
@click.argument("inputs", nargs=-1, required=True)
def enqueue(inputs: tuple[str, ...]) -> None:
    """Queue run items.

    Each INPUT is an existing task id or free text; free text becomes a new `info` task.
    Quote free text, and separate several tasks with `;`:

        tqe enqueue T1 "fix the login page; update the docs"
    """
    ctx = _context()
    try:
        added, created = enqueue_inputs(ctx, inputs)
    except TQEBaseError as e:
        raise _fail(e) from e
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="INPUTS") from e
    _emit({"enqueued": added, "created": created, "count": len(added)})


@cli.command()
@click.argument("task_id")
def dequeue(task_id: str) -> None:
    """Remove all pending items of a task (exit 1 if there were none)."""
    ctx = _context()
    removed = dequeue_task(ctx, task_id)
    _emit({"ok": bool(removed), "taskId": task_id, "removed": removed})
    if not removed:
        raise SystemExit(1)


@cli.command("ci-wait")
@click.argument("task_id")
@click.argument("pr_id")
@click.argument("pr_url", required=False)
def ci_wait(task_id: str, pr_id: str, pr_url: Optional[str]) -> None:
    """Mark a task as waiting for CI on a PR and queue the first check."""
    ctx = _context()
    try:
        item = mark_ci_wait(ctx, task_id, pr_id, pr_url)
    except TQEBaseError as e:
        raise _fail(e) from e
    _emit({"ok": True, "taskId": task_id, "prId": item.pr_id, "prUrl": item.pr_url})


@cli.command()
@click.argument("task_id", required=False)
def status(task_id: Optional[str]) -> None:
    """Print one task record, or all of them."""
    ctx = _context()
    if task_id is None:
        records, total = ctx.tasks.list_tasks()
        _emit({"tasks": [r.to_document() for r in records], "total": total})
        return
    try:
        record = ctx.tasks.get(task_id)
    except TQEBaseError as e:
        raise _fail(e) from e
    _emit(record.to_document())


@cli.command()
@click.argument("task_id")
@click.option("--limit", default=20, show_default=True, type=click.IntRange(min=1), help="How many of the newest logs to list.")
def logs(task_id: str, limit: int) -> None:
    """List the newest log artifacts of a task (exit 1 if it has no logs dir)."""
    ctx = _context()
    try:
        files = ctx.tasks.list_logs(task_id, limit=limit)
    except TQEBaseError as e:
        raise _fail(e) from e
    _emit({"taskId": task_id, "logsDir": str(ctx.tasks.log_dir(task_id)), "files": [p.name for p in files]})


@cli.command("queue")
def queue_status() -> None:
    """Print pending items, unparseable entries, running markers and lock holders."""
    ctx = _context()
    items, invalid = ctx.queue.peek()
    _emit(
        {
            "count": len(items),
            "items": [it.to_document() for it in items],
            "invalid": invalid,
            "running": {m.value: ctx.queue.running(m).to_document() for m in QueueMode},
            "locks": {m.value: ctx.lock(m).owner_pid() for m in QueueMode},
        }
    )


@cli.command()
def serve() -> None:
    """Serve the read-only status API with uvicorn."""
    settings = _settings()

    # Import here so config/logging are set before app import side-effects.
    import uvicorn

    _LOG.info("Starting status API on %s:%d", settings.host, settings.port)
    uvicorn.run(
        "tqe.api.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        reload=False,
    )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
