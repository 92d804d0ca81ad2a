# src/tqe/engine/handlers.py
"""
Stage handlers, one per queue item type.

Each handler receives the engine context, the dequeued item and the task record as
read at dispatch time. It records its outcome on the task (status + run-events + log
artifact) and may enqueue a follow-up item. Status transitions:

    queued -> executing -> done | failed | needs_manual        (run)
    queued|ci_wait -> ci_wait + new ci-wait item              (ci-wait, checks running)
    ci_wait -> queued + ci-complete item                       (ci-wait, checks settled)
    queued -> done | needs_manual                              (ci-complete)
"""
from __future__ import annotations

import math
from datetime import timedelta
from typing import Any, Callable, Mapping, Optional

from tqe.domain.models import (
    CiCompleteItem,
    CiWaitItem,
    ExternalRef,
    QueueItem,
    RunItem,
    TaskRecord,
)
from tqe.domain.states import CiStatus, ItemType, TaskStatus
from tqe.logging import get_logger

from .context import EngineContext
from .runner import parse_json_output

_LOG = get_logger(__name__)

Handler = Callable[[EngineContext, Any, TaskRecord], None]

MANUAL_NOTE = "\n".join(
    [
        "This task type has no automatic executor.",
        "Follow the task's plan manually, or configure an executor for this task type.",
        "",
    ]
)


# -------------------------
# CI classification
# -------------------------


def _count(checks: Mapping[str, Any], *keys: str) -> int:
    for key in keys:
        value = checks.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)) and math.isfinite(value):
            return int(value)
    return 0


def classify_checks(checks: Optional[Mapping[str, Any]]) -> CiStatus:
    """
    failed  - at least one check failed
    passed  - checks were reported (total > 0), all of them passed, none failed
    running - anything else, including "no checks reported yet" (total == 0)
    """
    if not checks:
        return CiStatus.RUNNING
    failed = _count(checks, "failed", "failedCount")
    passed = _count(checks, "passed", "passedCount")
    total = _count(checks, "total")
    if failed > 0:
        return CiStatus.FAILED
    if total > 0 and passed >= total:
        return CiStatus.PASSED
    return CiStatus.RUNNING


def extract_checks(output: Any) -> Optional[dict[str, Any]]:
    """Pulls the check counters out of the ci-status command's JSON output."""
    if not isinstance(output, Mapping):
        return None
    checks = output.get("checks")
    if isinstance(checks, Mapping):
        return dict(checks)
    return None


# -------------------------
# Handlers
# -------------------------


def handle_run(ctx: EngineContext, item: RunItem, record: TaskRecord) -> None:
    task_id = record.id
    ctx.tasks.set_status(task_id, TaskStatus.EXECUTING, by="queue")
    ctx.tasks.append_run(task_id, "queue_start")

    if record.type not in ctx.settings.automatable_types:
        # Some task types have no safe automatic action.
        log_path = ctx.tasks.write_log(task_id, ok=True, title=f"{record.type}:needs_manual", stdout=MANUAL_NOTE)
        ctx.tasks.append_run(task_id, "queue_done", ok=True, log_path=log_path, note="needs_manual")
        ctx.tasks.set_status(task_id, TaskStatus.NEEDS_MANUAL, by="queue", log_path=log_path)
        return

    result = ctx.runner.run("generate", [record.run_key])
    log_path = ctx.tasks.write_log(
        task_id,
        ok=result.ok,
        title=f"{record.type}:{record.run_key}",
        stdout=result.stdout,
        stderr=result.stderr,
    )
    ctx.tasks.append_run(task_id, "queue_done", ok=result.ok, log_path=log_path)
    ctx.tasks.set_status(
        task_id,
        TaskStatus.DONE if result.ok else TaskStatus.FAILED,
        by="queue",
        log_path=log_path,
    )


def handle_ci_wait(ctx: EngineContext, item: CiWaitItem, record: TaskRecord) -> None:
    task_id = record.id
    ref = record.external_ref or ExternalRef()
    pr_id = item.pr_id or ref.id
    pr_url = item.pr_url or ref.url or ctx.pr_url(pr_id)

    if not pr_id:
        log_path = ctx.tasks.write_log(
            task_id, ok=False, title="ci-missing", stdout="PR id is missing for CI wait item"
        )
        ctx.tasks.append_run(task_id, "ci_missing", ok=False, log_path=log_path)
        ctx.tasks.set_status(task_id, TaskStatus.NEEDS_MANUAL, by="ci", reason="pr_missing", log_path=log_path)
        return

    result = ctx.runner.run("ci-status", [pr_id])
    output = None
    if result.ok:
        output = result.parsed if result.parsed is not None else parse_json_output(result.stdout)
    checks = extract_checks(output)
    ci_status = classify_checks(checks)
    now = ctx.clock()

    record.external_ref = ref.model_copy(
        update={"id": pr_id, "url": pr_url, "ci_status": ci_status, "checks": checks, "last_checked_at": now}
    )
    ctx.tasks.write(task_id, record)

    if ci_status == CiStatus.RUNNING:
        next_check_at = now + timedelta(milliseconds=ctx.settings.ci_recheck_ms)
        ctx.tasks.append_run(task_id, "ci_wait", status=TaskStatus.CI_WAIT.value, pr_id=pr_id, pr_url=pr_url)
        ctx.tasks.set_status(task_id, TaskStatus.CI_WAIT, by="ci", pr_id=pr_id, pr_url=pr_url)
        ctx.queue.enqueue(
            CiWaitItem(task_id=task_id, pr_id=pr_id, pr_url=pr_url, next_check_at=next_check_at)
        )
        _LOG.info("Task %s: CI for PR %s still running; next check at %s", task_id, pr_id, next_check_at.isoformat())
        return

    ok = ci_status == CiStatus.PASSED
    counts = checks or {}
    summary = (
        f"CI for PR #{pr_id}: {ci_status.value}. "
        f"passed={_count(counts, 'passed', 'passedCount')}/{_count(counts, 'total')} "
        f"failed={_count(counts, 'failed', 'failedCount')}"
    )
    log_path = ctx.tasks.write_log(task_id, ok=ok, title="ci-status", stdout=summary, stderr=result.stderr)
    ctx.tasks.append_run(
        task_id, "ci_done", ok=ok, pr_id=pr_id, pr_url=pr_url, ci_status=ci_status.value, log_path=log_path
    )
    ctx.tasks.set_status(
        task_id, TaskStatus.QUEUED, by="ci", pr_id=pr_id, pr_url=pr_url, ci_status=ci_status.value, log_path=log_path
    )
    ctx.queue.enqueue(CiCompleteItem(task_id=task_id, pr_id=pr_id, pr_url=pr_url, ci_status=ci_status))


def handle_ci_complete(ctx: EngineContext, item: CiCompleteItem, record: TaskRecord) -> None:
    task_id = record.id
    ref = record.external_ref or ExternalRef()
    ci_status = item.ci_status or ref.ci_status or CiStatus.UNKNOWN
    pr_id = item.pr_id or ref.id
    pr_url = item.pr_url or ref.url or ctx.pr_url(pr_id)

    ok = ci_status == CiStatus.PASSED
    summary = f"CI {ci_status.value} for PR {pr_id or '?'} ({pr_url or 'n/a'})"
    log_path = ctx.tasks.write_log(task_id, ok=ok, title="ci-result", stdout=summary)
    ctx.tasks.append_run(
        task_id, "ci_result", ok=ok, pr_id=pr_id, pr_url=pr_url, ci_status=ci_status.value, log_path=log_path
    )
    ctx.tasks.set_status(
        task_id,
        TaskStatus.DONE if ok else TaskStatus.NEEDS_MANUAL,
        by="ci",
        pr_id=pr_id,
        pr_url=pr_url,
        ci_status=ci_status.value,
        log_path=log_path,
    )


def default_handlers() -> dict[str, Handler]:
    return {
        ItemType.RUN.value: handle_run,
        ItemType.CI_WAIT.value: handle_ci_wait,
        ItemType.CI_COMPLETE.value: handle_ci_complete,
    }


def handler_for(handlers: Mapping[str, Handler], item: QueueItem) -> Optional[Handler]:
    return handlers.get(item.type)
