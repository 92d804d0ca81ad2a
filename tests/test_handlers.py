# tests/test_handlers.py
from datetime import timedelta
from pathlib import Path

import pytest

from conftest import ci_result
from tqe.domain.models import CiCompleteItem, CiWaitItem, ExternalRef, RunItem
from tqe.domain.states import CiStatus, TaskStatus
from tqe.engine import EngineContext, RunResult
from tqe.engine.handlers import classify_checks, handle_ci_complete, handle_ci_wait, handle_run
from tqe.engine.producer import create_task


def _events(ctx: EngineContext, task_id: str) -> list[str]:
    return [r.event for r in ctx.tasks.get(task_id).runs]


@pytest.mark.parametrize(
    "checks, expected",
    [
        ({"total": 0, "failed": 0, "passed": 0}, CiStatus.RUNNING),
        ({"total": 3, "failed": 0, "passed": 3}, CiStatus.PASSED),
        ({"total": 3, "failed": 1, "passed": 2}, CiStatus.FAILED),
        ({"total": 3, "failed": 0, "passed": 2}, CiStatus.RUNNING),
        ({"total": 2, "failedCount": 0, "passedCount": 2}, CiStatus.PASSED),
        ({"total": 0, "failedCount": 1}, CiStatus.FAILED),
        ({"total": "3", "passed": "3"}, CiStatus.RUNNING),
        ({}, CiStatus.RUNNING),
        (None, CiStatus.RUNNING),
    ],
)
def test_classify_checks(checks, expected):
    assert classify_checks(checks) == expected


# -------------------------
# run
# -------------------------


def test_run_automatable_task_success(ctx: EngineContext, make_task, runner):
    make_task("T1", "tracker")
    runner.set("generate", RunResult(0, stdout="plan generated"))

    handle_run(ctx, RunItem(task_id="T1"), ctx.tasks.get("T1"))

    record = ctx.tasks.get("T1")
    assert record.status == TaskStatus.DONE
    assert runner.calls == [("generate", ["T1"])]
    events = _events(ctx, "T1")
    assert events.count("queue_start") == 1
    done = [r for r in record.runs if r.event == "queue_done"]
    assert len(done) == 1 and done[0].ok is True
    assert "plan generated" in Path(done[0].log_path).read_text(encoding="utf-8")
    assert [r.status for r in record.runs if r.event == "status"] == ["executing", "done"]


def test_run_uses_ticket_key_when_present(ctx: EngineContext, make_task, runner):
    make_task("T1", "tracker", key="PROJ-7")
    runner.set("generate", RunResult(0))

    handle_run(ctx, RunItem(task_id="T1"), ctx.tasks.get("T1"))

    assert runner.calls == [("generate", ["PROJ-7"])]


def test_run_nonzero_exit_marks_failed(ctx: EngineContext, make_task, runner):
    make_task("T1", "tracker")
    runner.set("generate", RunResult(2, stdout="", stderr="docker exploded"))

    handle_run(ctx, RunItem(task_id="T1"), ctx.tasks.get("T1"))

    record = ctx.tasks.get("T1")
    assert record.status == TaskStatus.FAILED
    done = [r for r in record.runs if r.event == "queue_done"][0]
    assert done.ok is False
    assert done.log_path.endswith(".queue.fail.log")
    assert "docker exploded" in Path(done.log_path).read_text(encoding="utf-8")


def test_run_non_automatable_task_needs_manual(ctx: EngineContext, make_task, runner):
    make_task("INFO-1", "info")

    handle_run(ctx, RunItem(task_id="INFO-1"), ctx.tasks.get("INFO-1"))

    record = ctx.tasks.get("INFO-1")
    assert record.status == TaskStatus.NEEDS_MANUAL
    assert runner.calls == []
    done = [r for r in record.runs if r.event == "queue_done"][0]
    assert done.ok is True and done.note == "needs_manual"
    assert "no automatic executor" in Path(done.log_path).read_text(encoding="utf-8")


# -------------------------
# ci-wait
# -------------------------


def test_ci_wait_checks_still_running_requeues_with_delay(ctx: EngineContext, make_task, runner, clock):
    make_task("T2")
    runner.set("ci-status", ci_result(total=2, passed=0, failed=0))
    started = clock.now

    handle_ci_wait(ctx, CiWaitItem(task_id="T2", pr_id="42"), ctx.tasks.get("T2"))

    record = ctx.tasks.get("T2")
    assert record.status == TaskStatus.CI_WAIT
    assert record.external_ref is not None
    assert record.external_ref.id == "42"
    assert record.external_ref.ci_status == CiStatus.RUNNING
    assert record.external_ref.checks == {"total": 2, "passed": 0, "failed": 0}

    (follow_up,) = ctx.queue.items()
    assert isinstance(follow_up, CiWaitItem)
    assert follow_up.pr_id == "42"
    assert follow_up.next_check_at is not None
    assert follow_up.next_check_at >= started + timedelta(seconds=30)
    assert runner.calls == [("ci-status", ["42"])]


def test_ci_wait_runner_failure_counts_as_running(ctx: EngineContext, make_task, runner):
    make_task("T2")
    runner.set("ci-status", RunResult(1, stdout='{"checks": {"total": 1, "passed": 1}}', stderr="auth error"))

    handle_ci_wait(ctx, CiWaitItem(task_id="T2", pr_id="42"), ctx.tasks.get("T2"))

    assert ctx.tasks.get("T2").status == TaskStatus.CI_WAIT
    assert [it.type for it in ctx.queue.items()] == ["ci-wait"]


def test_ci_wait_without_pr_id_needs_manual(ctx: EngineContext, make_task, runner):
    make_task("T3")

    handle_ci_wait(ctx, CiWaitItem(task_id="T3"), ctx.tasks.get("T3"))

    record = ctx.tasks.get("T3")
    assert record.status == TaskStatus.NEEDS_MANUAL
    assert "ci_missing" in _events(ctx, "T3")
    assert record.runs[-1].reason == "pr_missing"
    assert runner.calls == []
    assert ctx.queue.items() == []


def test_ci_wait_falls_back_to_linked_pr(ctx: EngineContext, make_task, runner):
    record = make_task("T4")
    record.external_ref = ExternalRef(id="77", url="https://review.example/77")
    ctx.tasks.write("T4", record)
    runner.set("ci-status", ci_result(total=1, passed=1, failed=0))

    handle_ci_wait(ctx, CiWaitItem(task_id="T4"), ctx.tasks.get("T4"))

    assert runner.calls == [("ci-status", ["77"])]
    (item,) = ctx.queue.items()
    assert isinstance(item, CiCompleteItem)
    assert item.pr_url == "https://review.example/77"


def test_ci_wait_settled_hands_over_to_ci_complete(ctx: EngineContext, make_task, runner):
    make_task("T5")
    runner.set("ci-status", ci_result(total=3, passed=3, failed=0))

    handle_ci_wait(ctx, CiWaitItem(task_id="T5", pr_id="9"), ctx.tasks.get("T5"))

    record = ctx.tasks.get("T5")
    assert record.status == TaskStatus.QUEUED
    assert record.external_ref is not None and record.external_ref.ci_status == CiStatus.PASSED
    assert record.external_ref.last_checked_at is not None
    ci_done = [r for r in record.runs if r.event == "ci_done"][0]
    assert ci_done.ok is True and ci_done.ci_status == "passed"
    (item,) = ctx.queue.items()
    assert isinstance(item, CiCompleteItem)
    assert item.ci_status == CiStatus.PASSED and item.pr_id == "9"


def test_ci_wait_failed_checks(ctx: EngineContext, make_task, runner):
    make_task("T6")
    runner.set("ci-status", ci_result(total=3, passed=2, failed=1))

    handle_ci_wait(ctx, CiWaitItem(task_id="T6", pr_id="9"), ctx.tasks.get("T6"))

    (item,) = ctx.queue.items()
    assert isinstance(item, CiCompleteItem) and item.ci_status == CiStatus.FAILED
    assert ctx.tasks.get("T6").status == TaskStatus.QUEUED


def test_pr_url_built_from_template(env, runner, clock):
    settings = env(TQE_PR_URL_TEMPLATE="https://review.example/pr/{id}")
    ctx = EngineContext.from_settings(settings, runner=runner, clock=clock)
    ctx.queue.ensure_initialized()

    create_task(ctx, "T7")
    runner.set("ci-status", ci_result(total=0, passed=0, failed=0))

    handle_ci_wait(ctx, CiWaitItem(task_id="T7", pr_id="5"), ctx.tasks.get("T7"))

    assert ctx.tasks.get("T7").external_ref.url == "https://review.example/pr/5"
    assert ctx.queue.items()[0].pr_url == "https://review.example/pr/5"


# -------------------------
# ci-complete
# -------------------------


@pytest.mark.parametrize(
    "ci_status, expected",
    [
        (CiStatus.PASSED, TaskStatus.DONE),
        (CiStatus.FAILED, TaskStatus.NEEDS_MANUAL),
        (CiStatus.UNKNOWN, TaskStatus.NEEDS_MANUAL),
    ],
)
def test_ci_complete_final_status(ctx: EngineContext, make_task, ci_status, expected):
    make_task("T8")

    handle_ci_complete(ctx, CiCompleteItem(task_id="T8", pr_id="3", ci_status=ci_status), ctx.tasks.get("T8"))

    record = ctx.tasks.get("T8")
    assert record.status == expected
    result = [r for r in record.runs if r.event == "ci_result"][0]
    assert result.ok is (ci_status == CiStatus.PASSED)
    assert f"CI {ci_status.value} for PR 3" in Path(result.log_path).read_text(encoding="utf-8")


def test_ci_complete_without_classification_uses_linked_pr(ctx: EngineContext, make_task):
    record = make_task("T9")
    record.external_ref = ExternalRef(id="4", ci_status=CiStatus.PASSED)
    ctx.tasks.write("T9", record)

    handle_ci_complete(ctx, CiCompleteItem(task_id="T9"), ctx.tasks.get("T9"))

    assert ctx.tasks.get("T9").status == TaskStatus.DONE
