# tests/test_producer.py
import pytest

from tqe.domain.errors import NotFoundError, ValidationError
from tqe.domain.states import TaskStatus
from tqe.engine import EngineContext
from tqe.engine.producer import (
    create_text_task,
    dequeue_task,
    enqueue_inputs,
    enqueue_tasks,
    slugify,
    split_free_text,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Fix the Login page!", "fix-the-login-page"),
        ("  Café déjà vu  ", "cafe-deja-vu"),
        ("???", "task"),
        ("x" * 60, "x" * 40),
    ],
)
def test_slugify(text, expected):
    assert slugify(text) == expected


def test_split_free_text():
    assert split_free_text("do A; do B;; ; do C ") == ["do A", "do B", "do C"]


def test_enqueue_tasks_requires_existing_tasks(ctx: EngineContext, make_task):
    make_task("T1")

    with pytest.raises(NotFoundError) as exc:
        enqueue_tasks(ctx, ["T1", "ghost"])

    assert exc.value.details["missing"] == ["ghost"]
    assert ctx.queue.items() == []


def test_enqueue_inputs_mixes_ids_and_free_text(ctx: EngineContext, make_task):
    make_task("T1")

    enqueued, created = enqueue_inputs(ctx, ["T1; write release notes"])

    assert len(created) == 1
    assert enqueued == ["T1", created[0]]
    record = ctx.tasks.get(created[0])
    assert record.type == "info"
    assert record.stage == "initialized"
    assert record.status == TaskStatus.QUEUED
    assert record.input is not None and record.input.text == "write release notes"


def test_enqueue_inputs_rejects_blank_input(ctx: EngineContext):
    with pytest.raises(ValidationError):
        enqueue_inputs(ctx, [" ", ";"])


def test_text_task_ids_stay_unique(ctx: EngineContext, clock):
    first = create_text_task(ctx, "same text")
    clock.now = clock.now - clock.step
    second = create_text_task(ctx, "same text")

    assert first.id != second.id
    assert second.id == f"{first.id}-2"


def test_dequeue_task_resets_status(ctx: EngineContext, make_task):
    make_task("T1")
    enqueue_tasks(ctx, ["T1"])

    assert dequeue_task(ctx, "T1") == 1
    assert ctx.tasks.get("T1").status == TaskStatus.PLANNED
    assert dequeue_task(ctx, "T1") == 0
