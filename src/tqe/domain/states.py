# src/tqe/domain/states.py
from __future__ import annotations

from enum import StrEnum


class TaskStatus(StrEnum):
    """
    Lifecycle states stored in task.json.

    Transitions driven by the stage handlers:
      - QUEUED -> EXECUTING -> DONE | FAILED | NEEDS_MANUAL
      - QUEUED -> CI_WAIT (ci-wait item, checks still running)
      - CI_WAIT -> QUEUED (checks settled, ci-complete item enqueued)
      - QUEUED -> DONE | NEEDS_MANUAL (ci-complete)

    PLANNED is written by producers only (created, or removed from the queue).
    """

    PLANNED = "planned"
    QUEUED = "queued"
    EXECUTING = "executing"
    CI_WAIT = "ci_wait"
    DONE = "done"
    FAILED = "failed"
    NEEDS_MANUAL = "needs_manual"


class ItemType(StrEnum):
    RUN = "run"
    CI_WAIT = "ci-wait"
    CI_COMPLETE = "ci-complete"


class QueueMode(StrEnum):
    """
    Operating modes partition the item-type space:
      - RUN: every item type except ci-wait
      - CI: ci-wait only
    """

    RUN = "run"
    CI = "ci"


class CiStatus(StrEnum):
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    UNKNOWN = "unknown"
