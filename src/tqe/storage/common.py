"""Common helpers for the file-backed stores."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from tqe.domain.states import QueueMode

Clock = Callable[[], datetime]

QUEUE_FILE = "queue.json"


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=timezone.utc)


def file_stamp(ts: datetime) -> str:
    """Filesystem-safe timestamp, sortable, unique down to the microsecond."""

    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def state_path(queue_root: Path, mode: QueueMode) -> Path:
    # run keeps the historical names; other modes get their own marker.
    if mode == QueueMode.RUN:
        return queue_root / "state.json"
    return queue_root / f"state.{mode.value}.json"


def lock_path(queue_root: Path, mode: QueueMode) -> Path:
    if mode == QueueMode.RUN:
        return queue_root / "worker.lock"
    return queue_root / f"worker.{mode.value}.lock"
