# src/tqe/storage/queue.py
from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from tqe.domain.models import CiWaitItem, QueueDocument, QueueItem, WorkerState, parse_queue_item
from tqe.domain.states import ItemType, QueueMode
from tqe.logging import get_logger

from .common import QUEUE_FILE, Clock, file_stamp, state_path, utc_now
from .documents import DocumentStore

_LOG = get_logger(__name__)


def is_eligible(item: QueueItem, mode: QueueMode, now: datetime) -> bool:
    """
    Eligibility predicate for `take_next_eligible`.

    - ci-wait items are gated by nextCheckAt in every mode
    - mode run takes everything except ci-wait
    - mode ci takes ci-wait only
    """
    if isinstance(item, CiWaitItem) and not item.is_due(now):
        return False
    if mode == QueueMode.CI:
        return item.type == ItemType.CI_WAIT
    return item.type != ItemType.CI_WAIT


class QueueStore:
    """
    Ordered list of pending queue items plus the per-mode "running" marker.

    Important invariants:
    - An item is removed from the in-memory list only immediately before the atomic
      write of the shortened list, so a crash never half-removes an item.
    - A dequeue that finds nothing eligible does not write anything.
    - Processing is at-most-once: an item is gone as soon as it is dequeued, whatever
      the handler does afterwards.
    - An entry that fails validation (unknown type, bad shape) is never returned and
      never rewritten: it stays where it is until removed by hand or by remove_task.
      Only a document that is not a queue at all is quarantined.
    """

    def __init__(self, store: DocumentStore, queue_root: Path, *, clock: Clock = utc_now) -> None:
        self._store = store
        self.queue_root = queue_root
        self._clock = clock
        self._reported: set[str] = set()

    @property
    def queue_path(self) -> Path:
        return self.queue_root / QUEUE_FILE

    # -------------------------
    # Setup
    # -------------------------

    def ensure_initialized(self) -> None:
        """Creates the queue directory and default documents if absent. Idempotent."""
        self._store.ensure_dir(self.queue_root)
        if not self._store.exists(self.queue_path):
            self._save(QueueDocument())
        for mode in QueueMode:
            path = state_path(self.queue_root, mode)
            if not self._store.exists(path):
                self._store.write_document_atomic(path, WorkerState().to_document())

    # -------------------------
    # Queue operations
    # -------------------------

    def items(self) -> list[QueueItem]:
        """Valid pending items in queue order. Read-only, like peek()."""
        return self.peek()[0]

    def peek(self) -> tuple[list[QueueItem], list[Any]]:
        """
        Returns (valid items, raw entries that failed validation) without writing
        anything, even when queue.json is corrupt. This is the observers' read path.
        """
        doc = self._load(repair=False)
        parsed = self._parsed(doc)
        valid_idx = {idx for idx, _ in parsed}
        invalid = [raw for idx, raw in enumerate(doc.items) if idx not in valid_idx]
        return [item for _, item in parsed], invalid

    def take_next_eligible(self, mode: QueueMode, now: Optional[datetime] = None) -> Optional[QueueItem]:
        now = now or self._clock()
        doc = self._load()
        for idx, item in self._parsed(doc):
            if is_eligible(item, mode, now):
                del doc.items[idx]
                self._save(doc)
                return item
        return None

    def enqueue(self, item: QueueItem) -> None:
        if item.enqueued_at is None:
            item = item.model_copy(update={"enqueued_at": self._clock()})
        doc = self._load()
        doc.items.append(item.to_document())
        self._save(doc)
        _LOG.debug("Enqueued %s for task %s", item.type, item.task_id)

    def remove_task(self, task_id: str) -> int:
        """Drops every pending entry of a task, valid or not. Returns how many were removed."""
        doc = self._load()
        kept = [raw for raw in doc.items if _raw_task_id(raw) != task_id]
        removed = len(doc.items) - len(kept)
        if removed:
            doc.items = kept
            self._save(doc)
        return removed

    # -------------------------
    # Worker state
    # -------------------------

    def set_running(self, task_id: str, mode: QueueMode = QueueMode.RUN) -> None:
        state = WorkerState(running_task_id=task_id, since=self._clock())
        self._store.write_document_atomic(state_path(self.queue_root, mode), state.to_document())

    def clear_running(self, mode: QueueMode = QueueMode.RUN) -> None:
        self._store.write_document_atomic(state_path(self.queue_root, mode), WorkerState().to_document())

    def running(self, mode: QueueMode = QueueMode.RUN) -> WorkerState:
        raw = self._store.read_document(state_path(self.queue_root, mode))
        if raw is None:
            return WorkerState()
        try:
            return WorkerState.model_validate(raw)
        except PydanticValidationError:
            _LOG.warning("Ignoring malformed worker state for mode %s", mode.value)
            return WorkerState()

    # -------------------------
    # Helpers
    # -------------------------

    def _load(self, *, repair: bool = True) -> QueueDocument:
        raw = self._store.read_document(self.queue_path)
        if raw is None:
            if repair and self._store.exists(self.queue_path):
                self._quarantine("unparseable JSON")
            return QueueDocument()
        try:
            return QueueDocument.model_validate(raw)
        except PydanticValidationError as e:
            if repair:
                self._quarantine(f"{e.error_count()} validation error(s)")
            return QueueDocument()

    def _parsed(self, doc: QueueDocument) -> list[tuple[int, QueueItem]]:
        """
        Valid entries with their positions in doc.items. Invalid entries are skipped
        and left in place; each distinct one is reported once per store.
        """
        out: list[tuple[int, QueueItem]] = []
        for idx, raw in enumerate(doc.items):
            try:
                out.append((idx, parse_queue_item(raw)))
            except PydanticValidationError as e:
                self._report_invalid(raw, e)
        return out

    def _report_invalid(self, raw: Any, error: PydanticValidationError) -> None:
        key = json.dumps(raw, sort_keys=True, default=str)
        if key in self._reported:
            return
        self._reported.add(key)
        _LOG.warning(
            "Skipping queue entry for task %s (%d validation error(s)); it stays in %s: %s",
            _raw_task_id(raw),
            error.error_count(),
            self.queue_path,
            key,
        )

    def _save(self, doc: QueueDocument) -> None:
        # Raw entries are written back as read.
        self._store.write_document_atomic(self.queue_path, {"items": doc.items})

    def _quarantine(self, reason: str) -> None:
        moved = self._store.quarantine(self.queue_path, file_stamp(self._clock()))
        if moved is None:
            return
        _LOG.error(
            "Queue document %s is corrupt (%s); moved to %s and starting from an empty queue. "
            "Pending items in that file were not processed.",
            self.queue_path,
            reason,
            moved,
        )
        self._save(QueueDocument())


def _raw_task_id(raw: Any) -> Optional[str]:
    if isinstance(raw, dict) and raw.get("taskId") is not None:
        return str(raw["taskId"])
    return None
