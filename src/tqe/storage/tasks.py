# src/tqe/storage/tasks.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from tqe.domain.errors import ConflictError, NotFoundError
from tqe.domain.models import RunEvent, TaskRecord
from tqe.domain.states import TaskStatus
from tqe.logging import get_logger

from .common import Clock, file_stamp, utc_now
from .documents import DocumentStore

_LOG = get_logger(__name__)

TASK_FILE = "task.json"
LOG_DIR = "logs"


class TaskRepo:
    """
    Per-task documents under <tasks-root>/<task-id>/.

    Important invariants:
    - `runs` is append-only: events are never edited, reordered or dropped.
    - Event timestamps never go backwards within one record (a wall clock that moved
      back is clamped to the previous event's timestamp).
    - All mutations are read-modify-write; they rely on the worker lock for exclusivity
      (one writer per task at a time).
    """

    def __init__(self, store: DocumentStore, tasks_root: Path, *, clock: Clock = utc_now) -> None:
        self._store = store
        self.tasks_root = tasks_root
        self._clock = clock

    def task_dir(self, task_id: str) -> Path:
        return self.tasks_root / task_id

    def task_path(self, task_id: str) -> Path:
        return self.task_dir(task_id) / TASK_FILE

    def log_dir(self, task_id: str) -> Path:
        return self.task_dir(task_id) / LOG_DIR

    # -------------------------
    # Read operations
    # -------------------------

    def read(self, task_id: str) -> Optional[TaskRecord]:
        raw = self._store.read_document(self.task_path(task_id))
        if raw is None:
            return None
        try:
            return TaskRecord.model_validate(raw)
        except PydanticValidationError as e:
            _LOG.warning("Task record %s is invalid (%d error(s)); treating as absent", task_id, e.error_count())
            return None

    def get(self, task_id: str) -> TaskRecord:
        record = self.read(task_id)
        if record is None:
            raise NotFoundError(f"Task not found: {task_id}", details={"id": task_id})
        return record

    def list_tasks(self, limit: Optional[int] = None, offset: int = 0) -> tuple[list[TaskRecord], int]:
        records: list[TaskRecord] = []
        for d in self._store.list_dirs(self.tasks_root):
            record = self.read(d.name)
            if record is not None:
                records.append(record)
        total = len(records)
        end = None if limit is None else offset + limit
        return records[offset:end], total

    def list_logs(self, task_id: str, limit: int = 20) -> list[Path]:
        """
        The most recent `limit` log artifacts of a task, oldest first (names sort by time).
        Raises NotFoundError when the task has no logs directory.
        """
        logs = self.log_dir(task_id)
        if not logs.is_dir():
            raise NotFoundError(f"No logs dir: {logs}", details={"id": task_id, "logsDir": str(logs)})
        files = self._store.list_files(logs)
        return files[-limit:] if limit > 0 else []

    # -------------------------
    # Write operations
    # -------------------------

    def create(self, record: TaskRecord) -> TaskRecord:
        if self._store.exists(self.task_path(record.id)):
            raise ConflictError(f"Task already exists: {record.id}", details={"id": record.id})
        self._store.ensure_dir(self.log_dir(record.id))
        self.write(record.id, record)
        return record

    def write(self, task_id: str, record: TaskRecord) -> None:
        """Full replace, atomic."""
        self._store.write_document_atomic(self.task_path(task_id), record.to_document())

    def append_run(self, task_id: str, event: str, **meta: Any) -> Optional[TaskRecord]:
        """
        Appends one run-event. Returns the updated record, or None if the task does not exist.
        """
        record = self.read(task_id)
        if record is None:
            _LOG.warning("append_run(%s): task %s not found", event, task_id)
            return None
        record.runs.append(self._event(record, event, **meta))
        self.write(task_id, record)
        return record

    def set_status(self, task_id: str, status: TaskStatus, **meta: Any) -> Optional[TaskRecord]:
        """
        Sets `status` and appends a `status` run-event carrying `meta` for traceability.
        Returns the updated record, or None if the task does not exist.
        """
        record = self.read(task_id)
        if record is None:
            _LOG.warning("set_status(%s): task %s not found", status, task_id)
            return None
        record.status = status
        record.runs.append(self._event(record, "status", status=status.value, **meta))
        self.write(task_id, record)
        _LOG.info("Task %s -> %s", task_id, status.value)
        return record

    def write_log(
        self,
        task_id: str,
        *,
        ok: bool,
        title: str,
        stdout: str = "",
        stderr: str = "",
    ) -> Path:
        """
        Writes a free-text log artifact: logs/<timestamp>.queue.<ok|fail>.log
        """
        now = self._clock()
        path = self.log_dir(task_id) / f"{file_stamp(now)}.queue.{'ok' if ok else 'fail'}.log"
        header = "\n".join([f"title: {title or 'task'}", f"ok: {str(ok).lower()}", f"time: {now.isoformat()}", ""])
        body = header + "\n" + (stdout or "")
        if stderr:
            body += f"\n\n[stderr]\n{stderr}"
        self._store.write_text_atomic(path, body)
        return path

    # -------------------------
    # Helpers
    # -------------------------

    def _event(self, record: TaskRecord, event: str, **meta: Any) -> RunEvent:
        ts = self._clock()
        if record.runs and record.runs[-1].timestamp > ts:
            ts = record.runs[-1].timestamp
        if isinstance(meta.get("log_path"), Path):
            meta["log_path"] = str(meta["log_path"])
        return RunEvent(timestamp=ts, event=event, **meta)
