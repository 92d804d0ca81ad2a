from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
)
from pydantic.alias_generators import to_camel

from .states import CiStatus, TaskStatus


def _as_utc(value: datetime) -> datetime:
    # Documents written by other tools may carry naive timestamps.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _check_task_id(value: str) -> str:
    # Task ids double as directory names under the tasks root.
    if value in (".", "..") or "/" in value or "\\" in value:
        raise ValueError(f"invalid task id: {value!r}")
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]
TaskId = Annotated[str, Field(min_length=1, max_length=256), AfterValidator(_check_task_id)]


class _Document(BaseModel):
    """
    Base for everything persisted as JSON: camelCase on disk, snake_case in Python.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# -------------------------
# Task record
# -------------------------


class RunEvent(_Document):
    """
    One entry of the append-only audit trail in task.json.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    timestamp: UtcDatetime = Field(validation_alias=AliasChoices("timestamp", "ts"))
    event: str
    status: Optional[str] = None
    ok: Optional[bool] = None
    log_path: Optional[str] = None
    note: Optional[str] = None

    by: Optional[str] = None
    reason: Optional[str] = None
    pr_id: Optional[str] = None
    pr_url: Optional[str] = None
    ci_status: Optional[str] = None


class ExternalRef(_Document):
    """
    Linked pull/change request, maintained by the CI handlers.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: Optional[str] = None
    url: Optional[str] = None
    ci_status: Optional[CiStatus] = None
    checks: Optional[dict[str, Any]] = None
    last_checked_at: Optional[UtcDatetime] = None


class Ticket(_Document):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    key: Optional[str] = None
    summary: Optional[str] = None


class TaskInput(_Document):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    text: Optional[str] = None


class TaskRecord(_Document):
    """
    The durable per-task document (<tasks-root>/<id>/task.json).

    Unknown keys written by other tooling are kept and written back untouched.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: TaskId
    type: str = "info"
    status: TaskStatus = TaskStatus.PLANNED
    stage: Optional[str] = None

    ticket: Optional[Ticket] = None
    input: Optional[TaskInput] = None
    external_ref: Optional[ExternalRef] = None

    runs: list[RunEvent] = Field(default_factory=list)

    @property
    def run_key(self) -> str:
        """Argument handed to the generation command: ticket key, else the task id."""
        if self.ticket is not None and self.ticket.key:
            return self.ticket.key
        return self.id


# -------------------------
# Queue
# -------------------------


class _QueueItemBase(_Document):
    # Producers written in other languages may store ids as JSON numbers.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)

    task_id: TaskId
    enqueued_at: Optional[UtcDatetime] = None


class RunItem(_QueueItemBase):
    type: Literal["run"] = "run"


class CiWaitItem(_QueueItemBase):
    type: Literal["ci-wait"] = "ci-wait"
    pr_id: Optional[str] = None
    pr_url: Optional[str] = None
    next_check_at: Optional[UtcDatetime] = None

    def is_due(self, now: datetime) -> bool:
        return self.next_check_at is None or self.next_check_at <= now


class CiCompleteItem(_QueueItemBase):
    type: Literal["ci-complete"] = "ci-complete"
    pr_id: Optional[str] = None
    pr_url: Optional[str] = None
    ci_status: Optional[CiStatus] = None


QueueItem = Annotated[Union[RunItem, CiWaitItem, CiCompleteItem], Field(discriminator="type")]
QUEUE_ITEM_ADAPTER: TypeAdapter[QueueItem] = TypeAdapter(QueueItem)


def parse_queue_item(raw: Any) -> QueueItem:
    """
    Validates one stored queue entry. Raises pydantic.ValidationError for entries this
    engine cannot handle (unknown type, missing taskId, wrong shapes).
    """
    if isinstance(raw, dict) and "type" not in raw:
        # Items written without a type are plain run items.
        raw = {**raw, "type": "run"}
    return QUEUE_ITEM_ADAPTER.validate_python(raw)


class QueueDocument(_Document):
    """
    queue.json as stored. Entries stay raw here: each one is validated on its own
    with parse_queue_item, so one bad entry never hides its neighbours.
    """
    items: list[Any] = Field(default_factory=list)


class WorkerState(_Document):
    running_task_id: Optional[str] = None
    since: Optional[UtcDatetime] = None

    def to_document(self) -> dict[str, Any]:
        # Keep explicit nulls: dashboards read runningTaskId directly.
        return self.model_dump(mode="json", by_alias=True)


# -------------------------
# Status API
# -------------------------


class TaskListResponse(BaseModel):
    tasks: list[TaskRecord]
    total: int


class QueueView(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    items: list[QueueItem]
    invalid: list[Any] = Field(default_factory=list)
    running: dict[str, WorkerState]
    locks: dict[str, Optional[int]]


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    code: str
    details: dict = Field(default_factory=dict)
