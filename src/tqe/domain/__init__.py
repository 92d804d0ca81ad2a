"""
Domain layer for the task queue engine.

- states: TaskStatus / ItemType / QueueMode / CiStatus enums
- models: pydantic models for the on-disk documents and API output
- errors: domain-level exceptions
"""

from .states import CiStatus, ItemType, QueueMode, TaskStatus
from .models import (
    CiCompleteItem,
    CiWaitItem,
    ErrorResponse,
    ExternalRef,
    QueueDocument,
    QueueItem,
    QueueView,
    RunEvent,
    RunItem,
    TaskListResponse,
    TaskRecord,
    Ticket,
    WorkerState,
    parse_queue_item,
)
from .errors import (
    ConflictError,
    NotFoundError,
    TQEBaseError,
    ValidationError,
)

__all__ = [
    "TaskStatus",
    "ItemType",
    "QueueMode",
    "CiStatus",
    "TaskRecord",
    "RunEvent",
    "ExternalRef",
    "Ticket",
    "RunItem",
    "CiWaitItem",
    "CiCompleteItem",
    "QueueItem",
    "QueueDocument",
    "parse_queue_item",
    "WorkerState",
    "QueueView",
    "TaskListResponse",
    "ErrorResponse",
    "TQEBaseError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
]
