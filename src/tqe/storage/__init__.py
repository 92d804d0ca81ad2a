# src/tqe/storage/__init__.py
"""
Storage layer (JSON documents on a shared filesystem).

- documents: atomic document / log-artifact I/O
- queue: pending items + running marker
- tasks: per-task records and log artifacts
- lock: single-worker lock file
"""

from .documents import DocumentStore
from .lock import WorkerLock
from .queue import QueueStore, is_eligible
from .tasks import TaskRepo

__all__ = ["DocumentStore", "QueueStore", "TaskRepo", "WorkerLock", "is_eligible"]
