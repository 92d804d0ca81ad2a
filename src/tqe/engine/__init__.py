# src/tqe/engine/__init__.py
"""
Execution engine.

- context: per-process EngineContext (settings, stores, runner, clock)
- worker: lock + poll loop + dispatch
- handlers: run / ci-wait / ci-complete stage handlers
- runner: external command runner
- producer: create / enqueue / dequeue / ci-wait commands
"""

from .context import EngineContext
from .runner import ExternalRunner, RunResult, SubprocessRunner
from .worker import WorkerLoop, WorkerRunSummary

__all__ = [
    "EngineContext",
    "ExternalRunner",
    "RunResult",
    "SubprocessRunner",
    "WorkerLoop",
    "WorkerRunSummary",
]
