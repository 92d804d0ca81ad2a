# src/tqe/engine/worker.py
from __future__ import annotations

import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional

from tqe.domain.models import QueueItem
from tqe.domain.states import QueueMode, TaskStatus
from tqe.logging import get_logger

from .context import EngineContext
from .handlers import Handler, default_handlers, handler_for

_LOG = get_logger(__name__)


@dataclass
class WorkerRunSummary:
    """Counters reported by `tqe worker` on exit."""

    mode: str
    lock_acquired: bool = False
    processed: int = 0
    handler_errors: int = 0
    dropped: int = 0
    idle_polls: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class WorkerLoop:
    """
    Single-threaded consumer for one operating mode.

    Loop:
    - acquire the mode's lock (another live worker => return immediately, not an error)
    - take the next eligible item; sleep `poll_ms` when there is none
    - dispatch: mark running, run the stage handler, always clear the running marker
    - release the lock on the way out, whatever the reason

    A handler exception never escapes dispatch: it is logged, recorded on the task as
    `failed`, and the loop carries on. Anything raised outside dispatch (storage errors
    while polling) propagates and ends the process; the lock is still released.
    """

    def __init__(
        self,
        ctx: EngineContext,
        mode: QueueMode,
        *,
        handlers: Optional[Mapping[str, Handler]] = None,
    ) -> None:
        self._ctx = ctx
        self.mode = mode
        self._handlers = dict(handlers) if handlers is not None else default_handlers()
        self._stop = threading.Event()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def run(self, *, drain: bool = False, max_items: Optional[int] = None) -> WorkerRunSummary:
        """
        Runs until stop() is called (or a signal arrives), or, with `drain`, until no
        eligible item is left. `max_items` bounds the number of dispatches.
        """
        summary = WorkerRunSummary(mode=self.mode.value)
        self._ctx.queue.ensure_initialized()

        lock = self._ctx.lock(self.mode)
        if not lock.acquire():
            _LOG.info(
                "Another %s worker holds %s (pid %s); exiting.",
                self.mode.value,
                lock.path,
                lock.owner_pid(),
            )
            return summary

        summary.lock_acquired = True
        _LOG.info(
            "Worker started: mode=%s poll_ms=%d queue=%s",
            self.mode.value,
            self._ctx.settings.poll_ms,
            self._ctx.queue.queue_path,
        )
        try:
            while not self._stop.is_set():
                if max_items is not None and summary.processed >= max_items:
                    break
                if self.poll_once(summary):
                    continue
                if drain:
                    break
                summary.idle_polls += 1
                self._stop.wait(timeout=self._ctx.settings.poll_s)
        finally:
            lock.release()
            _LOG.info("Worker stopped: %s", summary.as_dict())
        return summary

    def poll_once(self, summary: Optional[WorkerRunSummary] = None) -> bool:
        """Takes and dispatches at most one item. Returns False when nothing was eligible."""
        item = self._ctx.queue.take_next_eligible(self.mode, self._ctx.clock())
        if item is None:
            return False
        outcome = self.dispatch(item)
        if summary is not None:
            summary.processed += 1
            if outcome == "error":
                summary.handler_errors += 1
            elif outcome == "dropped":
                summary.dropped += 1
        return True

    def dispatch(self, item: QueueItem) -> str:
        """
        Runs the handler for one dequeued item. Returns "ok", "error" or "dropped".
        """
        record = self._ctx.tasks.read(item.task_id)
        if record is None:
            _LOG.warning("Dropping %s item: task %s has no readable task.json", item.type, item.task_id)
            return "dropped"

        handler = handler_for(self._handlers, item)
        if handler is None:
            _LOG.warning("Dropping %s item for task %s: no handler for this type", item.type, item.task_id)
            return "dropped"

        _LOG.info("Dispatching %s for task %s", item.type, item.task_id)
        self._ctx.queue.set_running(item.task_id, self.mode)
        try:
            handler(self._ctx, item, record)
            return "ok"
        except Exception as e:
            _LOG.exception("Handler %s failed for task %s", item.type, item.task_id)
            self._record_handler_error(item, e)
            return "error"
        finally:
            self._ctx.queue.clear_running(self.mode)

    def _record_handler_error(self, item: QueueItem, error: Exception) -> None:
        try:
            self._ctx.tasks.set_status(
                item.task_id,
                TaskStatus.FAILED,
                by="worker",
                reason="handler_error",
                note=f"{item.type} handler raised {error!r}",
            )
        except Exception:
            _LOG.exception("Could not record handler failure on task %s", item.task_id)


@contextmanager
def stop_on_signals(loop: WorkerLoop) -> Iterator[None]:
    """
    Routes SIGINT / SIGTERM to loop.stop() for the duration of the block.
    Outside the main thread (signal handlers cannot be installed there) this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        _LOG.info("Received %s; stopping after the current item.", name)
        loop.stop()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
