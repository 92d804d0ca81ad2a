# src/tqe/engine/context.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from tqe.config import Settings
from tqe.domain.states import QueueMode
from tqe.storage import DocumentStore, QueueStore, TaskRepo, WorkerLock
from tqe.storage.common import Clock, lock_path, utc_now

from .runner import ExternalRunner, SubprocessRunner


@dataclass
class EngineContext:
    """
    Everything one process needs, built once and handed to the worker loop, the
    handlers, the CLI and the status API. There is no module-level state.
    """
    settings: Settings
    store: DocumentStore
    queue: QueueStore
    tasks: TaskRepo
    runner: ExternalRunner
    clock: Clock = utc_now

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        runner: Optional[ExternalRunner] = None,
        clock: Clock = utc_now,
        store: Optional[DocumentStore] = None,
    ) -> "EngineContext":
        store = store or DocumentStore()
        if runner is None:
            runner = SubprocessRunner(settings.commands, timeout_s=settings.runner_timeout_s)
        return cls(
            settings=settings,
            store=store,
            queue=QueueStore(store, settings.queue_root, clock=clock),
            tasks=TaskRepo(store, settings.tasks_root, clock=clock),
            runner=runner,
            clock=clock,
        )

    def lock(self, mode: QueueMode) -> WorkerLock:
        return WorkerLock(lock_path(self.settings.queue_root, mode), reclaim_dead=self.settings.lock_reclaim_dead)

    def pr_url(self, pr_id: Optional[str]) -> Optional[str]:
        """Builds a PR URL from TQE_PR_URL_TEMPLATE, or None when there is no template."""
        if not pr_id or not self.settings.pr_url_template:
            return None
        return self.settings.pr_url_template.replace("{id}", str(pr_id))
