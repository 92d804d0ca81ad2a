# src/tqe/api/deps.py
from __future__ import annotations

from fastapi import Depends, Request

from tqe.engine import EngineContext
from tqe.storage import QueueStore, TaskRepo


def get_ctx(request: Request) -> EngineContext:
    """
    Per-request access to the EngineContext built during startup.
    """
    return request.app.state.ctx  # type: ignore[attr-defined]


def get_tasks(ctx: EngineContext = Depends(get_ctx)) -> TaskRepo:
    return ctx.tasks


def get_queue(ctx: EngineContext = Depends(get_ctx)) -> QueueStore:
    return ctx.queue
