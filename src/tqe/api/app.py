# src/tqe/api/app.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from tqe.config import load_settings
from tqe.engine import EngineContext
from tqe.logging import configure_logging, get_logger

from .routes import router

_LOG = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Lifespan handler.

    Responsible for:
    - loading settings
    - configuring logging
    - building the EngineContext the routes read from

    The API is read-only: it never starts a worker and never writes documents.
    """
    settings = load_settings()
    configure_logging(settings.log_level)

    app.state.settings = settings
    app.state.ctx = EngineContext.from_settings(settings)

    _LOG.info("Status API ready (queue=%s tasks=%s)", settings.queue_root, settings.tasks_root)
    try:
        yield
    finally:
        _LOG.info("Status API shut down.")


app = FastAPI(
    title="Task Queue Engine status",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(router)
