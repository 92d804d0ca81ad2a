# src/tqe/api/__init__.py
"""
Read-only status API (FastAPI) over the on-disk documents.

- app: FastAPI instance + lifespan
- routes: GET endpoints
- deps: dependency injection helpers
"""

from .app import app

__all__ = ["app"]
