# src/tqe/domain/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class TQEBaseError(Exception):
    """
    Base domain error for the producer commands and the task repository.

    Raised outside the worker loop only: stage handlers record problems on the task
    instead. The CLI turns these into exit code 1 with a "CODE: message" line; the
    status API turns NotFoundError into a 404 ErrorResponse.
    """
    message: str
    code: str = "TQE_ERROR"
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class ValidationError(TQEBaseError):
    """Unusable producer input: nothing to enqueue, missing PR id."""

    code: str = "VALIDATION_ERROR"


@dataclass
class NotFoundError(TQEBaseError):
    """Unknown task id, or a task without a logs directory. `details` names what is missing."""

    code: str = "NOT_FOUND"


@dataclass
class ConflictError(TQEBaseError):
    """A task record with this id already exists."""

    code: str = "CONFLICT"

