# tests/conftest.py
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence, Union

import pytest
from fastapi.testclient import TestClient

from tqe.config import Settings, load_settings
from tqe.domain.models import TaskRecord
from tqe.engine import EngineContext, RunResult
from tqe.engine.producer import create_task

DEFAULT_ENV = {
    "TQE_POLL_MS": "10",
    "TQE_CI_RECHECK_MS": "30000",
    "TQE_AUTOMATABLE_TYPES": "tracker",
    "TQE_LOG_LEVEL": "warning",
}

START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class StepClock:
    """
    Deterministic clock: every call returns the current time and moves it forward by `step`.
    """

    def __init__(self, start: datetime = START, step: timedelta = timedelta(milliseconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + self.step
        return current

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeRunner:
    """
    ExternalRunner double. Results are configured per command; a list is consumed in
    order (the last entry repeats). Every call is recorded.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str]]] = []
        self._results: dict[str, list[RunResult]] = {}

    def set(self, command: str, *results: RunResult) -> None:
        self._results[command] = list(results)

    def run(self, command: str, args: Sequence[str] = ()) -> RunResult:
        self.calls.append((command, list(args)))
        results = self._results.get(command)
        if not results:
            return RunResult(127, stderr=f"command not configured: {command}")
        if len(results) > 1:
            return results.pop(0)
        return results[0]


def ci_result(total: int, passed: int, failed: int) -> RunResult:
    payload = {"checks": {"total": total, "passed": passed, "failed": failed}}
    return RunResult(0, stdout=json.dumps(payload), parsed=payload)


def _apply_env(monkeypatch: pytest.MonkeyPatch, root: Path, overrides: Optional[dict[str, str]] = None) -> None:
    monkeypatch.setenv("TQE_ROOT", str(root))
    for k in ("TQE_QUEUE_ROOT", "TQE_TASKS_ROOT", "TQE_MODE", "TQE_GENERATE_COMMAND", "TQE_CI_STATUS_COMMAND",
              "TQE_PR_URL_TEMPLATE", "TQE_LOCK_RECLAIM_DEAD", "TQE_RUNNER_TIMEOUT_S"):
        monkeypatch.delenv(k, raising=False)
    for k, v in DEFAULT_ENV.items():
        monkeypatch.setenv(k, v)
    if overrides:
        for k, v in overrides.items():
            monkeypatch.setenv(k, v)


@pytest.fixture()
def env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Callable[..., Settings]:
    """
    Points TQE_ROOT at a fresh directory and returns a loader for Settings.

    Usage:
      settings = env()
      settings = env(TQE_PR_URL_TEMPLATE="https://review.example/{id}")
    """

    def _load(**overrides: str) -> Settings:
        _apply_env(monkeypatch, tmp_path / "tasks", overrides)
        return load_settings()

    _apply_env(monkeypatch, tmp_path / "tasks")
    return _load


@pytest.fixture()
def settings(env) -> Settings:
    return env()


@pytest.fixture()
def clock() -> StepClock:
    return StepClock()


@pytest.fixture()
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def ctx(settings: Settings, runner: FakeRunner, clock: StepClock) -> EngineContext:
    context = EngineContext.from_settings(settings, runner=runner, clock=clock)
    context.queue.ensure_initialized()
    return context


@pytest.fixture()
def make_task(ctx: EngineContext) -> Callable[..., TaskRecord]:
    def _make(task_id: str, task_type: str = "tracker", **kwargs: Union[str, None]) -> TaskRecord:
        return create_task(ctx, task_id, task_type=task_type, **kwargs)

    return _make


@pytest.fixture()
def client(env) -> Iterator[TestClient]:
    """
    Status API client over the same TQE_ROOT as the `ctx` fixture.
    """
    from tqe.api.app import app

    with TestClient(app) as c:
        yield c
