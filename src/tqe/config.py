from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be an int, got: {raw!r}") from e
    return value


def _get_env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw


def _get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"Environment variable {name} must be a boolean, got: {raw!r}")


def _get_env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    # Filesystem layout
    queue_root: Path
    tasks_root: Path

    # Worker loop
    mode: str
    poll_ms: int
    ci_recheck_ms: int
    lock_reclaim_dead: bool

    # Stage handlers / external runner
    automatable_types: tuple[str, ...] = ("tracker",)
    commands: dict[str, str] = field(default_factory=dict)
    runner_timeout_s: Optional[float] = None
    pr_url_template: str = ""

    # Status API (used by `tqe serve`)
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"

    @property
    def poll_s(self) -> float:
        return self.poll_ms / 1000.0


def load_settings(mode: Optional[str] = None) -> Settings:
    """
    Loads settings from env vars with sane defaults.

    Env vars:
      - TQE_ROOT (default: ./.cache/tasks)
      - TQE_QUEUE_ROOT (default: <TQE_ROOT>/.queue)
      - TQE_TASKS_ROOT (default: <TQE_ROOT>)
      - TQE_MODE (default: run; one of run, ci)
      - TQE_POLL_MS (default: 1500)
      - TQE_CI_RECHECK_MS (default: 30000)
      - TQE_LOCK_RECLAIM_DEAD (default: false)
      - TQE_AUTOMATABLE_TYPES (default: tracker)
      - TQE_GENERATE_COMMAND (default: unset)
      - TQE_CI_STATUS_COMMAND (default: unset)
      - TQE_RUNNER_TIMEOUT_S (default: 0, meaning no timeout)
      - TQE_PR_URL_TEMPLATE (default: unset; "{id}" is replaced by the PR id)
      - TQE_HOST (default: 127.0.0.1)
      - TQE_PORT (default: 8000)
      - TQE_LOG_LEVEL (default: info)

    `mode` overrides TQE_MODE (the CLI passes --mode through here).
    """
    root = Path(_get_env_str("TQE_ROOT", "./.cache/tasks")).expanduser()
    queue_root = Path(_get_env_str("TQE_QUEUE_ROOT", str(root / ".queue"))).expanduser()
    tasks_root = Path(_get_env_str("TQE_TASKS_ROOT", str(root))).expanduser()

    mode = (mode or _get_env_str("TQE_MODE", "run")).strip().lower()
    if mode not in ("run", "ci"):
        raise ValueError(f"TQE_MODE must be one of run, ci; got: {mode!r}")

    poll_ms = _get_env_int("TQE_POLL_MS", 1500)
    if poll_ms <= 0:
        raise ValueError("TQE_POLL_MS must be > 0")

    ci_recheck_ms = _get_env_int("TQE_CI_RECHECK_MS", 30_000)
    if ci_recheck_ms <= 0:
        raise ValueError("TQE_CI_RECHECK_MS must be > 0")

    runner_timeout = _get_env_int("TQE_RUNNER_TIMEOUT_S", 0)
    if runner_timeout < 0:
        raise ValueError("TQE_RUNNER_TIMEOUT_S must be >= 0")

    commands = {
        "generate": _get_env_str("TQE_GENERATE_COMMAND", ""),
        "ci-status": _get_env_str("TQE_CI_STATUS_COMMAND", ""),
    }

    port = _get_env_int("TQE_PORT", 8000)
    if not (1 <= port <= 65535):
        raise ValueError("TQE_PORT must be between 1 and 65535")

    return Settings(
        queue_root=queue_root,
        tasks_root=tasks_root,
        mode=mode,
        poll_ms=poll_ms,
        ci_recheck_ms=ci_recheck_ms,
        lock_reclaim_dead=_get_env_bool("TQE_LOCK_RECLAIM_DEAD", False),
        automatable_types=_get_env_list("TQE_AUTOMATABLE_TYPES", ("tracker",)),
        commands={k: v for k, v in commands.items() if v.strip()},
        runner_timeout_s=float(runner_timeout) if runner_timeout else None,
        pr_url_template=_get_env_str("TQE_PR_URL_TEMPLATE", ""),
        host=_get_env_str("TQE_HOST", "127.0.0.1"),
        port=port,
        log_level=_get_env_str("TQE_LOG_LEVEL", "info").lower(),
    )
