# src/tqe/engine/runner.py
from __future__ import annotations

import json
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol, Sequence

from tqe.logging import get_logger

_LOG = get_logger(__name__)

EXIT_TIMEOUT = 124
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127


@dataclass(frozen=True)
class RunResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    parsed: Optional[Any] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ExternalRunner(Protocol):
    """
    Runs an external command identified by name ("generate", "ci-status", ...).

    Implementations report failures through the exit code; they do not raise for a
    command that is missing, not executable or timed out.
    """

    def run(self, command: str, args: Sequence[str] = ()) -> RunResult: ...


def parse_json_output(stdout: str) -> Optional[Any]:
    text = stdout.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


class SubprocessRunner:
    """
    ExternalRunner backed by subprocess.run.

    `commands` maps a command name to a shell-like command line; the call's args are
    appended to it. Output is captured as text. A timeout, when set, kills the child
    and reports exit code 124.
    """

    def __init__(
        self,
        commands: Mapping[str, str],
        *,
        timeout_s: Optional[float] = None,
        cwd: Optional[Path] = None,
    ) -> None:
        self._commands = dict(commands)
        self._timeout_s = timeout_s
        self._cwd = cwd

    def run(self, command: str, args: Sequence[str] = ()) -> RunResult:
        template = self._commands.get(command)
        if not template:
            _LOG.warning("External command %r is not configured", command)
            return RunResult(EXIT_NOT_FOUND, stderr=f"command not configured: {command}")

        argv = [*shlex.split(template), *(str(a) for a in args)]
        _LOG.info("Running %s: %s", command, shlex.join(argv))
        try:
            proc = subprocess.run(
                argv,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self._timeout_s,
                cwd=self._cwd,
                env=os.environ.copy(),
                check=False,
            )
        except FileNotFoundError as e:
            return RunResult(EXIT_NOT_FOUND, stderr=f"executable not found: {e.filename or argv[0]}")
        except PermissionError as e:
            return RunResult(EXIT_NOT_EXECUTABLE, stderr=f"not executable: {e.filename or argv[0]}")
        except subprocess.TimeoutExpired as e:
            return RunResult(
                EXIT_TIMEOUT,
                stdout=_as_text(e.stdout),
                stderr=f"{_as_text(e.stderr)}\ntimed out after {self._timeout_s}s".strip(),
            )

        stdout = (proc.stdout or "").strip()
        stderr = (proc.stderr or "").strip()
        parsed = parse_json_output(stdout) if proc.returncode == 0 else None
        _LOG.info("%s exited with %d", command, proc.returncode)
        return RunResult(proc.returncode, stdout=stdout, stderr=stderr, parsed=parsed)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
